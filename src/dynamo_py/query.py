from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Self

from .attributevalue import AttributeValue, Item, item_from_wire, item_to_wire
from .context import Context, ensure
from .decode import unmarshal_item
from .encode import marshal
from .errors import DynamoPyError, NotFoundError, TooManyResultsError, ValidationError
from .expression import Subber
from .iterator import PagedRequest

if TYPE_CHECKING:
    from .table import Table


class Operator(enum.StrEnum):
    EQUAL = "EQ"
    NOT_EQUAL = "NE"
    LESS = "LT"
    LESS_OR_EQUAL = "LE"
    GREATER = "GT"
    GREATER_OR_EQUAL = "GE"
    BEGINS_WITH = "BEGINS_WITH"
    BETWEEN = "BETWEEN"


class Order(enum.Enum):
    ASCENDING = True
    DESCENDING = False


_COMPARISONS = {
    Operator.EQUAL: "=",
    Operator.NOT_EQUAL: "<>",
    Operator.LESS: "<",
    Operator.LESS_OR_EQUAL: "<=",
    Operator.GREATER: ">",
    Operator.GREATER_OR_EQUAL: ">=",
}


class Query(PagedRequest):
    """A request for one or more items sharing a hash key.

    ``one`` uses GetItem when the request names a single item (no index,
    filter, limit, or range operator other than EQUAL); everything else
    runs a Query.
    """

    operation = "query"

    def __init__(self, table: Table, name: str, value: Any) -> None:
        super().__init__(table)
        self._hash_key = name
        self._hash_value: AttributeValue | None = None
        self._range_key = ""
        self._range_values: list[AttributeValue] = []
        self._range_op: Operator | None = None
        self._order: Order | None = None

        try:
            self._hash_value = marshal(value)
        except DynamoPyError as err:
            self._set_error(err)
            return
        if self._hash_value is None:
            self._set_error(ValidationError(f"query hash key value is None or omitted for attribute {name!r}"))

    def range(self, name: str, op: Operator, *values: Any) -> Self:
        self._range_key = name
        self._range_op = Operator(op)
        self._range_values = []
        if not values:
            self._set_error(ValidationError(f"query range key values are missing for attribute {name!r}"))
            return self

        want = 2 if self._range_op is Operator.BETWEEN else 1
        if len(values) != want:
            self._set_error(
                ValidationError(f"query range operator {self._range_op} takes {want} value(s), got {len(values)}")
            )
        for i, v in enumerate(values):
            try:
                av = marshal(v)
            except DynamoPyError as err:
                self._set_error(err)
                return self
            if av is None:
                self._set_error(
                    ValidationError(
                        f"query range key value is None or omitted for attribute {name!r} "
                        f"(range key #{i + 1} of {len(values)})"
                    )
                )
                return self
            self._range_values.append(av)
        return self

    def order(self, order: Order) -> Self:
        self._order = order
        return self

    def one(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        """Fetch exactly one item.

        Raises ``NotFoundError`` when nothing matches and
        ``TooManyResultsError`` when more than one item could match.
        """
        self.check()
        ctx = ensure(ctx)
        db = self.table.db

        if self.can_get_item():
            resp = db.call(ctx, "get_item", self.get_item_input())
            self._record(resp)
            item = item_from_wire(resp.get("Item"))
            if item is None:
                raise NotFoundError()
            return unmarshal_item(item, out)

        resp = db.call(ctx, "query", self.input())
        self._record(resp)
        items = resp.get("Items") or []
        if not items:
            raise NotFoundError()
        if len(items) > 1 and self._limit != 1:
            raise TooManyResultsError()
        if resp.get("LastEvaluatedKey") and self._search_limit != 0:
            raise TooManyResultsError()
        return unmarshal_item(item_from_wire(items[0]) or {}, out)

    def count(self, *, ctx: Context | None = None) -> int:
        return self._count(ctx)

    def can_get_item(self) -> bool:
        if self._range_op is not None and self._range_op is not Operator.EQUAL:
            return False
        return self._order is None and not (self._index or self._filters or self._limit > 0)

    def input(self) -> dict[str, Any]:
        sub = self.subber.copy()
        req = self._base_input()
        req["KeyConditionExpression"] = self._key_condition(sub)
        if self._order is not None:
            req["ScanIndexForward"] = self._order.value
        return sub.attach(req)

    def get_item_input(self) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.table.name, "Key": item_to_wire(self.keys())}
        if self._consistent:
            req["ConsistentRead"] = True
        if self._projection:
            req["ProjectionExpression"] = self._projection
        if self.subber.names:
            req["ExpressionAttributeNames"] = self.subber.wire_names()
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return req

    def get_tx_item(self) -> dict[str, Any]:
        self.check()
        if not self.can_get_item():
            raise ValidationError("transaction Query is too complex; no indexes or filters are allowed")
        req = self.get_item_input()
        get = {k: req[k] for k in ("TableName", "Key", "ProjectionExpression", "ExpressionAttributeNames") if k in req}
        return {"Get": get}

    def keys(self) -> Item:
        keys: Item = {}
        if self._hash_value is not None:
            keys[self._hash_key] = self._hash_value
        if self._range_key and self._range_values:
            keys[self._range_key] = self._range_values[0]
        return keys

    def keys_and_attribs(self) -> dict[str, Any]:
        kas: dict[str, Any] = {
            "Keys": [item_to_wire(self.keys())],
            "ConsistentRead": self._consistent,
        }
        if self.subber.names:
            kas["ExpressionAttributeNames"] = self.subber.wire_names()
        if self._projection:
            kas["ProjectionExpression"] = self._projection
        return kas

    def _key_condition(self, sub: Subber) -> str:
        if self._hash_value is None:
            raise ValidationError(f"query hash key value is missing for attribute {self._hash_key!r}")
        expr = f"{sub.sub_name(self._hash_key)} = {sub.sub_value(self._hash_value)}"
        if not self._range_key or self._range_op is None:
            return expr

        name = sub.sub_name(self._range_key)
        vals = [sub.sub_value(v) for v in self._range_values]
        match self._range_op:
            case Operator.BETWEEN:
                cond = f"{name} BETWEEN {vals[0]} AND {vals[1]}"
            case Operator.BEGINS_WITH:
                cond = f"begins_with({name}, {vals[0]})"
            case op:
                cond = f"{name} {_COMPARISONS[op]} {vals[0]}"
        return f"{expr} AND {cond}"
