from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Self

from .attributevalue import AttributeValue, Item, item_to_wire
from .capacity import ConsumedCapacity
from .context import Context
from .encode import marshal
from .errors import DynamoPyError, ValidationError
from .expression import Subber, wrap_expr

if TYPE_CHECKING:
    from .table import Table

_ALL_OLD = "ALL_OLD"


class WriteRequest:
    """Condition, capacity and deferred-error state shared by single-item writes."""

    operation = ""

    def __init__(self, table: Table) -> None:
        self.table = table
        self.subber = Subber()
        self._condition = ""
        self._on_cond_fail = ""
        self._cc: ConsumedCapacity | None = None
        self._err: Exception | None = None

    def if_(self, expr: str, *args: Any) -> Self:
        """Add a condition; several conditions are joined with AND.

        Use ``'Name'`` or ``$`` for names and ``?`` for values.
        """
        try:
            cond = wrap_expr(self.subber.sub_expr_n(expr, *args))
        except DynamoPyError as err:
            self._set_error(err)
            return self
        self._condition = f"{self._condition} AND {cond}" if self._condition else cond
        return self

    def include_item_in_cond_check_fail(self, enabled: bool = True) -> Self:
        """Return the current item with a failed condition check.

        Read it back with ``unmarshal_item_from_cond_check_failed``, or
        ``unmarshal_items_from_tx_cond_check_failed`` inside a transaction.
        """
        self._on_cond_fail = _ALL_OLD if enabled else "NONE"
        return self

    def consumed_capacity(self, cc: ConsumedCapacity) -> Self:
        self._cc = cc
        return self

    def check(self) -> None:
        if self._err is not None:
            raise self._err

    def input(self, return_values: str = "NONE", *, on_fail: str = "") -> dict[str, Any]:
        raise NotImplementedError

    def write_tx_item(self) -> dict[str, Any]:
        raise NotImplementedError

    def _execute(self, ctx: Context | None, req: Mapping[str, Any]) -> dict[str, Any]:
        self.check()
        resp = self.table.db.call(ctx, self.operation, req)
        if self._cc is not None:
            self._cc.inc_requests()
            self._cc.add(resp.get("ConsumedCapacity"))
        return resp

    def _apply_condition(self, req: dict[str, Any], *, on_fail: str = "") -> dict[str, Any]:
        if self._condition:
            req["ConditionExpression"] = self._condition
            on_fail = on_fail or self._on_cond_fail
            if on_fail:
                req["ReturnValuesOnConditionCheckFailure"] = on_fail
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return self.subber.attach(req)

    def _tx_fields(self, req: Mapping[str, Any], *names: str) -> dict[str, Any]:
        keep = (
            "TableName",
            *names,
            "ConditionExpression",
            "ExpressionAttributeNames",
            "ExpressionAttributeValues",
            "ReturnValuesOnConditionCheckFailure",
        )
        return {k: req[k] for k in keep if k in req}

    def _set_error(self, err: Exception) -> None:
        if self._err is None:
            self._err = err


class KeyedRequest(WriteRequest):
    """A write addressed by primary key."""

    kind = ""

    def __init__(self, table: Table, name: str, value: Any) -> None:
        super().__init__(table)
        self._hash_key = name
        self._hash_value = self._key_value("hash", name, value)
        self._range_key = ""
        self._range_value: AttributeValue | None = None

    def range(self, name: str, value: Any) -> Self:
        self._range_key = name
        self._range_value = self._key_value("range", name, value)
        return self

    def key(self) -> Item:
        key: Item = {}
        if self._hash_value is not None:
            key[self._hash_key] = self._hash_value
        if self._range_key and self._range_value is not None:
            key[self._range_key] = self._range_value
        return key

    def _wire_key(self) -> dict[str, Any]:
        return item_to_wire(self.key())

    def _key_value(self, role: str, name: str, value: Any) -> AttributeValue | None:
        try:
            av = marshal(value)
        except DynamoPyError as err:
            self._set_error(err)
            return None
        if av is None:
            self._set_error(ValidationError(f"{self.kind} {role} key value is None or omitted for attribute {name!r}"))
        return av
