from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Self

from .attributevalue import (
    BinarySetValue,
    BinaryValue,
    NumberSetValue,
    NumberValue,
    StringSetValue,
    StringValue,
    item_from_wire,
    tag_of,
)
from .context import Context
from .db import unmarshal_item_from_cond_check_failed
from .decode import unmarshal_item
from .encode import marshal
from .errors import ConditionFailedError, DynamoPyError, ValidationError
from .request import KeyedRequest
from .tags import EncodeFlags

if TYPE_CHECKING:
    from .table import Table


class Update(KeyedRequest):
    """Changes attributes of an existing item (or creates it).

    The update expression is assembled from SET, ADD, DELETE and REMOVE
    clauses, always in that order. Paths that are reserved words are escaped
    automatically; quote complex paths like ``'User'.'Count'``.
    """

    operation = "update_item"
    kind = "update"

    def __init__(self, table: Table, name: str, value: Any) -> None:
        super().__init__(table, name, value)
        self._set: list[str] = []
        self._add: dict[str, str] = {}
        self._del: dict[str, str] = {}
        self._remove: dict[str, None] = {}

    def set(self, path: str, value: Any) -> Self:
        """Set ``path`` to ``value``; a value that encodes to nothing removes ``path`` instead."""
        try:
            av = marshal(value)
        except DynamoPyError as err:
            self._set_error(err)
            return self
        if av is None:
            return self.remove(path)
        return self._add_set(path, lambda p: f"{p} = {self.subber.sub_value(av)}")

    def set_nullable(self, path: str, value: Any) -> Self:
        """Set ``path`` to ``value`` as is; ``None`` is stored as NULL."""
        return self._add_set(path, lambda p: f"{p} = {self.subber.sub_value(value, EncodeFlags.NULL)}")

    def set_set(self, path: str, value: Any) -> Self:
        """Set ``path`` to ``value`` encoded as a set; an empty set removes ``path``."""
        try:
            av = marshal(value, EncodeFlags.SET)
        except DynamoPyError as err:
            self._set_error(err)
            return self
        if av is None:
            return self.remove(path)
        return self._add_set(path, lambda p: f"{p} = {self.subber.sub_value(av)}")

    def set_if_not_exists(self, path: str, value: Any) -> Self:
        return self._add_set(
            path, lambda p: f"{p} = if_not_exists({p}, {self.subber.sub_value(value, EncodeFlags.NULL)})"
        )

    def set_expr(self, expr: str, *args: Any) -> Self:
        """Add a custom SET clause, e.g. ``set_expr("'Count' = 'Count' + ?", 1)``."""
        try:
            self._set.append(self.subber.sub_expr_n(expr, *args))
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def append(self, path: str, value: Any) -> Self:
        """Append the elements of ``value`` to the list at ``path``."""
        return self._add_set(
            path, lambda p: f"{p} = list_append({p}, {self.subber.sub_value(value, EncodeFlags.NULL)})"
        )

    def prepend(self, path: str, value: Any) -> Self:
        return self._add_set(
            path, lambda p: f"{p} = list_append({self.subber.sub_value(value, EncodeFlags.NULL)}, {p})"
        )

    def add(self, path: str, value: Any) -> Self:
        """Add ``value`` to a number, or its elements to a set, at a top-level ``path``."""
        try:
            self._add[self.subber.escape(path)] = self.subber.sub_value(value, EncodeFlags.SET)
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def add_to_set(self, path: str, *values: Any) -> Self:
        return self.add(path, set(values))

    def delete_from_set(self, path: str, value: Any) -> Self:
        """Delete ``value`` (a set, or a single string, number or bytes) from the set at ``path``.

        Use ``remove`` to delete whole attributes.
        """
        try:
            av = marshal(value, EncodeFlags.SET)
        except DynamoPyError as err:
            self._set_error(err)
            return self
        match av:
            case StringSetValue() | NumberSetValue() | BinarySetValue():
                pass
            case StringValue(value=v):
                av = StringSetValue(frozenset((v,)))
            case NumberValue(value=v):
                av = NumberSetValue(frozenset((v,)))
            case BinaryValue(value=v):
                av = BinarySetValue(frozenset((v,)))
            case _:
                got = tag_of(av) if av is not None else "nothing"
                self._set_error(
                    ValidationError(
                        f"delete_from_set given unsupported value {value!r} ({type(value).__name__}: {got})"
                    )
                )
                return self
        try:
            self._del[self.subber.escape(path)] = self.subber.sub_value(av)
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def remove(self, *paths: str) -> Self:
        for path in paths:
            try:
                self._remove[self.subber.escape(path)] = None
            except DynamoPyError as err:
                self._set_error(err)
        return self

    def remove_expr(self, expr: str, *args: Any) -> Self:
        """Add a custom REMOVE clause, e.g. ``remove_expr("MyList[$]", 5)``."""
        try:
            self._remove[self.subber.sub_expr(expr, *args)] = None
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def if_exists(self) -> Self:
        return self.if_("attribute_exists($)", self._hash_key)

    def if_not_exists(self) -> Self:
        return self.if_("attribute_not_exists($)", self._hash_key)

    def run(self, *, ctx: Context | None = None) -> None:
        self._execute(ctx, self.input())

    def value(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        """Run the update and return the whole item as it is afterwards."""
        return self._returning("ALL_NEW", out, ctx)

    def old_value(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        """Run the update and return the whole item as it was before."""
        return self._returning("ALL_OLD", out, ctx)

    def only_updated_value(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        return self._returning("UPDATED_NEW", out, ctx)

    def only_updated_old_value(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        return self._returning("UPDATED_OLD", out, ctx)

    def current_value(self, out: Any = dict, *, ctx: Context | None = None) -> tuple[bool, Any]:
        """Run the update, reporting whether it was applied.

        Returns ``(True, new_item)`` on success and ``(False, current_item)``
        when a condition fails. Other errors propagate.
        """
        try:
            resp = self._execute(ctx, self.input("ALL_NEW", on_fail="ALL_OLD"))
        except ConditionFailedError as err:
            _, current = unmarshal_item_from_cond_check_failed(err, out)
            return False, current
        return True, unmarshal_item(item_from_wire(resp.get("Attributes")) or {}, out)

    def update_expression(self) -> str:
        clauses: list[str] = []
        if self._set:
            clauses.append("SET " + ", ".join(self._set))
        if self._add:
            clauses.append("ADD " + ", ".join(f"{k} {v}" for k, v in self._add.items()))
        if self._del:
            clauses.append("DELETE " + ", ".join(f"{k} {v}" for k, v in self._del.items()))
        if self._remove:
            clauses.append("REMOVE " + ", ".join(self._remove))
        return " ".join(clauses)

    def input(self, return_values: str = "NONE", *, on_fail: str = "") -> dict[str, Any]:
        req: dict[str, Any] = {
            "TableName": self.table.name,
            "Key": self._wire_key(),
            "ReturnValues": return_values,
        }
        expr = self.update_expression()
        if expr:
            req["UpdateExpression"] = expr
        return self._apply_condition(req, on_fail=on_fail)

    def write_tx_item(self) -> dict[str, Any]:
        self.check()
        return {"Update": self._tx_fields(self.input(), "Key", "UpdateExpression")}

    def _returning(self, return_values: str, out: Any, ctx: Context | None) -> Any:
        resp = self._execute(ctx, self.input(return_values))
        return unmarshal_item(item_from_wire(resp.get("Attributes")) or {}, out)

    def _add_set(self, path: str, build: Callable[[str], str]) -> Self:
        try:
            self._set.append(build(self.subber.escape(path)))
        except DynamoPyError as err:
            self._set_error(err)
        return self
