from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .attributevalue import Item, item_from_wire, item_to_wire
from .context import Context
from .db import unmarshal_item_from_cond_check_failed
from .decode import unmarshal_item
from .encode import marshal_item
from .errors import ConditionFailedError, DynamoPyError, NotFoundError
from .request import WriteRequest

if TYPE_CHECKING:
    from .table import Table


class Put(WriteRequest):
    """Creates or replaces an item."""

    operation = "put_item"

    def __init__(self, table: Table, item: Any) -> None:
        super().__init__(table)
        self.item: Item = {}
        try:
            self.item = marshal_item(item)
        except DynamoPyError as err:
            self._set_error(err)

    def run(self, *, ctx: Context | None = None) -> None:
        self._execute(ctx, self.input())

    def old_value(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        """Put the item and return the one it replaced; ``NotFoundError`` if there was none."""
        resp = self._execute(ctx, self.input("ALL_OLD"))
        old = item_from_wire(resp.get("Attributes"))
        if old is None:
            raise NotFoundError()
        return unmarshal_item(old, out)

    def current_value(self, out: Any = dict, *, ctx: Context | None = None) -> tuple[bool, Any]:
        """Put the item, reporting whether it was written.

        On success returns ``(True, item)`` decoded from the input item. When
        a condition fails returns ``(False, current)`` with the item stored
        in the table. Other errors propagate.
        """
        try:
            self._execute(ctx, self.input(on_fail="ALL_OLD"))
        except ConditionFailedError as err:
            _, current = unmarshal_item_from_cond_check_failed(err, out)
            return False, current
        return True, unmarshal_item(self.item, out)

    def input(self, return_values: str = "NONE", *, on_fail: str = "") -> dict[str, Any]:
        req: dict[str, Any] = {
            "TableName": self.table.name,
            "Item": item_to_wire(self.item),
            "ReturnValues": return_values,
        }
        return self._apply_condition(req, on_fail=on_fail)

    def write_tx_item(self) -> dict[str, Any]:
        self.check()
        return {"Put": self._tx_fields(self.input(), "Item")}
