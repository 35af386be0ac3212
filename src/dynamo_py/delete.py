from __future__ import annotations

from typing import Any

from .attributevalue import item_from_wire
from .context import Context
from .db import unmarshal_item_from_cond_check_failed
from .decode import unmarshal_item
from .errors import ConditionFailedError, NotFoundError
from .request import KeyedRequest


class Delete(KeyedRequest):
    """Deletes an item by primary key."""

    operation = "delete_item"
    kind = "delete"

    def run(self, *, ctx: Context | None = None) -> None:
        self._execute(ctx, self.input())

    def old_value(self, out: Any = dict, *, ctx: Context | None = None) -> Any:
        """Delete the item and return it; ``NotFoundError`` if nothing was there."""
        resp = self._execute(ctx, self.input("ALL_OLD"))
        old = item_from_wire(resp.get("Attributes"))
        if old is None:
            raise NotFoundError()
        return unmarshal_item(old, out)

    def current_value(self, out: Any = dict, *, ctx: Context | None = None) -> tuple[bool, Any]:
        """Delete the item, reporting whether it was deleted.

        Returns ``(True, deleted_item)`` on success (``deleted_item`` is
        ``None`` when nothing was stored) and ``(False, current_item)`` when
        a condition fails.
        """
        try:
            resp = self._execute(ctx, self.input("ALL_OLD", on_fail="ALL_OLD"))
        except ConditionFailedError as err:
            _, current = unmarshal_item_from_cond_check_failed(err, out)
            return False, current
        old = item_from_wire(resp.get("Attributes"))
        return True, unmarshal_item(old, out) if old is not None else None

    def input(self, return_values: str = "NONE", *, on_fail: str = "") -> dict[str, Any]:
        req: dict[str, Any] = {
            "TableName": self.table.name,
            "Key": self._wire_key(),
            "ReturnValues": return_values,
        }
        return self._apply_condition(req, on_fail=on_fail)

    def write_tx_item(self) -> dict[str, Any]:
        self.check()
        return {"Delete": self._tx_fields(self.input(), "Key")}
