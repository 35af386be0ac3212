from __future__ import annotations

from typing import Any, Self

from .request import KeyedRequest


class ConditionCheck(KeyedRequest):
    """Asserts a condition on an item as part of a write transaction.

    It has no effect of its own and cannot be run outside ``WriteTx``.
    """

    kind = "check"

    def if_exists(self) -> Self:
        return self.if_("attribute_exists($)", self._hash_key)

    def if_not_exists(self) -> Self:
        return self.if_("attribute_not_exists($)", self._hash_key)

    def input(self, return_values: str = "NONE", *, on_fail: str = "") -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.table.name, "Key": self._wire_key()}
        return self._apply_condition(req, on_fail=on_fail)

    def write_tx_item(self) -> dict[str, Any]:
        self.check()
        return {"ConditionCheck": self._tx_fields(self.input(), "Key")}
