from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .context import Context

if TYPE_CHECKING:
    from .table import Table


class TTLStatus(enum.StrEnum):
    ENABLED = "ENABLED"
    ENABLING = "ENABLING"
    DISABLED = "DISABLED"
    DISABLING = "DISABLING"


@dataclass(frozen=True)
class TTLDescription:
    attribute: str = ""
    status: TTLStatus = TTLStatus.DISABLED

    @property
    def enabled(self) -> bool:
        return self.status is TTLStatus.ENABLED


class UpdateTTL:
    """Turns time-to-live expiry on or off for an attribute."""

    def __init__(self, table: Table, attribute: str, enabled: bool) -> None:
        self.table = table
        self.attribute = attribute
        self.enabled = enabled

    def run(self, *, ctx: Context | None = None) -> None:
        self.table.db.call(ctx, "update_time_to_live", self.input())

    def input(self) -> dict[str, Any]:
        return {
            "TableName": self.table.name,
            "TimeToLiveSpecification": {"Enabled": self.enabled, "AttributeName": self.attribute},
        }


class DescribeTTL:
    def __init__(self, table: Table) -> None:
        self.table = table

    def run(self, *, ctx: Context | None = None) -> TTLDescription:
        resp = self.table.db.call(ctx, "describe_time_to_live", {"TableName": self.table.name})
        raw = resp.get("TimeToLiveDescription") or {}
        status = raw.get("TimeToLiveStatus")
        return TTLDescription(
            attribute=str(raw.get("AttributeName") or ""),
            status=TTLStatus(status) if status else TTLStatus.DISABLED,
        )
