from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


def _units(raw: Mapping[str, Any] | None, key: str) -> float:
    if not raw:
        return 0.0
    value = raw.get(key)
    return float(value) if value is not None else 0.0


@dataclass
class ConsumedCapacity:
    """Running totals of capacity consumed by the requests that report into it.

    Read and write splits (and the per-index read/write maps) are only filled
    in for transactions; other operations report ``total`` alone.
    """

    total: float = 0.0
    read: float = 0.0
    write: float = 0.0
    table: float = 0.0
    table_read: float = 0.0
    table_write: float = 0.0
    gsi: dict[str, float] = field(default_factory=dict)
    gsi_read: dict[str, float] = field(default_factory=dict)
    gsi_write: dict[str, float] = field(default_factory=dict)
    lsi: dict[str, float] = field(default_factory=dict)
    lsi_read: dict[str, float] = field(default_factory=dict)
    lsi_write: dict[str, float] = field(default_factory=dict)
    requests: int = 0
    table_name: str = ""

    def add(self, raw: Mapping[str, Any] | None) -> None:
        if not raw:
            return
        self.total += _units(raw, "CapacityUnits")
        self.read += _units(raw, "ReadCapacityUnits")
        self.write += _units(raw, "WriteCapacityUnits")

        table = raw.get("Table")
        if table:
            self.table += _units(table, "CapacityUnits")
            self.table_read += _units(table, "ReadCapacityUnits")
            self.table_write += _units(table, "WriteCapacityUnits")

        _add_indexes(raw.get("GlobalSecondaryIndexes"), self.gsi, self.gsi_read, self.gsi_write)
        _add_indexes(raw.get("LocalSecondaryIndexes"), self.lsi, self.lsi_read, self.lsi_write)

        if raw.get("TableName"):
            self.table_name = str(raw["TableName"])

    def add_all(self, raws: Any) -> None:
        for raw in raws or ():
            self.add(raw)

    def inc_requests(self) -> None:
        self.requests += 1

    def merge(self, other: ConsumedCapacity) -> None:
        self.total += other.total
        self.read += other.read
        self.write += other.write
        self.table += other.table
        self.table_read += other.table_read
        self.table_write += other.table_write
        for mine, theirs in (
            (self.gsi, other.gsi),
            (self.gsi_read, other.gsi_read),
            (self.gsi_write, other.gsi_write),
            (self.lsi, other.lsi),
            (self.lsi_read, other.lsi_read),
            (self.lsi_write, other.lsi_write),
        ):
            for name, units in theirs.items():
                mine[name] = mine.get(name, 0.0) + units
        self.requests += other.requests
        if other.table_name:
            self.table_name = other.table_name


def _add_indexes(
    indexes: Mapping[str, Any] | None,
    total: dict[str, float],
    read: dict[str, float],
    write: dict[str, float],
) -> None:
    for name, consumed in (indexes or {}).items():
        total[name] = total.get(name, 0.0) + _units(consumed, "CapacityUnits")
        if consumed.get("ReadCapacityUnits") is not None:
            read[name] = read.get(name, 0.0) + _units(consumed, "ReadCapacityUnits")
        if consumed.get("WriteCapacityUnits") is not None:
            write[name] = write.get(name, 0.0) + _units(consumed, "WriteCapacityUnits")
