from __future__ import annotations

import datetime as dt
import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .keys import KeyType


class Status(enum.StrEnum):
    CREATING = "CREATING"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    ACTIVE = "ACTIVE"
    INACCESSIBLE_ENCRYPTION_CREDENTIALS = "INACCESSIBLE_ENCRYPTION_CREDENTIALS"
    ARCHIVING = "ARCHIVING"
    ARCHIVED = "ARCHIVED"
    # not a service status; used to wait for a table to be deleted
    DELETED = "_gone"


class StreamView(enum.StrEnum):
    KEYS_ONLY = "KEYS_ONLY"
    NEW_IMAGE = "NEW_IMAGE"
    OLD_IMAGE = "OLD_IMAGE"
    NEW_AND_OLD_IMAGES = "NEW_AND_OLD_IMAGES"


class IndexProjection(enum.StrEnum):
    KEYS_ONLY = "KEYS_ONLY"
    ALL = "ALL"
    INCLUDE = "INCLUDE"


@dataclass(frozen=True)
class Throughput:
    read: int = 0
    write: int = 0
    last_increase: dt.datetime | None = None
    last_decrease: dt.datetime | None = None
    decreases_today: int = 0


@dataclass(frozen=True)
class Index:
    name: str
    arn: str = ""
    status: str = ""
    backfilling: bool = False
    local: bool = False
    hash_key: str = ""
    hash_key_type: KeyType | None = None
    range_key: str = ""
    range_key_type: KeyType | None = None
    throughput: Throughput = field(default_factory=Throughput)
    items: int = 0
    size: int = 0
    projection_type: IndexProjection | None = None
    projection_attribs: tuple[str, ...] = ()


@dataclass(frozen=True)
class Description:
    name: str
    arn: str = ""
    status: str = ""
    created: dt.datetime | None = None
    hash_key: str = ""
    hash_key_type: KeyType | None = None
    range_key: str = ""
    range_key_type: KeyType | None = None
    throughput: Throughput = field(default_factory=Throughput)
    on_demand: bool = False
    items: int = 0
    size: int = 0
    gsi: tuple[Index, ...] = ()
    lsi: tuple[Index, ...] = ()
    stream_enabled: bool = False
    stream_view: StreamView | None = None
    latest_stream_arn: str = ""
    latest_stream_label: str = ""

    @property
    def active(self) -> bool:
        return self.status == Status.ACTIVE

    def index(self, name: str) -> Index | None:
        for idx in (*self.gsi, *self.lsi):
            if idx.name == name:
                return idx
        return None

    def keys(self, index: str | None = None) -> frozenset[str] | None:
        """Attribute names making up a paging key for the table or ``index``.

        Returns ``None`` when ``index`` is not one of this table's indexes.
        """
        names = {self.hash_key}
        if self.range_key:
            names.add(self.range_key)
        if not index:
            return frozenset(names)

        idx = self.index(index)
        if idx is None:
            return None
        names.add(idx.hash_key)
        if idx.range_key:
            names.add(idx.range_key)
        return frozenset(names)


def new_description(table: Mapping[str, Any]) -> Description:
    defs = table.get("AttributeDefinitions") or []
    hash_key, range_key = schema_keys(table.get("KeySchema") or [])
    throughput = new_throughput(table.get("ProvisionedThroughput"))

    billing = (table.get("BillingModeSummary") or {}).get("BillingMode")
    stream = table.get("StreamSpecification") or {}

    gsi = tuple(
        _new_index(raw, defs, local=False, throughput=new_throughput(raw.get("ProvisionedThroughput")))
        for raw in table.get("GlobalSecondaryIndexes") or []
    )
    # local indexes share the table's throughput and are always active
    lsi = tuple(
        _new_index(raw, defs, local=True, throughput=throughput)
        for raw in table.get("LocalSecondaryIndexes") or []
    )

    return Description(
        name=str(table.get("TableName", "")),
        arn=str(table.get("TableArn", "")),
        status=str(table.get("TableStatus", "")),
        created=table.get("CreationDateTime"),
        hash_key=hash_key,
        hash_key_type=lookup_attribute_type(defs, hash_key),
        range_key=range_key,
        range_key_type=lookup_attribute_type(defs, range_key),
        throughput=throughput,
        on_demand=billing == "PAY_PER_REQUEST",
        items=int(table.get("ItemCount") or 0),
        size=int(table.get("TableSizeBytes") or 0),
        gsi=gsi,
        lsi=lsi,
        stream_enabled=bool(stream.get("StreamEnabled", False)),
        stream_view=StreamView(stream["StreamViewType"]) if stream.get("StreamViewType") else None,
        latest_stream_arn=str(table.get("LatestStreamArn", "")),
        latest_stream_label=str(table.get("LatestStreamLabel", "")),
    )


def _new_index(
    raw: Mapping[str, Any], defs: Sequence[Mapping[str, Any]], *, local: bool, throughput: Throughput
) -> Index:
    hash_key, range_key = schema_keys(raw.get("KeySchema") or [])
    projection = raw.get("Projection") or {}
    return Index(
        name=str(raw.get("IndexName", "")),
        arn=str(raw.get("IndexArn", "")),
        status=Status.ACTIVE if local else str(raw.get("IndexStatus", "")),
        backfilling=bool(raw.get("Backfilling", False)),
        local=local,
        hash_key=hash_key,
        hash_key_type=lookup_attribute_type(defs, hash_key),
        range_key=range_key,
        range_key_type=lookup_attribute_type(defs, range_key),
        throughput=throughput,
        items=int(raw.get("ItemCount") or 0),
        size=int(raw.get("IndexSizeBytes") or 0),
        projection_type=IndexProjection(projection["ProjectionType"]) if projection.get("ProjectionType") else None,
        projection_attribs=tuple(projection.get("NonKeyAttributes") or ()),
    )


def new_throughput(raw: Mapping[str, Any] | None) -> Throughput:
    if not raw:
        return Throughput()
    return Throughput(
        read=int(raw.get("ReadCapacityUnits") or 0),
        write=int(raw.get("WriteCapacityUnits") or 0),
        last_increase=raw.get("LastIncreaseDateTime"),
        last_decrease=raw.get("LastDecreaseDateTime"),
        decreases_today=int(raw.get("NumberOfDecreasesToday") or 0),
    )


def schema_keys(schema: Sequence[Mapping[str, Any]]) -> tuple[str, str]:
    hash_key = range_key = ""
    for element in schema:
        if element.get("KeyType") == "HASH":
            hash_key = str(element["AttributeName"])
        elif element.get("KeyType") == "RANGE":
            range_key = str(element["AttributeName"])
    return hash_key, range_key


def lookup_attribute_type(defs: Sequence[Mapping[str, Any]], name: str) -> KeyType | None:
    if not name:
        return None
    for d in defs:
        if d.get("AttributeName") == name:
            return KeyType(d["AttributeType"])
    return None
