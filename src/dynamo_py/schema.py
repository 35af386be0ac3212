from __future__ import annotations

import datetime as dt
import enum
import logging
import types
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Self, Union, get_args, get_origin

from .context import Context, ensure
from .describe import Description, Index, IndexProjection, Status, StreamView, new_description
from .encoding import has_hook
from .errors import DynamoPyError, ResourceNotFoundError, ValidationError
from .keys import KeyType
from .tags import EncodeFlags, RecordField, describe_record

if TYPE_CHECKING:
    from .table import Table

logger = logging.getLogger(__name__)


def key_type_of(f: RecordField) -> KeyType | None:
    """Scalar attribute type a record field is stored as, if it can be a key."""
    hint = _unwrap_optional(f.type_hint)
    if not isinstance(hint, type):
        return None
    if issubclass(hint, dt.datetime):
        return KeyType.NUMBER if f.flags & EncodeFlags.UNIX_TIME else KeyType.STRING
    if issubclass(hint, enum.Enum):
        return KeyType.NUMBER if issubclass(hint, int) else KeyType.STRING
    if issubclass(hint, bool):
        return None
    if issubclass(hint, (str, uuid.UUID, dt.date)) or has_hook(hint, "marshal_text"):
        return KeyType.STRING
    if issubclass(hint, (int, float, Decimal)):
        return KeyType.NUMBER
    if issubclass(hint, (bytes, bytearray)):
        return KeyType.BINARY
    return None


def _unwrap_optional(hint: Any) -> Any:
    origin = get_origin(hint)
    if origin is not Union and origin is not types.UnionType:
        return hint
    non_none = [a for a in get_args(hint) if a is not type(None)]
    return non_none[0] if len(non_none) == 1 else hint


def _key_schema(hash_key: str, range_key: str = "") -> list[dict[str, str]]:
    schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return schema


def _throughput(read: int, write: int) -> dict[str, int]:
    return {"ReadCapacityUnits": read, "WriteCapacityUnits": write}


def _projection(kind: IndexProjection, attribs: tuple[str, ...] | list[str] = ()) -> dict[str, Any]:
    proj: dict[str, Any] = {"ProjectionType": str(kind)}
    if kind is IndexProjection.INCLUDE and attribs:
        proj["NonKeyAttributes"] = list(attribs)
    return proj


class _AttributeDefs:
    def __init__(self) -> None:
        self.types: dict[str, KeyType] = {}

    def add(self, name: str, key_type: KeyType | None) -> None:
        if key_type is None:
            raise ValidationError(f"invalid type for key: {name}")
        self.types.setdefault(name, key_type)

    def wire(self) -> list[dict[str, str]]:
        return [{"AttributeName": n, "AttributeType": str(t)} for n, t in self.types.items()]


class CreateTable:
    """Creates a table whose keys and indexes are inferred from a record type.

    Fields tagged ``hash``/``range`` form the primary key; ``index`` and
    ``local_index`` memberships become secondary indexes projecting ALL.
    Tables are provisioned at 1 read and 1 write unit unless ``on_demand``
    or ``provision`` say otherwise.
    """

    def __init__(self, table: Table, record_type: type) -> None:
        self.table = table
        self._attribs = _AttributeDefs()
        self._hash_key = ""
        self._range_key = ""
        self._gsi: dict[str, dict[str, Any]] = {}
        self._lsi: dict[str, dict[str, Any]] = {}
        self._read = 1
        self._write = 1
        self._on_demand = False
        self._stream: StreamView | None = None
        self._tags: dict[str, str] = {}
        self._err: Exception | None = None

        try:
            self._from_record(record_type)
        except DynamoPyError as err:
            self._set_error(err)

    def provision(self, read: int, write: int) -> Self:
        self._read, self._write = read, write
        return self

    def provision_index(self, index: str, read: int, write: int) -> Self:
        self._gsi.setdefault(index, {})["ProvisionedThroughput"] = _throughput(read, write)
        return self

    def on_demand(self, enabled: bool = True) -> Self:
        self._on_demand = enabled
        return self

    def stream(self, view: StreamView) -> Self:
        self._stream = view
        return self

    def project(self, index: str, projection: IndexProjection, *include: str) -> Self:
        proj = _projection(IndexProjection(projection), include)
        if index in self._gsi:
            self._gsi[index]["Projection"] = proj
        elif index in self._lsi:
            self._lsi[index]["Projection"] = proj
        else:
            self._set_error(ValidationError(f"no such index: {index}"))
        return self

    def index(self, index: Index) -> Self:
        """Add or replace a secondary index described by ``index``."""
        try:
            self._attribs.add(index.hash_key, index.hash_key_type)
            if index.range_key:
                self._attribs.add(index.range_key, index.range_key_type)
        except ValidationError as err:
            self._set_error(err)
            return self

        spec = self._lsi if index.local else self._gsi
        idx = spec.setdefault(index.name, {})
        idx["KeySchema"] = _key_schema(index.hash_key, index.range_key)
        if index.projection_type is not None:
            idx["Projection"] = _projection(index.projection_type, index.projection_attribs)
        if not index.local and (index.throughput.read or index.throughput.write):
            idx["ProvisionedThroughput"] = _throughput(index.throughput.read, index.throughput.write)
        return self

    def tag(self, key: str, value: str) -> Self:
        self._tags[key] = value
        return self

    def run(self, *, ctx: Context | None = None) -> None:
        self.check()
        self.table.db.call(ctx, "create_table", self.input())

    def wait(self, *, ctx: Context | None = None) -> Description:
        """Create the table and block until it is ACTIVE."""
        self.run(ctx=ctx)
        return self.table.wait(Status.ACTIVE, ctx=ctx)

    def check(self) -> None:
        if self._err is not None:
            raise self._err
        if not self._hash_key:
            raise ValidationError(f"create table {self.table.name}: record has no hash key")
        for name, idx in self._gsi.items():
            if not idx.get("KeySchema"):
                raise ValidationError(f"create table {self.table.name}: no such index: {name}")

    def input(self) -> dict[str, Any]:
        req: dict[str, Any] = {
            "TableName": self.table.name,
            "AttributeDefinitions": self._attribs.wire(),
            "KeySchema": _key_schema(self._hash_key, self._range_key),
        }
        if self._on_demand:
            req["BillingMode"] = "PAY_PER_REQUEST"
        else:
            req["BillingMode"] = "PROVISIONED"
            req["ProvisionedThroughput"] = _throughput(self._read, self._write)
        if self._stream is not None:
            req["StreamSpecification"] = {"StreamEnabled": True, "StreamViewType": str(self._stream)}

        if self._lsi:
            req["LocalSecondaryIndexes"] = [
                {
                    "IndexName": name,
                    "KeySchema": self._local_key_schema(idx["KeySchema"]),
                    "Projection": idx.get("Projection") or _projection(IndexProjection.ALL),
                }
                for name, idx in self._lsi.items()
            ]
        if self._gsi:
            gsis: list[dict[str, Any]] = []
            for name, idx in self._gsi.items():
                if not idx.get("KeySchema"):
                    continue
                gsi: dict[str, Any] = {
                    "IndexName": name,
                    "KeySchema": _sorted_schema(idx["KeySchema"]),
                    "Projection": idx.get("Projection") or _projection(IndexProjection.ALL),
                }
                if not self._on_demand:
                    gsi["ProvisionedThroughput"] = idx.get("ProvisionedThroughput") or _throughput(1, 1)
                gsis.append(gsi)
            req["GlobalSecondaryIndexes"] = gsis
        if self._tags:
            req["Tags"] = [{"Key": k, "Value": v} for k, v in self._tags.items()]
        return req

    def _local_key_schema(self, schema: list[dict[str, str]]) -> list[dict[str, str]]:
        # a local index tagged with only its range key shares the table's hash key
        if len(schema) == 1 and schema[0]["KeyType"] == "RANGE":
            schema = [{"AttributeName": self._hash_key, "KeyType": "HASH"}, schema[0]]
        return _sorted_schema(schema)

    def _from_record(self, record_type: type) -> None:
        desc = describe_record(record_type)
        for f in desc.flat:
            if f.key == "hash":
                self._hash_key = f.attribute_name
                self._attribs.add(f.attribute_name, key_type_of(f))
            elif f.key == "range":
                self._range_key = f.attribute_name
                self._attribs.add(f.attribute_name, key_type_of(f))

            for m in f.indexes:
                self._attribs.add(f.attribute_name, key_type_of(f))
                spec = self._lsi if m.local else self._gsi
                schema = spec.setdefault(m.index, {}).setdefault("KeySchema", [])
                schema.append({"AttributeName": f.attribute_name, "KeyType": "HASH" if m.role == "hash" else "RANGE"})

    def _set_error(self, err: Exception) -> None:
        if self._err is None:
            self._err = err


def _sorted_schema(schema: list[dict[str, str]]) -> list[dict[str, str]]:
    return sorted(schema, key=lambda e: 0 if e["KeyType"] == "HASH" else 1)


class UpdateTable:
    """Changes billing, throughput, streams or global indexes of a table."""

    def __init__(self, table: Table) -> None:
        self.table = table
        self._billing = ""
        self._read = 0
        self._write = 0
        self._stream: StreamView | None = None
        self._disable_stream = False
        self._update_idx: dict[str, tuple[int, int]] = {}
        self._create_idx: list[Index] = []
        self._delete_idx: list[str] = []
        self._attribs = _AttributeDefs()
        self._err: Exception | None = None

    def on_demand(self, enabled: bool = True) -> Self:
        self._billing = "PAY_PER_REQUEST" if enabled else "PROVISIONED"
        return self

    def provision(self, read: int, write: int) -> Self:
        self._read, self._write = read, write
        return self

    def provision_index(self, index: str, read: int, write: int) -> Self:
        self._update_idx[index] = (read, write)
        return self

    def create_index(self, index: Index) -> Self:
        if not index.name:
            self._set_error(ValidationError("update table: missing index name"))
        if not index.hash_key:
            self._set_error(ValidationError("update table: missing hash key"))
        if index.hash_key_type is None:
            self._set_error(ValidationError("update table: missing hash key type"))
        if index.range_key and index.range_key_type is None:
            self._set_error(ValidationError("update table: missing range key type"))
        if index.projection_type is None:
            self._set_error(ValidationError("update table: missing projection type"))

        if index.hash_key_type is not None:
            self._attribs.add(index.hash_key, index.hash_key_type)
        if index.range_key and index.range_key_type is not None:
            self._attribs.add(index.range_key, index.range_key_type)
        self._create_idx.append(index)
        return self

    def delete_index(self, name: str) -> Self:
        self._delete_idx.append(name)
        return self

    def stream(self, view: StreamView) -> Self:
        self._stream = view
        return self

    def disable_stream(self) -> Self:
        self._disable_stream = True
        return self

    def run(self, *, ctx: Context | None = None) -> Description:
        if self._err is not None:
            raise self._err
        resp = self.table.db.call(ctx, "update_table", self.input())
        return new_description(resp.get("TableDescription") or {})

    def input(self) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.table.name}
        if self._attribs.types:
            req["AttributeDefinitions"] = self._attribs.wire()
        if self._billing:
            req["BillingMode"] = self._billing
        if self._read or self._write:
            req["ProvisionedThroughput"] = _throughput(self._read, self._write)

        if self._disable_stream:
            req["StreamSpecification"] = {"StreamEnabled": False}
        elif self._stream is not None:
            req["StreamSpecification"] = {"StreamEnabled": True, "StreamViewType": str(self._stream)}

        updates: list[dict[str, Any]] = []
        for name, (read, write) in self._update_idx.items():
            updates.append({"Update": {"IndexName": name, "ProvisionedThroughput": _throughput(read, write)}})
        for index in self._create_idx:
            updates.append({"Create": _create_index_action(index)})
        for name in self._delete_idx:
            updates.append({"Delete": {"IndexName": name}})
        if updates:
            req["GlobalSecondaryIndexUpdates"] = updates
        return req

    def _set_error(self, err: Exception) -> None:
        if self._err is None:
            self._err = err


def _create_index_action(index: Index) -> dict[str, Any]:
    action: dict[str, Any] = {
        "IndexName": index.name,
        "KeySchema": _key_schema(index.hash_key, index.range_key),
        "Projection": _projection(index.projection_type or IndexProjection.ALL, index.projection_attribs),
    }
    if index.throughput.read > 0 and index.throughput.write > 0:
        action["ProvisionedThroughput"] = _throughput(index.throughput.read, index.throughput.write)
    return action


class DeleteTable:
    def __init__(self, table: Table) -> None:
        self.table = table

    def run(self, *, ctx: Context | None = None) -> None:
        self.table.db.call(ctx, "delete_table", {"TableName": self.table.name})

    def wait(self, *, ctx: Context | None = None) -> None:
        """Delete the table and block until it is gone."""
        self.run(ctx=ctx)
        self.table.wait(Status.DELETED, ctx=ctx)


def wait_for_status(table: Table, statuses: tuple[Status, ...], *, ctx: Context | None = None) -> Description:
    """Poll DescribeTable until the table reaches one of ``statuses``.

    ``Status.DELETED`` matches once the table no longer exists. Polling
    backs off per the DB's backoff policy and ends with the context.
    """
    ctx = ensure(ctx)
    want = set(statuses or (Status.ACTIVE,))
    backoff = table.db.backoff.start()
    while True:
        try:
            desc = table.describe(ctx=ctx)
        except ResourceNotFoundError:
            if Status.DELETED in want:
                return Description(name=table.name, status=Status.DELETED)
            desc = None

        if desc is not None and desc.status in want:
            return desc
        delay = backoff.next() or table.db.backoff.max_interval
        logger.debug(
            "waiting for table %s (status=%s want=%s delay=%.3fs)",
            table.name,
            desc.status if desc is not None else "missing",
            ",".join(sorted(want)),
            delay,
        )
        table.db.sleep(ctx, delay)
