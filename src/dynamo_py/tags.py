from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Literal, Protocol, cast, get_type_hints, overload

from .errors import InvalidTagError, TagCollisionError

type KeyRole = Literal["hash", "range"]

METADATA_KEY = "dynamo"


class EncodeFlags(enum.IntFlag):
    NONE = 0
    SET = enum.auto()
    OMIT_EMPTY = enum.auto()
    OMIT_EMPTY_ELEM = enum.auto()
    ALLOW_EMPTY = enum.auto()
    ALLOW_EMPTY_ELEM = enum.auto()
    NULL = enum.auto()
    UNIX_TIME = enum.auto()


_FLAG_NAMES: dict[str, EncodeFlags] = {
    "set": EncodeFlags.SET,
    "omitempty": EncodeFlags.OMIT_EMPTY,
    "omitemptyelem": EncodeFlags.OMIT_EMPTY_ELEM,
    "allowempty": EncodeFlags.ALLOW_EMPTY,
    "allowemptyelem": EncodeFlags.ALLOW_EMPTY_ELEM,
    "null": EncodeFlags.NULL,
    "unixtime": EncodeFlags.UNIX_TIME,
}


class AttributeConverter(Protocol):
    def to_dynamodb(self, value: Any) -> Any: ...

    def from_dynamodb(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class FieldTag:
    name: str | None = None
    skip: bool = False
    key: KeyRole | None = None
    flags: EncodeFlags = EncodeFlags.NONE


@dataclass(frozen=True)
class IndexMembership:
    index: str
    role: KeyRole
    local: bool = False


def parse_tag(tag: str) -> FieldTag:
    """Parse a ``[name][,hash|range][,flag]*`` field tag.

    An empty name keeps the Python field name; ``-`` skips the field.
    """
    if not tag:
        return FieldTag()

    name, *options = tag.split(",")
    if name == "-":
        return FieldTag(skip=True)

    key: KeyRole | None = None
    flags = EncodeFlags.NONE
    for opt in options:
        opt = opt.strip()
        if not opt:
            continue
        if opt in ("hash", "range"):
            if key is not None and key != opt:
                raise InvalidTagError(f"tag {tag!r}: a field cannot be both hash and range key")
            key = cast(KeyRole, opt)
            continue
        flag = _FLAG_NAMES.get(opt)
        if flag is None:
            raise InvalidTagError(f"tag {tag!r}: unknown option {opt!r}")
        flags |= flag

    if flags & EncodeFlags.OMIT_EMPTY and flags & EncodeFlags.ALLOW_EMPTY:
        raise InvalidTagError(f"tag {tag!r}: omitempty and allowempty are mutually exclusive")

    return FieldTag(name=name.strip() or None, key=key, flags=flags)


def parse_index_spec(spec: str, *, local: bool) -> IndexMembership:
    parts = [p.strip() for p in spec.split(",")]
    if len(parts) != 2 or not parts[0]:
        raise InvalidTagError(f"index spec {spec!r}: expected '<indexName>,hash|range'")
    name, role = parts
    if role not in ("hash", "range"):
        raise InvalidTagError(f"index spec {spec!r}: role must be hash or range")
    return IndexMembership(index=name, role=cast(KeyRole, role), local=local)


@overload
def dynamo_field(
    tag: str = "",
    *,
    index: Sequence[str] = (),
    local_index: Sequence[str] = (),
    embed: bool = False,
    converter: AttributeConverter | None = None,
) -> Any: ...


@overload
def dynamo_field(
    tag: str = "",
    *,
    index: Sequence[str] = (),
    local_index: Sequence[str] = (),
    embed: bool = False,
    converter: AttributeConverter | None = None,
    default: Any,
) -> Any: ...


@overload
def dynamo_field(
    tag: str = "",
    *,
    index: Sequence[str] = (),
    local_index: Sequence[str] = (),
    embed: bool = False,
    converter: AttributeConverter | None = None,
    default_factory: Any,
) -> Any: ...


def dynamo_field(
    tag: str = "",
    *,
    index: Sequence[str] = (),
    local_index: Sequence[str] = (),
    embed: bool = False,
    converter: AttributeConverter | None = None,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("dynamo_field: cannot set both default and default_factory")

    opts: dict[str, Any] = {
        "tag": tag,
        "index": tuple(index),
        "local_index": tuple(local_index),
        "embed": embed,
        "converter": converter,
    }
    return field(default=default, default_factory=default_factory, metadata={METADATA_KEY: opts})


@dataclass(frozen=True)
class RecordField:
    python_name: str
    attribute_name: str
    type_hint: Any
    flags: EncodeFlags = EncodeFlags.NONE
    key: KeyRole | None = None
    indexes: tuple[IndexMembership, ...] = ()
    converter: AttributeConverter | None = None
    path: tuple[str, ...] = ()
    depth: int = 0


@dataclass(frozen=True)
class EmbeddedRecord:
    python_name: str
    record_type: type


@dataclass(frozen=True)
class RecordDescriptor:
    record_type: type
    fields: tuple[RecordField, ...]
    embedded: tuple[EmbeddedRecord, ...] = ()
    flat: tuple[RecordField, ...] = ()

    def attribute(self, attribute_name: str) -> RecordField | None:
        for f in self.flat:
            if f.attribute_name == attribute_name:
                return f
        return None

    @property
    def hash_key(self) -> RecordField | None:
        return next((f for f in self.flat if f.key == "hash"), None)

    @property
    def range_key(self) -> RecordField | None:
        return next((f for f in self.flat if f.key == "range"), None)

    def index_keys(self, *, local: bool) -> dict[str, dict[KeyRole, RecordField]]:
        out: dict[str, dict[KeyRole, RecordField]] = {}
        for f in self.flat:
            for membership in f.indexes:
                if membership.local != local:
                    continue
                out.setdefault(membership.index, {})[membership.role] = f
        return out


_descriptors: dict[type, RecordDescriptor] = {}


def is_record_type(tp: Any) -> bool:
    return isinstance(tp, type) and is_dataclass(tp)


def describe_record(record_type: type) -> RecordDescriptor:
    """Return the cached descriptor for a dataclass record type."""
    cached = _descriptors.get(record_type)
    if cached is not None:
        return cached

    if not is_record_type(record_type):
        raise InvalidTagError(f"{record_type!r} is not a dataclass record")

    desc = _build_descriptor(record_type)
    _descriptors[record_type] = desc
    return desc


def _type_hints(record_type: type) -> dict[str, Any]:
    try:
        return get_type_hints(record_type)
    except (NameError, TypeError):
        return {f.name: f.type for f in fields(record_type)}


def _build_descriptor(record_type: type) -> RecordDescriptor:
    hints = _type_hints(record_type)
    direct: list[RecordField] = []
    embedded: list[EmbeddedRecord] = []

    for dc_field in fields(record_type):
        opts = cast(dict[str, Any], dc_field.metadata.get(METADATA_KEY, {}))
        tag = parse_tag(str(opts.get("tag", "")))
        if tag.skip:
            continue

        hint = hints.get(dc_field.name, Any)
        if opts.get("embed"):
            if not is_record_type(hint):
                raise InvalidTagError(f"{record_type.__name__}.{dc_field.name}: embed requires a dataclass type")
            embedded.append(EmbeddedRecord(python_name=dc_field.name, record_type=hint))
            continue

        memberships = tuple(parse_index_spec(s, local=False) for s in opts.get("index", ())) + tuple(
            parse_index_spec(s, local=True) for s in opts.get("local_index", ())
        )
        direct.append(
            RecordField(
                python_name=dc_field.name,
                attribute_name=tag.name or dc_field.name,
                type_hint=hint,
                flags=tag.flags,
                key=tag.key,
                indexes=memberships,
                converter=cast(AttributeConverter | None, opts.get("converter")),
                path=(dc_field.name,),
            )
        )

    flat = _flatten(record_type, direct, embedded)
    return RecordDescriptor(
        record_type=record_type,
        fields=tuple(direct),
        embedded=tuple(embedded),
        flat=tuple(flat),
    )


def _flatten(
    record_type: type, direct: list[RecordField], embedded: list[EmbeddedRecord]
) -> list[RecordField]:
    by_name: dict[str, RecordField] = {}
    for f in direct:
        if f.attribute_name in by_name:
            raise TagCollisionError(
                f"{record_type.__name__}: fields {by_name[f.attribute_name].python_name!r} and "
                f"{f.python_name!r} both map to attribute {f.attribute_name!r}"
            )
        by_name[f.attribute_name] = f

    # embedded records contribute attributes one level deeper; the outer field wins
    inner: dict[str, RecordField] = {}
    for emb in embedded:
        for f in describe_record(emb.record_type).flat:
            nested = RecordField(
                python_name=f.python_name,
                attribute_name=f.attribute_name,
                type_hint=f.type_hint,
                flags=f.flags,
                key=f.key,
                indexes=f.indexes,
                converter=f.converter,
                path=(emb.python_name, *f.path),
                depth=f.depth + 1,
            )
            if nested.attribute_name in by_name:
                continue
            other = inner.get(nested.attribute_name)
            if other is not None and other.depth == nested.depth:
                raise TagCollisionError(
                    f"{record_type.__name__}: embedded fields {'.'.join(other.path)!r} and "
                    f"{'.'.join(nested.path)!r} both map to attribute {nested.attribute_name!r}"
                )
            if other is None or nested.depth < other.depth:
                inner[nested.attribute_name] = nested

    return [*by_name.values(), *inner.values()]
