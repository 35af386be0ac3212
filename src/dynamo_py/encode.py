from __future__ import annotations

import datetime as dt
import enum
import math
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import fields, is_dataclass
from decimal import Decimal
from typing import Any

from .attributevalue import (
    NULL,
    AttributeValue,
    BinarySetValue,
    BinaryValue,
    BoolValue,
    Item,
    ListValue,
    MapValue,
    NumberSetValue,
    NumberValue,
    StringSetValue,
    StringValue,
    is_attribute_value,
)
from .encoding import has_hook
from .errors import CodecError, SetElementUnsupportedError
from .tags import EncodeFlags, describe_record

_ELEM_FLAGS = EncodeFlags.ALLOW_EMPTY | EncodeFlags.NULL


def marshal(value: Any, flags: EncodeFlags = EncodeFlags.NONE) -> AttributeValue | None:
    """Encode a value as an attribute value.

    Returns ``None`` when the value encodes to nothing and should be left out
    of the enclosing item.
    """
    if is_attribute_value(value):
        return value

    if flags & EncodeFlags.UNIX_TIME and isinstance(value, dt.datetime):
        return NumberValue(str(unix_seconds(value)))

    if value is None:
        return NULL if flags & EncodeFlags.NULL else None

    if not isinstance(value, type) and has_hook(value, "marshal_dynamo"):
        return value.marshal_dynamo()

    if isinstance(value, dt.datetime):
        return StringValue(format_time(value))
    if isinstance(value, dt.date):
        return StringValue(value.isoformat())

    if not isinstance(value, type) and has_hook(value, "marshal_text"):
        return _marshal_string(value.marshal_text(), flags)
    if isinstance(value, uuid.UUID):
        return StringValue(str(value))
    if isinstance(value, enum.Enum):
        return marshal(value.value, flags)

    if isinstance(value, bool):
        return BoolValue(value)
    if isinstance(value, (int, float, Decimal)):
        return NumberValue(format_number(value))
    if isinstance(value, str):
        return _marshal_string(value, flags)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _marshal_bytes(bytes(value), flags)

    if isinstance(value, (set, frozenset)):
        return _marshal_set(value, flags)

    if isinstance(value, Mapping):
        if flags & EncodeFlags.SET:
            members = [k for k, v in value.items() if v is None or v is True]
            return _marshal_set(members, flags)
        return _marshal_map(value, flags)

    if is_dataclass(value) and not isinstance(value, type):
        if has_hook(value, "marshal_dynamo_item"):
            return MapValue(value.marshal_dynamo_item())
        return MapValue(marshal_record(value))

    if isinstance(value, (list, tuple)):
        if flags & EncodeFlags.SET:
            return _marshal_set(value, flags)
        return _marshal_list(value, flags)

    raise CodecError(f"marshal: unsupported type {type(value).__name__}")


def marshal_item(value: Any) -> Item:
    if value is None:
        raise CodecError("marshal item: value is None")

    if isinstance(value, Mapping) and all(is_attribute_value(v) for v in value.values()):
        return {str(k): v for k, v in value.items()}
    if has_hook(value, "marshal_dynamo_item"):
        return dict(value.marshal_dynamo_item())
    if is_dataclass(value) and not isinstance(value, type):
        return marshal_record(value)
    if isinstance(value, Mapping):
        av = _marshal_map(value, EncodeFlags.NONE)
        return dict(av.value) if isinstance(av, MapValue) else {}

    raise CodecError(f"marshal item: unsupported type {type(value).__name__}")


def marshal_record(record: Any) -> Item:
    desc = describe_record(type(record))
    item: Item = {}

    for f in desc.fields:
        value = getattr(record, f.python_name)
        if f.flags & EncodeFlags.OMIT_EMPTY and is_zero(value):
            continue
        if f.converter is not None and value is not None:
            value = f.converter.to_dynamodb(value)
        try:
            av = marshal(value, f.flags)
        except CodecError as err:
            raise _with_context(err, f"{desc.record_type.__name__}.{f.python_name}") from err
        if av is not None:
            item[f.attribute_name] = av

    for emb in desc.embedded:
        inner = getattr(record, emb.python_name)
        if inner is None:
            continue
        for name, av in marshal_record(inner).items():
            item.setdefault(name, av)

    return item


def format_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CodecError(f"marshal: {value!r} is not a valid number")
        if value.is_integer() and abs(value) < 1e16:
            return str(int(value))
        return format(Decimal(repr(value)), "f")
    if not value.is_finite():
        raise CodecError(f"marshal: {value!r} is not a valid number")
    return str(value)


def unix_seconds(value: dt.datetime) -> int:
    """Seconds since the epoch. Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return int(value.timestamp())


def format_time(value: dt.datetime) -> str:
    text = value.isoformat()
    if value.utcoffset() == dt.timedelta(0) and text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def is_zero(value: Any) -> bool:
    if value is None:
        return True
    if has_hook(value, "is_zero"):
        return bool(value.is_zero())
    if has_hook(value, "marshal_dynamo") or has_hook(value, "marshal_text"):
        return False
    if isinstance(value, enum.Enum):
        return False
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    if isinstance(value, (str, bytes, bytearray, memoryview, list, tuple, set, frozenset, Mapping)):
        return len(value) == 0
    if is_dataclass(value) and not isinstance(value, type):
        return all(is_zero(getattr(value, f.name)) for f in fields(value))
    return False


def _marshal_string(value: str, flags: EncodeFlags) -> AttributeValue | None:
    if value:
        return StringValue(value)
    if flags & EncodeFlags.ALLOW_EMPTY:
        return StringValue("")
    if flags & EncodeFlags.NULL:
        return NULL
    return None


def _marshal_bytes(value: bytes, flags: EncodeFlags) -> AttributeValue | None:
    if value:
        return BinaryValue(value)
    if flags & EncodeFlags.ALLOW_EMPTY:
        return BinaryValue(b"")
    if flags & EncodeFlags.NULL:
        return NULL
    return None


def _marshal_list(values: Iterable[Any], flags: EncodeFlags) -> AttributeValue | None:
    # list positions are preserved unless omitemptyelem asks otherwise
    sub = EncodeFlags.NONE if flags & EncodeFlags.OMIT_EMPTY_ELEM else _ELEM_FLAGS
    avs: list[AttributeValue] = []
    for i, v in enumerate(values):
        try:
            av = marshal(v, sub)
        except CodecError as err:
            raise _with_context(err, f"[{i}]") from err
        if av is not None:
            avs.append(av)
    if flags & EncodeFlags.OMIT_EMPTY and not avs:
        return None
    return ListValue(tuple(avs))


def _marshal_map(values: Mapping[Any, Any], flags: EncodeFlags) -> AttributeValue | None:
    sub = EncodeFlags.NONE
    if flags & EncodeFlags.ALLOW_EMPTY_ELEM:
        sub = _ELEM_FLAGS
    elif flags & EncodeFlags.OMIT_EMPTY_ELEM:
        sub = EncodeFlags.OMIT_EMPTY

    avs: dict[str, AttributeValue] = {}
    for k, v in values.items():
        key = _map_key(k)
        if sub & EncodeFlags.OMIT_EMPTY and is_zero(v):
            continue
        try:
            av = marshal(v, sub)
        except CodecError as err:
            raise _with_context(err, f"[{key!r}]") from err
        if av is not None:
            avs[key] = av
    if flags & EncodeFlags.OMIT_EMPTY and not avs:
        return None
    return MapValue(avs)


def _map_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, enum.Enum) and isinstance(key.value, (str, int)):
        return str(key.value)
    if isinstance(key, bool):
        raise CodecError(f"marshal: unsupported map key type {type(key).__name__}")
    if isinstance(key, int):
        return str(key)
    if has_hook(key, "marshal_text"):
        return str(key.marshal_text())
    if isinstance(key, uuid.UUID):
        return str(key)
    raise CodecError(f"marshal: unsupported map key type {type(key).__name__}")


def _set_element(value: Any) -> tuple[str, str | bytes]:
    if isinstance(value, enum.Enum):
        value = value.value
    if isinstance(value, bool):
        raise SetElementUnsupportedError("sets cannot hold booleans")
    if isinstance(value, str):
        return "SS", value
    if has_hook(value, "marshal_text"):
        return "SS", str(value.marshal_text())
    if isinstance(value, uuid.UUID):
        return "SS", str(value)
    if isinstance(value, (int, float, Decimal)):
        return "NS", format_number(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "BS", bytes(value)
    raise SetElementUnsupportedError(f"sets cannot hold {type(value).__name__}")


def _marshal_set(values: Iterable[Any], flags: EncodeFlags) -> AttributeValue | None:
    kind: str | None = None
    members: set[Any] = set()
    for v in values:
        tag, member = _set_element(v)
        if kind is not None and tag != kind:
            raise SetElementUnsupportedError(f"set mixes {kind} and {tag} elements")
        kind = tag
        if flags & EncodeFlags.OMIT_EMPTY_ELEM and (member == "" or member == b"" or member == "0"):
            continue
        members.add(member)

    # sets can't be empty
    if not members:
        return NULL if flags & EncodeFlags.NULL else None
    if kind == "SS":
        return StringSetValue(frozenset(members))
    if kind == "NS":
        return NumberSetValue(frozenset(members))
    return BinarySetValue(frozenset(members))


def _with_context(err: CodecError, where: str) -> CodecError:
    try:
        return type(err)(f"{where}: {err}")
    except TypeError:
        return CodecError(f"{where}: {err}")
