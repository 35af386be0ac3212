from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class NumberValue:
    value: str


@dataclass(frozen=True)
class BinaryValue:
    value: bytes


@dataclass(frozen=True)
class StringSetValue:
    value: frozenset[str]

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("string set must not be empty")


@dataclass(frozen=True)
class NumberSetValue:
    value: frozenset[str]

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("number set must not be empty")


@dataclass(frozen=True)
class BinarySetValue:
    value: frozenset[bytes]

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("binary set must not be empty")


@dataclass(frozen=True)
class ListValue:
    value: tuple[AttributeValue, ...] = ()


@dataclass(frozen=True)
class MapValue:
    value: Mapping[str, AttributeValue] = field(default_factory=dict)


@dataclass(frozen=True)
class BoolValue:
    value: bool


@dataclass(frozen=True)
class NullValue:
    pass


NULL = NullValue()

type AttributeValue = (
    StringValue
    | NumberValue
    | BinaryValue
    | StringSetValue
    | NumberSetValue
    | BinarySetValue
    | ListValue
    | MapValue
    | BoolValue
    | NullValue
)

type Item = dict[str, AttributeValue]

ATTRIBUTE_VALUE_TYPES: tuple[type, ...] = (
    StringValue,
    NumberValue,
    BinaryValue,
    StringSetValue,
    NumberSetValue,
    BinarySetValue,
    ListValue,
    MapValue,
    BoolValue,
    NullValue,
)


def is_attribute_value(value: Any) -> bool:
    return isinstance(value, ATTRIBUTE_VALUE_TYPES)


def string_set(values: Iterable[str]) -> StringSetValue:
    return StringSetValue(frozenset(values))


def number_set(values: Iterable[Any]) -> NumberSetValue:
    return NumberSetValue(frozenset(str(v) for v in values))


def binary_set(values: Iterable[bytes]) -> BinarySetValue:
    return BinarySetValue(frozenset(bytes(v) for v in values))


def to_wire(av: AttributeValue) -> dict[str, Any]:
    """Convert an attribute value into the dict shape used by the boto3 low-level client."""
    match av:
        case StringValue(value=v):
            return {"S": v}
        case NumberValue(value=v):
            return {"N": v}
        case BinaryValue(value=v):
            return {"B": v}
        case StringSetValue(value=v):
            return {"SS": sorted(v)}
        case NumberSetValue(value=v):
            return {"NS": sorted(v)}
        case BinarySetValue(value=v):
            return {"BS": sorted(v)}
        case ListValue(value=v):
            return {"L": [to_wire(x) for x in v]}
        case MapValue(value=v):
            return {"M": {k: to_wire(x) for k, x in v.items()}}
        case BoolValue(value=v):
            return {"BOOL": v}
        case NullValue():
            return {"NULL": True}
    raise TypeError(f"not an attribute value: {type(av).__name__}")


def from_wire(raw: Mapping[str, Any]) -> AttributeValue:
    """Convert a boto3 attribute value dict into an attribute value.

    boto3 hands binary data back either as ``bytes`` or as
    ``boto3.dynamodb.types.Binary``; both are normalized to ``bytes``.
    """
    if len(raw) != 1:
        raise ValueError(f"attribute value must have exactly one tag, got {sorted(raw)!r}")

    ((tag, v),) = raw.items()
    if tag == "S":
        return StringValue(str(v))
    if tag == "N":
        return NumberValue(str(v))
    if tag == "B":
        return BinaryValue(_as_bytes(v))
    if tag == "SS":
        return StringSetValue(frozenset(str(x) for x in v))
    if tag == "NS":
        return NumberSetValue(frozenset(str(x) for x in v))
    if tag == "BS":
        return BinarySetValue(frozenset(_as_bytes(x) for x in v))
    if tag == "L":
        return ListValue(tuple(from_wire(x) for x in v))
    if tag == "M":
        return MapValue({k: from_wire(x) for k, x in v.items()})
    if tag == "BOOL":
        return BoolValue(bool(v))
    if tag == "NULL":
        return NULL
    raise ValueError(f"unknown attribute value tag: {tag}")


def item_to_wire(item: Mapping[str, AttributeValue]) -> dict[str, Any]:
    return {k: to_wire(v) for k, v in item.items()}


def item_from_wire(raw: Mapping[str, Any] | None) -> Item | None:
    if raw is None:
        return None
    return {k: from_wire(v) for k, v in raw.items()}


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    inner = getattr(value, "value", None)
    if isinstance(inner, (bytes, bytearray)):
        return bytes(inner)
    raise TypeError(f"binary attribute must be bytes, got {type(value).__name__}")


_TAGS: dict[type, str] = {
    StringValue: "S",
    NumberValue: "N",
    BinaryValue: "B",
    StringSetValue: "SS",
    NumberSetValue: "NS",
    BinarySetValue: "BS",
    ListValue: "L",
    MapValue: "M",
    BoolValue: "BOOL",
    NullValue: "NULL",
}


def tag_of(av: AttributeValue) -> str:
    return _TAGS[type(av)]
