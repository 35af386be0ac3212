from __future__ import annotations

import collections.abc as cabc
import datetime as dt
import enum
import re
import types
import typing
import uuid
from dataclasses import MISSING, fields, is_dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, TypeAliasType, Union, get_args, get_origin

from .attributevalue import (
    ATTRIBUTE_VALUE_TYPES,
    AttributeValue,
    BinarySetValue,
    BinaryValue,
    BoolValue,
    Item,
    ListValue,
    MapValue,
    NullValue,
    NumberSetValue,
    NumberValue,
    StringSetValue,
    StringValue,
    tag_of,
)
from .encoding import AWSEncoding, has_hook
from .errors import CodecError, KindMismatchError, NullInNonNullableError
from .tags import describe_record, is_record_type

_INT_RE = re.compile(r"^[+-]?\d+$")

_ZERO_VALUES: dict[Any, Any] = {
    str: "",
    int: 0,
    float: 0.0,
    Decimal: Decimal(0),
    bool: False,
    bytes: b"",
}

_ZERO_CONTAINERS: dict[Any, type] = {
    list: list,
    cabc.Sequence: list,
    cabc.MutableSequence: list,
    cabc.Iterable: list,
    tuple: tuple,
    set: set,
    cabc.Set: set,
    cabc.MutableSet: set,
    frozenset: frozenset,
    bytearray: bytearray,
    dict: dict,
    cabc.Mapping: dict,
    cabc.MutableMapping: dict,
}


def unmarshal(av: AttributeValue, out: Any = Any) -> Any:
    """Decode an attribute value into ``out``.

    ``out`` is a type or type hint and a new value is returned. A dataclass
    instance is filled in place from a map value.
    """
    if is_dataclass(out) and not isinstance(out, type):
        if not isinstance(av, MapValue):
            raise _mismatch(av, type(out), "")
        return decode_record(dict(av.value), type(out), "", instance=out)
    return _decode(av, out, "")


def unmarshal_item(item: Item, out: Any = dict) -> Any:
    """Decode an item.

    ``out`` may be a record type, ``dict`` (plain Python values), a mapping
    type hint such as ``Item``, a type providing ``unmarshal_dynamo_item``,
    or an existing dataclass instance, which is filled in place and returned.
    """
    if is_dataclass(out) and not isinstance(out, type):
        return decode_record(item, type(out), "", instance=out)
    return _decode(MapValue(item), out, "")


def unmarshal_append(item: Item, dst: list[Any], out: Any = dict) -> list[Any]:
    dst.append(unmarshal_item(item, out))
    return dst


def to_python(av: AttributeValue) -> Any:
    match av:
        case StringValue(value=v):
            return v
        case NumberValue(value=v):
            return parse_number(v)
        case BinaryValue(value=v):
            return v
        case StringSetValue(value=v):
            return set(v)
        case NumberSetValue(value=v):
            return {parse_number(x) for x in v}
        case BinarySetValue(value=v):
            return set(v)
        case ListValue(value=v):
            return [to_python(x) for x in v]
        case MapValue(value=v):
            return {k: to_python(x) for k, x in v.items()}
        case BoolValue(value=v):
            return v
        case NullValue():
            return None
    raise CodecError(f"unknown attribute value: {type(av).__name__}")


def parse_number(text: str) -> int | Decimal:
    if _INT_RE.match(text):
        return int(text)
    try:
        return Decimal(text)
    except InvalidOperation as err:
        raise CodecError(f"invalid number {text!r}") from err


def parse_time(text: str) -> dt.datetime:
    return dt.datetime.fromisoformat(text)


def decode_record(
    item: Item,
    record_type: type,
    path: str,
    *,
    instance: Any | None = None,
    exclude: frozenset[str] = frozenset(),
) -> Any:
    desc = describe_record(record_type)
    where = path or record_type.__name__
    values: dict[str, Any] = {}

    for f in desc.fields:
        if f.attribute_name in exclude:
            continue
        av = item.get(f.attribute_name)
        if av is None:
            continue
        value = _decode(av, f.type_hint, f"{where}.{f.python_name}")
        if f.converter is not None and value is not None:
            value = f.converter.from_dynamodb(value)
        values[f.python_name] = value

    shadowed = exclude | {f.attribute_name for f in desc.fields}
    for emb in desc.embedded:
        current = getattr(instance, emb.python_name, None) if instance is not None else None
        values[emb.python_name] = decode_record(
            item,
            emb.record_type,
            f"{where}.{emb.python_name}",
            instance=current,
            exclude=shadowed,
        )

    init_values: dict[str, Any] = {}
    late_values: dict[str, Any] = {}
    for dc_field in fields(record_type):
        if dc_field.name in values:
            value = values[dc_field.name]
        elif dc_field.default is not MISSING:
            value = dc_field.default
        elif dc_field.default_factory is not MISSING:
            value = dc_field.default_factory()
        elif dc_field.init:
            value = _zero_or_none(_field_hint(desc, dc_field))
        else:
            continue
        if dc_field.init:
            init_values[dc_field.name] = value
        else:
            late_values[dc_field.name] = value

    if instance is not None:
        for name, value in (init_values | late_values).items():
            object.__setattr__(instance, name, value)
        return instance

    try:
        record = record_type(**init_values)
    except TypeError as err:
        raise CodecError(f"{where}: {err}") from err
    for name, value in late_values.items():
        object.__setattr__(record, name, value)
    return record


def _field_hint(desc: Any, dc_field: Any) -> Any:
    for f in desc.fields:
        if f.python_name == dc_field.name:
            return f.type_hint
    return dc_field.type if not isinstance(dc_field.type, str) else Any


def _zero_or_none(tp: Any) -> Any:
    try:
        return _zero_value(tp, "")
    except NullInNonNullableError:
        return None


def _resolve(tp: Any) -> Any:
    while isinstance(tp, TypeAliasType) and tp is not AttributeValue:
        tp = tp.__value__
    if get_origin(tp) is typing.Annotated:
        return _resolve(get_args(tp)[0])
    return tp


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", None) or repr(tp)


def _mismatch(av: AttributeValue, tp: Any, path: str) -> KindMismatchError:
    return KindMismatchError(path=path, expected=_type_name(tp), got=tag_of(av))


def _decode(av: AttributeValue, tp: Any, path: str) -> Any:
    if tp is AttributeValue:
        return av
    tp = _resolve(tp)

    if tp is Any or tp is object:
        return to_python(av)

    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        return _decode_union(av, tp, path)

    if isinstance(av, NullValue):
        if tp is type(None):
            return None
        return _zero_value(tp, path)

    if isinstance(tp, type):
        if issubclass(tp, ATTRIBUTE_VALUE_TYPES):
            if not isinstance(av, tp):
                raise _mismatch(av, tp, path)
            return av
        if issubclass(tp, AWSEncoding):
            return tp.unmarshal_dynamo(av)
        if has_hook(tp, "unmarshal_dynamo"):
            return tp.unmarshal_dynamo(av)
        scalar = _decode_scalar(av, tp, path)
        if scalar is not _NOT_SCALAR:
            return scalar
        if is_record_type(tp):
            if not isinstance(av, MapValue):
                raise _mismatch(av, tp, path)
            if has_hook(tp, "unmarshal_dynamo_item"):
                return tp.unmarshal_dynamo_item(dict(av.value))
            return decode_record(dict(av.value), tp, path)
        if has_hook(tp, "unmarshal_dynamo_item"):
            if not isinstance(av, MapValue):
                raise _mismatch(av, tp, path)
            return tp.unmarshal_dynamo_item(dict(av.value))

    container = origin if origin is not None else tp
    args = get_args(tp)
    if container in (list, cabc.Sequence, cabc.MutableSequence, cabc.Iterable, cabc.Collection):
        return _decode_list(av, args[0] if args else Any, path)
    if container is tuple:
        return _decode_tuple(av, args, path)
    if container in (set, cabc.Set, cabc.MutableSet):
        return set(_decode_list(av, args[0] if args else Any, path))
    if container is frozenset:
        return frozenset(_decode_list(av, args[0] if args else Any, path))
    if container in (dict, cabc.Mapping, cabc.MutableMapping):
        key_type, value_type = args if len(args) == 2 else (str, Any)
        return _decode_map(av, key_type, value_type, path)

    raise CodecError(f"{path or '<root>'}: unsupported decode target {_type_name(tp)}")


def _decode_union(av: AttributeValue, tp: Any, path: str) -> Any:
    members = get_args(tp)
    nullable = type(None) in members
    non_none = [m for m in members if m is not type(None)]
    if isinstance(av, NullValue) and nullable:
        return None
    if len(non_none) == 1:
        return _decode(av, non_none[0], path)
    for member in non_none:
        try:
            return _decode(av, member, path)
        except CodecError:
            continue
    raise _mismatch(av, tp, path)


class _NotScalar:
    pass


_NOT_SCALAR = _NotScalar()


def _decode_scalar(av: AttributeValue, tp: type, path: str) -> Any:
    if issubclass(tp, bool):
        if not isinstance(av, BoolValue):
            raise _mismatch(av, tp, path)
        return av.value
    if issubclass(tp, enum.Enum):
        raw = to_python(av)
        try:
            return tp(raw)
        except ValueError as err:
            raise CodecError(f"{path or '<root>'}: {raw!r} is not a valid {tp.__name__}") from err
    if issubclass(tp, dt.datetime):
        if isinstance(av, StringValue):
            try:
                return parse_time(av.value)
            except ValueError as err:
                raise CodecError(f"{path or '<root>'}: invalid time {av.value!r}") from err
        if isinstance(av, NumberValue):
            return dt.datetime.fromtimestamp(int(Decimal(av.value)), tz=dt.UTC)
        raise _mismatch(av, tp, path)
    if issubclass(tp, dt.date):
        if not isinstance(av, StringValue):
            raise _mismatch(av, tp, path)
        return dt.date.fromisoformat(av.value)
    if has_hook(tp, "unmarshal_text"):
        if not isinstance(av, StringValue):
            raise _mismatch(av, tp, path)
        return tp.unmarshal_text(av.value)
    if issubclass(tp, uuid.UUID):
        if not isinstance(av, StringValue):
            raise _mismatch(av, tp, path)
        return tp(av.value)
    if issubclass(tp, int):
        if not isinstance(av, NumberValue):
            raise _mismatch(av, tp, path)
        number = parse_number(av.value)
        if isinstance(number, Decimal):
            if number != number.to_integral_value():
                raise CodecError(f"{path or '<root>'}: {av.value} is not an integer")
            number = int(number)
        return tp(number)
    if issubclass(tp, float):
        if not isinstance(av, NumberValue):
            raise _mismatch(av, tp, path)
        return tp(av.value)
    if issubclass(tp, Decimal):
        if not isinstance(av, NumberValue):
            raise _mismatch(av, tp, path)
        return tp(av.value)
    if issubclass(tp, str):
        if not isinstance(av, StringValue):
            raise _mismatch(av, tp, path)
        return tp(av.value)
    if issubclass(tp, (bytes, bytearray)):
        if not isinstance(av, BinaryValue):
            raise _mismatch(av, tp, path)
        return tp(av.value)
    return _NOT_SCALAR


def _elements(av: AttributeValue, tp: Any, path: str) -> list[AttributeValue]:
    match av:
        case ListValue(value=v):
            return list(v)
        case StringSetValue(value=v):
            return [StringValue(x) for x in sorted(v)]
        case NumberSetValue(value=v):
            return [NumberValue(x) for x in sorted(v, key=Decimal)]
        case BinarySetValue(value=v):
            return [BinaryValue(x) for x in sorted(v)]
    raise _mismatch(av, tp, path)


def _decode_list(av: AttributeValue, elem: Any, path: str) -> list[Any]:
    return [_decode(x, elem, f"{path}[{i}]") for i, x in enumerate(_elements(av, list, path))]


def _decode_tuple(av: AttributeValue, args: tuple[Any, ...], path: str) -> tuple[Any, ...]:
    if not args or (len(args) == 2 and args[1] is Ellipsis):
        return tuple(_decode_list(av, args[0] if args else Any, path))
    elems = _elements(av, tuple, path)
    if len(elems) != len(args):
        raise CodecError(f"{path or '<root>'}: expected {len(args)} elements, got {len(elems)}")
    return tuple(_decode(x, t, f"{path}[{i}]") for i, (x, t) in enumerate(zip(elems, args, strict=True)))


def _decode_map(av: AttributeValue, key_type: Any, value_type: Any, path: str) -> dict[Any, Any]:
    if isinstance(av, (StringSetValue, NumberSetValue, BinarySetValue)):
        # presence-as-membership: {member: True}
        return {_decode(x, key_type, path): True for x in _elements(av, dict, path)}
    if not isinstance(av, MapValue):
        raise _mismatch(av, dict, path)
    out: dict[Any, Any] = {}
    for k, v in av.value.items():
        out[_map_key(k, key_type, path)] = _decode(v, value_type, f"{path}[{k!r}]")
    return out


def _map_key(key: str, key_type: Any, path: str) -> Any:
    key_type = _resolve(key_type)
    if key_type is Any or key_type is str:
        return key
    if isinstance(key_type, type) and issubclass(key_type, enum.Enum):
        # keys are written as str(member.value)
        for member in key_type:
            if str(member.value) == key:
                return member
        raise CodecError(f"{path or '<root>'}: map key {key!r} is not a valid {key_type.__name__}")
    if isinstance(key_type, type) and issubclass(key_type, int) and not issubclass(key_type, bool):
        try:
            return key_type(key)
        except ValueError as err:
            raise CodecError(f"{path or '<root>'}: map key {key!r} is not an integer") from err
    return _decode(StringValue(key), key_type, path)


def _zero_value(tp: Any, path: str) -> Any:
    origin = get_origin(tp) or tp
    if origin in _ZERO_VALUES:
        return _ZERO_VALUES[origin]
    if origin in _ZERO_CONTAINERS:
        return _ZERO_CONTAINERS[origin]()
    raise NullInNonNullableError(path=path, target=_type_name(tp))
