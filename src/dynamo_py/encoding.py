from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, Self

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .attributevalue import AttributeValue, Item, MapValue, from_wire, to_wire
from .errors import CodecError

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


class Marshaler(Protocol):
    def marshal_dynamo(self) -> AttributeValue | None: ...


class Unmarshaler(Protocol):
    @classmethod
    def unmarshal_dynamo(cls, av: AttributeValue) -> Self: ...


class ItemMarshaler(Protocol):
    def marshal_dynamo_item(self) -> Item: ...


class ItemUnmarshaler(Protocol):
    @classmethod
    def unmarshal_dynamo_item(cls, item: Item) -> Self: ...


class TextMarshaler(Protocol):
    def marshal_text(self) -> str: ...

    @classmethod
    def unmarshal_text(cls, text: str) -> Self: ...


class AWSEncoding:
    """Encode or decode a value with boto3's own serializer.

    Wrapping a value bypasses this library's rules (tags, flags, empty
    handling) in favor of ``boto3.dynamodb.types`` semantics. Passing the
    ``AWSEncoding`` class as a decode target yields the deserializer's
    output in ``.value``.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any = None) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"AWSEncoding({self.value!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AWSEncoding) and other.value == self.value

    def marshal_dynamo(self) -> AttributeValue:
        return from_wire(_serializer.serialize(self.value))

    def marshal_dynamo_item(self) -> Item:
        if not isinstance(self.value, Mapping):
            raise CodecError(f"AWSEncoding item must wrap a mapping, got {type(self.value).__name__}")
        return {str(k): from_wire(_serializer.serialize(v)) for k, v in self.value.items()}

    @classmethod
    def unmarshal_dynamo(cls, av: AttributeValue) -> AWSEncoding:
        return cls(_deserializer.deserialize(to_wire(av)))

    @classmethod
    def unmarshal_dynamo_item(cls, item: Item) -> AWSEncoding:
        return cls(_deserializer.deserialize(to_wire(MapValue(item))))


def aws_encoding(value: Any) -> AWSEncoding:
    return AWSEncoding(value)


def has_hook(target: Any, name: str) -> bool:
    return callable(getattr(target, name, None))
