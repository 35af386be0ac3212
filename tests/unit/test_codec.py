from __future__ import annotations

import datetime as dt
import enum
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import pytest

from dynamo_py import (
    NULL,
    AWSEncoding,
    BinaryValue,
    BoolValue,
    EncodeFlags,
    Item,
    ListValue,
    MapValue,
    NumberSetValue,
    NumberValue,
    StringSetValue,
    StringValue,
    aws_encoding,
    dynamo_field,
    marshal,
    marshal_item,
    unmarshal,
    unmarshal_append,
    unmarshal_item,
)
from dynamo_py.errors import (
    CodecError,
    KindMismatchError,
    NullInNonNullableError,
    SetElementUnsupportedError,
)


@dataclass
class Widget:
    user_id: int = dynamo_field("UserID,hash", default=0)
    time: str = dynamo_field("Time,range", default="")
    msg: str = dynamo_field("Msg", default="")
    count: int = 0
    tags: set[str] = field(default_factory=set)
    meta: dict[str, str] = field(default_factory=dict)


@dataclass
class Flags:
    n: int = dynamo_field(",omitempty", default=0)
    s: str = dynamo_field(",allowempty", default="")
    x: str | None = dynamo_field(",null", default=None)
    ids: list[int] = dynamo_field(",set", default_factory=list)
    at: dt.datetime | None = dynamo_field(",unixtime", default=None)
    skipped: str = dynamo_field("-", default="never")


@dataclass
class Inner:
    a: str = ""
    b: int = 0


@dataclass
class Outer:
    id: str = dynamo_field("ID,hash", default="")
    inner: Inner = dynamo_field(embed=True, default_factory=Inner)
    a: str = ""


class Color(enum.Enum):
    RED = "red"
    BLUE = "blue"


class Level(enum.IntEnum):
    LOW = 1
    HIGH = 2


class Upper:
    def __init__(self, text: str) -> None:
        self.text = text

    def marshal_dynamo(self) -> StringValue:
        return StringValue(self.text.upper())

    @classmethod
    def unmarshal_dynamo(cls, av: Any) -> Upper:
        return cls(av.value.lower())


class CentsConverter:
    def to_dynamodb(self, value: Decimal) -> int:
        return int(value * 100)

    def from_dynamodb(self, value: int) -> Decimal:
        return Decimal(value) / 100


@dataclass
class Price:
    amount: Decimal = dynamo_field("Cents", converter=CentsConverter(), default=Decimal(0))


def test_record_round_trip() -> None:
    w = Widget(user_id=613, time="2019-01-01", msg="hello", count=2, tags={"a", "b"}, meta={"k": "v"})
    item = marshal_item(w)

    assert item == {
        "UserID": NumberValue("613"),
        "Time": StringValue("2019-01-01"),
        "Msg": StringValue("hello"),
        "count": NumberValue("2"),
        "tags": StringSetValue(frozenset({"a", "b"})),
        "meta": MapValue({"k": StringValue("v")}),
    }
    assert unmarshal_item(item, Widget) == w


def test_empty_values_are_omitted_by_default() -> None:
    item = marshal_item(Widget(user_id=1))
    assert "Msg" not in item
    assert "Time" not in item
    assert "tags" not in item
    assert item["count"] == NumberValue("0")
    assert item["meta"] == MapValue({})


def test_field_flags() -> None:
    at = dt.datetime(2020, 1, 2, 3, 4, 5, tzinfo=dt.UTC)
    item = marshal_item(Flags(ids=[3, 1, 3], at=at))

    assert "n" not in item
    assert item["s"] == StringValue("")
    assert item["x"] == NULL
    assert item["ids"] == NumberSetValue(frozenset({"1", "3"}))
    assert item["at"] == NumberValue(str(int(at.timestamp())))
    assert "skipped" not in item

    back = unmarshal_item(item, Flags)
    assert back.at == at
    assert back.ids == [1, 3]
    assert back.x is None
    assert back.skipped == "never"


def test_embedded_records_flatten_and_outer_field_wins() -> None:
    item = marshal_item(Outer(id="1", inner=Inner(a="inner", b=2), a="outer"))
    assert item == {"ID": StringValue("1"), "a": StringValue("outer"), "b": NumberValue("2")}

    back = unmarshal_item(item, Outer)
    assert back == Outer(id="1", inner=Inner(a="", b=2), a="outer")


def test_marshal_scalars() -> None:
    assert marshal("x") == StringValue("x")
    assert marshal("") is None
    assert marshal(None) is None
    assert marshal(None, EncodeFlags.NULL) == NULL
    assert marshal(True) == BoolValue(True)
    assert marshal(1.5) == NumberValue("1.5")
    assert marshal(2.0) == NumberValue("2")
    assert marshal(Decimal("10.25")) == NumberValue("10.25")
    assert marshal(b"\x00") == BinaryValue(b"\x00")
    assert marshal(Color.RED) == StringValue("red")

    u = uuid.UUID("12345678-1234-5678-1234-567812345678")
    assert marshal(u) == StringValue(str(u))
    stamp = dt.datetime(2020, 1, 2, 3, 4, 5, tzinfo=dt.UTC)
    assert marshal(stamp) == StringValue("2020-01-02T03:04:05Z")


def test_marshal_rejects_nan() -> None:
    with pytest.raises(CodecError):
        marshal(float("nan"))


def test_lists_keep_empty_elements_unless_asked() -> None:
    assert marshal(["a", "", None]) == ListValue((StringValue("a"), StringValue(""), NULL))
    assert marshal(["a", "", None], EncodeFlags.OMIT_EMPTY_ELEM) == ListValue((StringValue("a"),))


def test_sets() -> None:
    assert marshal({"a", "b"}) == StringSetValue(frozenset({"a", "b"}))
    assert marshal(["a", "b"], EncodeFlags.SET) == StringSetValue(frozenset({"a", "b"}))
    assert marshal({1: True, 2: None, 3: False}, EncodeFlags.SET) == NumberSetValue(frozenset({"1", "2"}))
    assert marshal(set()) is None
    assert marshal(set(), EncodeFlags.NULL) == NULL

    with pytest.raises(SetElementUnsupportedError):
        marshal([True], EncodeFlags.SET)
    with pytest.raises(SetElementUnsupportedError):
        marshal({"a", 1})


def test_map_keys() -> None:
    av = marshal({1: "a"})
    assert av == MapValue({"1": StringValue("a")})
    assert unmarshal(av, dict[int, str]) == {1: "a"}

    with pytest.raises(CodecError):
        marshal({(1, 2): "a"})


def test_enum_map_keys() -> None:
    av = marshal({Level.HIGH: "h", Level.LOW: "l"})
    assert av == MapValue({"2": StringValue("h"), "1": StringValue("l")})
    assert unmarshal(av, dict[Level, str]) == {Level.HIGH: "h", Level.LOW: "l"}

    av = marshal({Color.RED: 1})
    assert unmarshal(av, dict[Color, int]) == {Color.RED: 1}

    with pytest.raises(CodecError, match="not a valid Level"):
        unmarshal(MapValue({"3": StringValue("x")}), dict[Level, str])


def test_unixtime_treats_naive_datetimes_as_utc() -> None:
    naive = dt.datetime(2024, 5, 6, 7, 8, 9)
    item = marshal_item(Flags(at=naive))
    assert item["at"] == NumberValue(str(int(naive.replace(tzinfo=dt.UTC).timestamp())))

    got = unmarshal_item(item, Flags)
    assert got.at == naive.replace(tzinfo=dt.UTC)
    assert got.at.tzinfo is dt.UTC


def test_attribute_values_pass_through() -> None:
    av = NumberSetValue(frozenset({"1"}))
    assert marshal(av) is av
    assert unmarshal(av, NumberSetValue) is av
    assert unmarshal_item({"x": av}, Item) == {"x": av}


def test_unmarshal_plain_python() -> None:
    item = {
        "n": NumberValue("3"),
        "d": NumberValue("1.5"),
        "ss": StringSetValue(frozenset({"x"})),
        "l": ListValue((BoolValue(False), NULL)),
    }
    assert unmarshal_item(item) == {"n": 3, "d": Decimal("1.5"), "ss": {"x"}, "l": [False, None]}


def test_unmarshal_null() -> None:
    assert unmarshal(NULL, int) == 0
    assert unmarshal(NULL, str) == ""
    assert unmarshal(NULL, list[int]) == []
    assert unmarshal(NULL, int | None) is None
    with pytest.raises(NullInNonNullableError):
        unmarshal(NULL, Widget)


def test_unmarshal_kind_mismatch_reports_path() -> None:
    with pytest.raises(KindMismatchError) as exc:
        unmarshal_item({"count": StringValue("x")}, Widget)
    assert exc.value.path == "Widget.count"
    assert exc.value.got == "S"


def test_unmarshal_number_set_into_list_is_sorted() -> None:
    assert unmarshal(NumberSetValue(frozenset({"10", "9", "1"})), list[int]) == [1, 9, 10]


def test_unmarshal_set_into_membership_map() -> None:
    assert unmarshal(StringSetValue(frozenset({"a"})), dict[str, bool]) == {"a": True}


def test_unmarshal_fills_instance_in_place() -> None:
    w = Widget(msg="keep me?")
    out = unmarshal_item({"UserID": NumberValue("5")}, w)
    assert out is w
    assert w.user_id == 5
    assert w.msg == ""


def test_unmarshal_append() -> None:
    dst: list[Any] = []
    unmarshal_append({"UserID": NumberValue("1")}, dst, Widget)
    unmarshal_append({"UserID": NumberValue("2")}, dst, Widget)
    assert [w.user_id for w in dst] == [1, 2]


def test_value_hooks() -> None:
    assert marshal(Upper("hi")) == StringValue("HI")
    assert unmarshal(StringValue("HI"), Upper).text == "hi"


def test_converters_apply_both_ways() -> None:
    item = marshal_item(Price(amount=Decimal("1.25")))
    assert item == {"Cents": NumberValue("125")}
    assert unmarshal_item(item, Price).amount == Decimal("1.25")


def test_aws_encoding_uses_boto3_serializer() -> None:
    av = marshal(aws_encoding({"a": 1, "s": ""}))
    assert av == MapValue({"a": NumberValue("1"), "s": StringValue("")})

    out = unmarshal(av, AWSEncoding)
    assert out == AWSEncoding({"a": Decimal(1), "s": ""})


def test_aws_encoding_item_requires_a_mapping() -> None:
    assert marshal_item(aws_encoding({"n": 1})) == {"n": NumberValue("1")}
    with pytest.raises(CodecError, match="must wrap a mapping"):
        marshal_item(aws_encoding([1, 2]))


def test_enum_decode() -> None:
    assert unmarshal(StringValue("blue"), Color) is Color.BLUE
    with pytest.raises(CodecError):
        unmarshal(StringValue("green"), Color)


def test_marshal_item_rejects_none() -> None:
    with pytest.raises(CodecError):
        marshal_item(None)
