from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from dynamo_py import DB, ConsumedCapacity, Keys, dynamo_field
from dynamo_py.errors import (
    AwsError,
    BatchRetryExceededError,
    BatchWriteError,
    NoInputError,
    NotFoundError,
    ValidationError,
)
from dynamo_py.mocks import FakeDynamoDBClient
from dynamo_py.testkit import client_error, no_sleep


@dataclass
class Widget:
    id: int = dynamo_field("ID,hash", default=0)
    kind: str = dynamo_field("Kind,range", default="")
    count: int = dynamo_field("Count", default=0)


def _db(client: Any, **kwargs: Any) -> DB:
    return DB(client, sleep=no_sleep, **kwargs)


def _key(n: int) -> dict[str, Any]:
    return {"ID": {"N": str(n)}}


def test_batch_get_input_groups_keys_by_table() -> None:
    db = _db(FakeDynamoDBClient())
    widgets = db.table("widgets")
    others = db.table("others")

    bg = (
        widgets.batch("ID", "Kind")
        .get((1, "a"), Keys(2, "b"))
        .from_(others, "PK", "x")
        .project_table(others, "PK", "Data")
        .consistent()
    )
    req = bg.input(0)

    assert req is not None
    items = req["RequestItems"]
    assert items["widgets"]["Keys"] == [
        {"ID": {"N": "1"}, "Kind": {"S": "a"}},
        {"ID": {"N": "2"}, "Kind": {"S": "b"}},
    ]
    assert items["widgets"]["ConsistentRead"] is True
    assert "ProjectionExpression" not in items["widgets"]
    assert items["others"]["Keys"] == [{"PK": {"S": "x"}}]
    assert items["others"]["ExpressionAttributeNames"]  # Data is a reserved word
    assert bg.input(3) is None


def test_batch_get_splits_requests_at_100_keys() -> None:
    client = FakeDynamoDBClient()
    sizes: list[int] = []

    def handle(req: dict[str, Any]) -> dict[str, Any]:
        keys = req["RequestItems"]["widgets"]["Keys"]
        sizes.append(len(keys))
        return {"Responses": {"widgets": keys}}

    client.on("batch_get_item", handle)
    table = _db(client).table("widgets")

    got = table.batch("ID").get(*range(101)).all()

    assert sizes == [100, 1]
    assert sorted(item["ID"] for item in got) == list(range(101))


def test_batch_get_resubmits_unprocessed_keys() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_get_item",
        response={
            "Responses": {"widgets": [_key(1)]},
            "UnprocessedKeys": {"widgets": {"Keys": [_key(2)], "ConsistentRead": False}},
        },
    )
    client.expect(
        "batch_get_item",
        {"RequestItems": {"widgets": {"Keys": [_key(2)]}}},
        response={"Responses": {"widgets": [_key(2)]}},
    )
    table = _db(client).table("widgets")

    it = table.batch("ID").get(1, 2).iter()
    got = [(it.table, item["ID"]) for item in it]

    assert got == [("widgets", 1), ("widgets", 2)]
    client.assert_no_pending()


def test_batch_get_gives_up_after_max_retries() -> None:
    client = FakeDynamoDBClient()
    unprocessed = {"Responses": {}, "UnprocessedKeys": {"widgets": {"Keys": [_key(1)]}}}
    client.expect("batch_get_item", response=unprocessed)
    client.expect("batch_get_item", response=unprocessed)
    table = _db(client, max_retries=1).table("widgets")

    with pytest.raises(BatchRetryExceededError) as exc:
        table.batch("ID").get(1).all()
    assert exc.value.unprocessed_count == 1


def test_batch_get_errors() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_get_item", response={"Responses": {"widgets": []}})
    table = _db(client).table("widgets")

    with pytest.raises(NotFoundError):
        table.batch("ID").get(1).all()
    with pytest.raises(NoInputError):
        table.batch("ID").get().all()
    with pytest.raises(ValidationError):
        table.batch("ID").get(None).all()
    client.assert_no_pending()


def test_batch_get_records_capacity_and_decodes_records() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_get_item",
        {"ReturnConsumedCapacity": "INDEXES"},
        response={
            "Responses": {"widgets": [{"ID": {"N": "1"}, "Kind": {"S": "a"}, "Count": {"N": "3"}}]},
            "ConsumedCapacity": [{"TableName": "widgets", "CapacityUnits": 0.5}],
        },
    )
    table = _db(client).table("widgets")

    cc = ConsumedCapacity()
    got = table.batch("ID", "Kind").get((1, "a")).consumed_capacity(cc).all(Widget)

    assert got == [Widget(1, "a", 3)]
    assert (cc.total, cc.requests) == (0.5, 1)


def test_batch_get_merge() -> None:
    db = _db(FakeDynamoDBClient())
    widgets = db.table("widgets")
    others = db.table("others")

    bg = widgets.batch("ID").get(1).merge(others.batch("PK").get("x").project("PK").consistent())
    req = bg.input(0)

    assert req is not None
    assert set(req["RequestItems"]) == {"widgets", "others"}
    assert req["RequestItems"]["widgets"]["ConsistentRead"] is True
    assert req["RequestItems"]["others"]["ProjectionExpression"] == "PK"


def test_batch_write_chunks_at_25_operations() -> None:
    client = FakeDynamoDBClient()
    sizes: list[int] = []

    def handle(req: dict[str, Any]) -> dict[str, Any]:
        sizes.append(len(req["RequestItems"]["widgets"]))
        return {}

    client.on("batch_write_item", handle)
    table = _db(client).table("widgets")

    wrote = table.batch("ID", "Kind").write().put(*[Widget(i, "a") for i in range(30)]).delete((99, "z")).run()

    assert wrote == 31
    assert sizes == [25, 6]


def test_batch_write_resubmits_unprocessed_items() -> None:
    client = FakeDynamoDBClient()
    delete = {"DeleteRequest": {"Key": _key(2)}}
    client.expect("batch_write_item", response={"UnprocessedItems": {"widgets": [delete]}})
    client.expect("batch_write_item", {"RequestItems": {"widgets": [delete]}}, response={})
    table = _db(client).table("widgets")

    assert table.batch("ID").write().put({"ID": 1}).delete(2).run() == 2
    client.assert_no_pending()


def test_batch_write_failure_reports_confirmed_writes() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_write_item", response={})
    client.expect("batch_write_item", error=client_error("ValidationException", "nope"))
    table = _db(client).table("widgets")

    with pytest.raises(BatchWriteError) as exc:
        table.batch("ID").write().put(*[{"ID": i} for i in range(26)]).run()
    assert exc.value.wrote == 25
    assert isinstance(exc.value.__cause__, AwsError)


def test_batch_write_retry_limit() -> None:
    client = FakeDynamoDBClient()
    put = {"PutRequest": {"Item": _key(1)}}
    client.expect("batch_write_item", response={"UnprocessedItems": {"widgets": [put]}})
    table = _db(client, max_retries=0).table("widgets")

    with pytest.raises(BatchWriteError) as exc:
        table.batch("ID").write().put({"ID": 1}, {"ID": 2}).run()
    assert exc.value.wrote == 1
    assert isinstance(exc.value.__cause__, BatchRetryExceededError)


def test_batch_write_input_errors() -> None:
    client = FakeDynamoDBClient()
    table = _db(client).table("widgets")

    with pytest.raises(NoInputError):
        table.batch("ID").write().run()
    with pytest.raises(ValidationError):
        table.batch("ID").write().delete(None).run()
    assert client.calls == []
