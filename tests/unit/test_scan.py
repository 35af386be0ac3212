from __future__ import annotations

import threading
from typing import Any

import pytest

from dynamo_py import DB, ConsumedCapacity, Context, NumberValue
from dynamo_py.errors import AwsError, CanceledError, ValidationError
from dynamo_py.mocks import FakeDynamoDBClient
from dynamo_py.testkit import client_error, no_sleep


def _db(client: Any) -> DB:
    return DB(client, sleep=no_sleep, max_retries=0)


def _item(n: int) -> dict[str, Any]:
    return {"ID": {"N": str(n)}}


def test_scan_input() -> None:
    table = _db(FakeDynamoDBClient()).table("things")
    req = table.scan().index("by-kind").project("ID", "Kind").filter("Kind = ?", "a").consistent().input()

    assert req == {
        "TableName": "things",
        "IndexName": "by-kind",
        "ConsistentRead": True,
        "ProjectionExpression": "ID, Kind",
        "FilterExpression": "(Kind = :v0)",
        "ExpressionAttributeValues": {":v0": {"S": "a"}},
    }


def test_segment_is_validated() -> None:
    client = FakeDynamoDBClient()
    table = _db(client).table("things")

    with pytest.raises(ValidationError):
        table.scan().segment(0, 2**31).all()
    assert client.calls == []

    req = table.scan().segment(1, 4).input()
    assert (req["Segment"], req["TotalSegments"]) == (1, 4)


def test_scan_all_and_count() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", response={"Items": [_item(1)], "LastEvaluatedKey": _item(1)})
    client.expect("scan", response={"Items": [_item(2)]})
    client.expect("scan", {"Select": "COUNT"}, response={"Count": 7})
    table = _db(client).table("things")

    assert table.scan().all() == [{"ID": 1}, {"ID": 2}]
    assert table.scan().count() == 7
    client.assert_no_pending()


def test_search_limit_sends_one_request() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", {"Limit": 10}, response={"Items": [_item(1)], "LastEvaluatedKey": _item(1)})
    table = _db(client).table("things")

    items, lek = table.scan().search_limit(10).all_with_last_evaluated_key()
    assert items == [{"ID": 1}]
    assert lek == {"ID": NumberValue("1")}


def _segment_handler(pages: dict[int, list[dict[str, Any]]]) -> Any:
    lock = threading.Lock()
    seen: list[dict[str, Any]] = []

    def handle(req: dict[str, Any]) -> dict[str, Any]:
        with lock:
            seen.append(req)
        return pages[req["Segment"]].pop(0)

    handle.seen = seen  # type: ignore[attr-defined]
    return handle


def test_parallel_scan_merges_segments_and_capacity() -> None:
    client = FakeDynamoDBClient()
    handler = _segment_handler(
        {
            0: [
                {"Items": [_item(1)], "LastEvaluatedKey": _item(1), "ConsumedCapacity": {"CapacityUnits": 1}},
                {"Items": [_item(2)], "ConsumedCapacity": {"CapacityUnits": 1}},
            ],
            1: [{"Items": [_item(3)], "ConsumedCapacity": {"CapacityUnits": 1}}],
            2: [{"Items": []}],
        }
    )
    client.on("scan", handler)
    table = _db(client).table("things")

    cc = ConsumedCapacity()
    items, keys = table.scan().consumed_capacity(cc).all_parallel_with_last_evaluated_keys(3)

    assert sorted(i["ID"] for i in items) == [1, 2, 3]
    assert keys == [None, None, None]
    assert cc.total == 3
    assert cc.requests == 4
    assert sorted({r["TotalSegments"] for r in handler.seen}) == [3]


def test_parallel_scan_resumes_unfinished_segments_only() -> None:
    client = FakeDynamoDBClient()
    handler = _segment_handler({1: [{"Items": [_item(9)]}]})
    client.on("scan", handler)
    table = _db(client).table("things")

    items, keys = table.scan().all_parallel_start_from([None, {"ID": NumberValue("8")}])

    assert items == [{"ID": 9}]
    assert keys == [None, None]
    assert len(handler.seen) == 1
    assert handler.seen[0]["ExclusiveStartKey"] == {"ID": {"N": "8"}}


def test_parallel_scan_raises_segment_errors() -> None:
    client = FakeDynamoDBClient()

    def handle(req: dict[str, Any]) -> dict[str, Any]:
        if req["Segment"] == 1:
            raise client_error("ValidationException", "bad segment")
        return {"Items": [_item(1)]}

    client.on("scan", handle)
    table = _db(client).table("things")

    with pytest.raises(AwsError, match="bad segment"):
        table.scan().all_parallel(2)


def test_parallel_scan_requires_segments() -> None:
    table = _db(FakeDynamoDBClient()).table("things")
    with pytest.raises(ValidationError):
        table.scan().all_parallel(0)


def _many_items(req: dict[str, Any]) -> dict[str, Any]:
    return {"Items": [_item(n) for n in range(10)]}


def test_closing_a_parallel_scan_early_releases_workers() -> None:
    client = FakeDynamoDBClient()
    client.on("scan", _many_items)
    table = _db(client).table("things")

    it = table.scan().iter_parallel(1)
    assert next(it) == {"ID": 0}
    futures = list(it._futures)
    it.close()

    for f in futures:
        f.result(timeout=5)
    assert list(it) == []


def test_parallel_scan_context_manager_stops_workers_on_break() -> None:
    client = FakeDynamoDBClient()
    client.on("scan", _many_items)
    table = _db(client).table("things")

    with table.scan().iter_parallel(2) as it:
        for _ in it:
            break
        futures = list(it._futures)

    for f in futures:
        f.result(timeout=5)


def test_canceling_the_context_stops_a_stalled_parallel_scan() -> None:
    client = FakeDynamoDBClient()
    client.on("scan", _many_items)
    table = _db(client).table("things")
    ctx = Context.background()

    it = table.scan().iter_parallel(1, ctx=ctx)
    next(it)
    ctx.cancel()

    for f in it._futures:
        f.result(timeout=5)
    with pytest.raises(CanceledError):
        next(it)
