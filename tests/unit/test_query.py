from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from dynamo_py import DB, ConsumedCapacity, NumberValue, Operator, Order, StringValue, dynamo_field
from dynamo_py.errors import LastEvaluatedKeyError, NotFoundError, TooManyResultsError, ValidationError
from dynamo_py.expression import encode_name
from dynamo_py.mocks import ANY, FakeDynamoDBClient
from dynamo_py.testkit import no_sleep


@dataclass
class Message:
    user_id: int = dynamo_field("UserID,hash", default=0)
    time: str = dynamo_field("Time,range", default="")
    msg: str = dynamo_field("Msg", default="")


def _name(name: str) -> str:
    return "#s" + encode_name(name)


def _db(client: Any) -> DB:
    return DB(client, sleep=no_sleep)


def _msg(user: int, time: str, msg: str = "") -> dict[str, Any]:
    item: dict[str, Any] = {"UserID": {"N": str(user)}, "Time": {"S": time}}
    if msg:
        item["Msg"] = {"S": msg}
    return item


DESCRIBE = {
    "Table": {
        "TableName": "messages",
        "TableStatus": "ACTIVE",
        "KeySchema": [
            {"AttributeName": "UserID", "KeyType": "HASH"},
            {"AttributeName": "Time", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "UserID", "AttributeType": "N"},
            {"AttributeName": "Time", "AttributeType": "S"},
            {"AttributeName": "Msg", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "Msg-index",
                "KeySchema": [{"AttributeName": "Msg", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
    }
}


def test_one_uses_get_item_for_a_full_key() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "get_item",
        {
            "TableName": "messages",
            "Key": {"UserID": {"N": "613"}, "Time": {"S": "2019-01-01"}},
            "ConsistentRead": True,
        },
        response={"Item": _msg(613, "2019-01-01", "hello")},
    )
    table = _db(client).table("messages")

    got = table.get("UserID", 613).range("Time", Operator.EQUAL, "2019-01-01").consistent().one(Message)

    assert got == Message(613, "2019-01-01", "hello")
    client.assert_no_pending()


def test_one_keeps_ordered_lookups_on_query() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", {"ScanIndexForward": False}, response={"Items": []})
    table = _db(client).table("messages")

    with pytest.raises(NotFoundError):
        table.get("UserID", 1).order(Order.DESCENDING).one()
    assert client.calls_to("get_item") == []
    client.assert_no_pending()


def test_one_falls_back_to_query_and_detects_too_many_results() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"FilterExpression": "(Msg = :v0)", "KeyConditionExpression": f"{_name('UserID')} = :v1"},
        response={"Items": [_msg(1, "a"), _msg(1, "b")]},
    )
    table = _db(client).table("messages")

    with pytest.raises(TooManyResultsError):
        table.get("UserID", 1).filter("Msg = ?", "hi").one()


def test_query_input_with_range_operators() -> None:
    table = _db(FakeDynamoDBClient()).table("messages")

    req = table.get("UserID", 1).range("Time", Operator.BETWEEN, "a", "b").order(Order.DESCENDING).input()
    assert req["KeyConditionExpression"] == f"{_name('UserID')} = :v0 AND {_name('Time')} BETWEEN :v1 AND :v2"
    assert req["ScanIndexForward"] is False
    assert req["ExpressionAttributeValues"] == {":v0": {"N": "1"}, ":v1": {"S": "a"}, ":v2": {"S": "b"}}

    req = table.get("UserID", 1).range("Time", Operator.BEGINS_WITH, "2019").input()
    assert req["KeyConditionExpression"].endswith(f"begins_with({_name('Time')}, :v1)")

    req = table.get("UserID", 1).range("Time", Operator.GREATER, "x").input()
    assert req["KeyConditionExpression"].endswith(f"{_name('Time')} > :v1")


def test_filters_are_joined_with_and() -> None:
    table = _db(FakeDynamoDBClient()).table("messages")
    req = table.get("UserID", 1).filter("'Count' > ?", 5).filter("Hits = ? OR Hits = ?", 1, 2).limit(10).input()

    assert req["FilterExpression"] == f"({_name('Count')} > :v0) AND (Hits = :v1 OR Hits = :v2)"
    # Limit would cap items evaluated, not items returned
    assert "Limit" not in req


def test_build_errors_surface_before_any_call() -> None:
    client = FakeDynamoDBClient()
    table = _db(client).table("messages")

    with pytest.raises(ValidationError, match="hash key value is None"):
        table.get("UserID", None).all()
    with pytest.raises(ValidationError, match="takes 2 value"):
        table.get("UserID", 1).range("Time", Operator.BETWEEN, "a").all()
    with pytest.raises(ValidationError):
        table.get("UserID", 1).filter("? = ?", 1).all()
    assert client.calls == []


def test_all_follows_pages() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", response={"Items": [_msg(1, "a")], "LastEvaluatedKey": _msg(1, "a")})
    client.expect("query", {"ExclusiveStartKey": _msg(1, "a")}, response={"Items": []})
    table = _db(client).table("messages")

    got = table.get("UserID", 1).all(Message)
    assert [m.time for m in got] == ["a"]
    client.assert_no_pending()


def test_empty_pages_are_skipped() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", response={"Items": [], "LastEvaluatedKey": _msg(1, "a")})
    client.expect("query", response={"Items": [_msg(1, "b")]})
    table = _db(client).table("messages")

    assert table.get("UserID", 1).all() == [{"UserID": 1, "Time": "b"}]


def test_request_limit_stops_paging() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", response={"Items": [_msg(1, "a")], "LastEvaluatedKey": _msg(1, "a")})
    table = _db(client).table("messages")

    items, lek = table.get("UserID", 1).request_limit(1).all_with_last_evaluated_key()
    assert len(items) == 1
    assert lek == {"UserID": NumberValue("1"), "Time": StringValue("a")}


def test_limit_infers_last_evaluated_key_from_service_key_names() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"Limit": 1},
        response={"Items": [_msg(1, "a"), _msg(1, "b")], "LastEvaluatedKey": _msg(1, "b")},
    )
    table = _db(client).table("messages")

    items, lek = table.get("UserID", 1).limit(1).all_with_last_evaluated_key()
    assert items == [{"UserID": 1, "Time": "a"}]
    assert lek == {"UserID": NumberValue("1"), "Time": StringValue("a")}


def test_limit_infers_last_evaluated_key_from_table_description() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"IndexName": "Msg-index", "FilterExpression": ANY},
        response={"Items": [_msg(1, "a", "x"), _msg(1, "b", "x")]},
    )
    client.expect("describe_table", {"TableName": "messages"}, response=DESCRIBE)
    client.expect("query", response={"Items": [_msg(1, "a", "x"), _msg(1, "b", "x")]})
    db = _db(client)
    table = db.table("messages")

    q = table.get("Msg", "x").index("Msg-index").filter("attribute_exists(Time)").limit(1)
    _, lek = q.all_with_last_evaluated_key()
    assert lek == {"UserID": NumberValue("1"), "Time": StringValue("a"), "Msg": StringValue("x")}

    # the description is cached
    q = table.get("Msg", "x").index("Msg-index").filter("attribute_exists(Time)").limit(1)
    q.all_with_last_evaluated_key()
    client.assert_no_pending()


def test_last_evaluated_key_error_keeps_service_key() -> None:
    client = FakeDynamoDBClient()
    service_key = {"UserID": {"N": "1"}, "Time": {"S": "b"}}
    client.expect(
        "query",
        response={"Items": [{"UserID": {"N": "1"}}, _msg(1, "b")], "LastEvaluatedKey": service_key},
    )
    table = _db(client).table("messages")

    with pytest.raises(LastEvaluatedKeyError) as exc:
        table.get("UserID", 1).project("UserID").limit(1).all_with_last_evaluated_key()
    assert exc.value.key == {"UserID": NumberValue("1"), "Time": StringValue("b")}
    assert exc.value.items == [{"UserID": 1}]


def test_start_from_resumes() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", {"ExclusiveStartKey": _msg(1, "a")}, response={"Items": [_msg(1, "b")]})
    table = _db(client).table("messages")

    lek = {"UserID": NumberValue("1"), "Time": StringValue("a")}
    assert len(table.get("UserID", 1).start_from(lek).all()) == 1


def test_count_sums_pages_and_records_capacity() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"Select": "COUNT", "ReturnConsumedCapacity": "INDEXES"},
        response={"Count": 2, "ScannedCount": 2, "LastEvaluatedKey": _msg(1, "b"), "ConsumedCapacity": {"CapacityUnits": 1}},
    )
    client.expect("query", response={"Count": 3, "ScannedCount": 4, "ConsumedCapacity": {"CapacityUnits": 0.5}})
    table = _db(client).table("messages")

    cc = ConsumedCapacity()
    assert table.get("UserID", 1).consumed_capacity(cc).count() == 5
    assert cc.total == 1.5
    assert cc.requests == 2


def test_get_tx_item_rejects_complex_queries() -> None:
    table = _db(FakeDynamoDBClient()).table("messages")
    with pytest.raises(ValidationError):
        table.get("UserID", 1).index("Msg-index").get_tx_item()

    assert table.get("UserID", 1).project("Msg").get_tx_item() == {
        "Get": {"TableName": "messages", "Key": {"UserID": {"N": "1"}}, "ProjectionExpression": "Msg"}
    }
