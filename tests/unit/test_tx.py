from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from dynamo_py import (
    DB,
    ConsumedCapacity,
    dynamo_field,
    is_cond_check_failed,
    unmarshal_items_from_tx_cond_check_failed,
)
from dynamo_py.errors import CodecError, NoInputError, NotFoundError, TransactionCanceledError, ValidationError
from dynamo_py.mocks import ANY, FakeDynamoDBClient
from dynamo_py.testkit import client_error, fixed_rand_bytes, no_sleep


@dataclass
class Account:
    id: str = dynamo_field("ID,hash", default="")
    balance: int = dynamo_field("Balance", default=0)


def _db(client: Any, **kwargs: Any) -> DB:
    return DB(client, sleep=no_sleep, rand_bytes=fixed_rand_bytes(b"\x01"), **kwargs)


def _canceled(*codes: str, items: list[dict[str, Any] | None] | None = None) -> Exception:
    reasons: list[dict[str, Any]] = []
    for i, code in enumerate(codes):
        reason: dict[str, Any] = {"Code": code}
        if items and items[i] is not None:
            reason["Item"] = items[i]
        reasons.append(reason)
    return client_error("TransactionCanceledException", "Transaction cancelled", extra={"CancellationReasons": reasons})


def test_write_tx_input() -> None:
    db = _db(FakeDynamoDBClient())
    accounts = db.table("accounts")

    tx = (
        db.write_tx()
        .update(accounts.update("ID", "a").add("Balance", -10).if_("Balance >= ?", 10))
        .put(accounts.put(Account("b", 10)))
        .delete(accounts.delete("ID", "c"))
        .check(accounts.check("ID", "d").if_exists())
        .include_all_items_in_cond_check_fail()
        .idempotent()
    )
    req = tx.input()

    assert req["ClientRequestToken"] == "01010101-0101-4101-8101-010101010101"
    update, put, delete, check = req["TransactItems"]
    assert update["Update"]["UpdateExpression"] == "ADD Balance :v0"
    assert update["Update"]["ConditionExpression"] == "(Balance >= :v1)"
    assert "ReturnValues" not in update["Update"]
    assert put["Put"]["Item"] == {"ID": {"S": "b"}, "Balance": {"N": "10"}}
    assert delete["Delete"]["Key"] == {"ID": {"S": "c"}}
    assert check["ConditionCheck"]["ConditionExpression"] == "(attribute_exists(ID))"
    for item in req["TransactItems"]:
        assert next(iter(item.values()))["ReturnValuesOnConditionCheckFailure"] == "ALL_OLD"


def test_idempotency_token_is_stable() -> None:
    tx = _db(FakeDynamoDBClient()).write_tx()
    token = tx.idempotent().token
    assert tx.idempotent().token == token
    assert tx.idempotent(False).token == ""
    assert tx.idempotent_with_token("mine").token == "mine"


def test_write_tx_input_errors() -> None:
    db = _db(FakeDynamoDBClient())
    accounts = db.table("accounts")

    with pytest.raises(NoInputError):
        db.write_tx().run()
    with pytest.raises(CodecError):
        db.write_tx().put(accounts.put(None)).run()
    tx = db.write_tx()
    for i in range(101):
        tx.delete(accounts.delete("ID", str(i)))
    with pytest.raises(ValidationError):
        tx.input()


def test_conflicts_are_retried_only_when_idempotent() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", {"ClientRequestToken": ANY}, error=_canceled("TransactionConflict", "None"))
    client.expect("transact_write_items", response={})
    client.expect("transact_write_items", error=_canceled("TransactionConflict", "None"))
    db = _db(client)
    accounts = db.table("accounts")

    db.write_tx().idempotent().delete(accounts.delete("ID", "a")).run()

    with pytest.raises(TransactionCanceledError) as exc:
        db.write_tx().delete(accounts.delete("ID", "a")).run()
    assert exc.value.reason_codes == ("TransactionConflict", "None")
    client.assert_no_pending()


def test_condition_failures_are_not_retried_and_carry_items() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=_canceled("None", "ConditionalCheckFailed", items=[None, {"ID": {"S": "b"}, "Balance": {"N": "3"}}]),
    )
    db = _db(client)
    accounts = db.table("accounts")

    with pytest.raises(TransactionCanceledError) as exc:
        (
            db.write_tx()
            .idempotent()
            .delete(accounts.delete("ID", "a"))
            .check(accounts.check("ID", "b").if_("Balance > ?", 5))
            .include_all_items_in_cond_check_fail()
            .run()
        )

    assert is_cond_check_failed(exc.value)
    current: list[Account] = []
    assert unmarshal_items_from_tx_cond_check_failed(exc.value, current, Account)
    assert current == [Account("b", 3)]


def test_cancellation_reasons_parsed_from_message() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled, please refer cancellation reasons for specific reasons "
            "[None, ConditionalCheckFailed]",
        ),
    )
    db = _db(client)

    with pytest.raises(TransactionCanceledError) as exc:
        db.write_tx().delete(db.table("accounts").delete("ID", "a")).run()
    assert exc.value.reason_codes == ("None", "ConditionalCheckFailed")


def test_write_tx_capacity() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {"ReturnConsumedCapacity": "INDEXES"},
        response={
            "ConsumedCapacity": [
                {"TableName": "accounts", "CapacityUnits": 4, "WriteCapacityUnits": 4, "Table": {"CapacityUnits": 4}}
            ]
        },
    )
    db = _db(client)

    cc = ConsumedCapacity()
    db.write_tx().delete(db.table("accounts").delete("ID", "a")).consumed_capacity(cc).run()
    assert (cc.total, cc.write, cc.table, cc.requests) == (4, 4, 4, 1)


def test_get_tx() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_get_items",
        {
            "TransactItems": [
                {"Get": {"TableName": "accounts", "Key": {"ID": {"S": "a"}}}},
                {"Get": {"TableName": "accounts", "Key": {"ID": {"S": "b"}}}},
            ]
        },
        response={"Responses": [{"Item": {"ID": {"S": "a"}, "Balance": {"N": "1"}}}, {}]},
    )
    client.expect("transact_get_items", response={"Responses": [{"Item": {"ID": {"S": "a"}}}]})
    db = _db(client)
    accounts = db.table("accounts")

    got = db.get_tx().get_one(accounts.get("ID", "a"), Account).get(accounts.get("ID", "b")).run()
    assert got == [Account("a", 1), None]

    target = Account()
    assert db.get_tx().get_one(accounts.get("ID", "a"), target).all() == [{"ID": "a"}]
    assert target.id == "a"


def test_get_tx_conflicts_are_retried() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_get_items", error=_canceled("TransactionConflict"))
    client.expect("transact_get_items", response={"Responses": [{}]})
    db = _db(client)

    with pytest.raises(NotFoundError):
        db.get_tx().get(db.table("accounts").get("ID", "a")).run()
    client.assert_no_pending()
