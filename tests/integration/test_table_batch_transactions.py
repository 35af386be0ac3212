from __future__ import annotations

from dataclasses import dataclass

import pytest

from dynamo_py import (
    DB,
    TransactionCanceledError,
    dynamo_field,
    is_cond_check_failed,
)


@dataclass
class Account:
    id: str = dynamo_field("ID,hash", default="")
    balance: int = dynamo_field("Balance", default=0)


def test_batch_write_and_get_over_request_limits(db: DB, table_name: str) -> None:
    db.create_table(table_name, Account).on_demand().wait()
    table = db.table(table_name)
    try:
        accounts = [Account(f"a{i:03d}", i) for i in range(101)]
        assert table.batch("ID").write().put(*accounts).run() == 101

        got = table.batch("ID").get(*[a.id for a in accounts]).all(Account)
        assert sorted(got, key=lambda a: a.id) == accounts

        assert table.batch("ID").write().delete(*[a.id for a in accounts[:30]]).run() == 30
        assert table.scan().count() == 71
    finally:
        table.delete_table().wait()


def test_transactions(db: DB, table_name: str) -> None:
    db.create_table(table_name, Account).on_demand().wait()
    table = db.table(table_name)
    try:
        table.put(Account("a", 10)).run()
        table.put(Account("b", 0)).run()

        (
            db.write_tx()
            .idempotent()
            .update(table.update("ID", "a").add("Balance", -5).if_("Balance >= ?", 5))
            .update(table.update("ID", "b").add("Balance", 5))
            .run()
        )

        a, b = db.get_tx().get_one(table.get("ID", "a"), Account).get_one(table.get("ID", "b"), Account).run()
        assert (a.balance, b.balance) == (5, 5)

        with pytest.raises(TransactionCanceledError) as exc:
            (
                db.write_tx()
                .update(table.update("ID", "a").add("Balance", -50).if_("Balance >= ?", 50))
                .put(table.put(Account("c", 1)))
                .run()
            )
        assert is_cond_check_failed(exc.value)
        assert table.get("ID", "a").one(Account).balance == 5
        assert len(table.scan().all()) == 2
    finally:
        table.delete_table().wait()
