from __future__ import annotations

from dataclasses import dataclass

from dynamo_py import DB, ConsumedCapacity, Operator, Order, dynamo_field


@dataclass
class Message:
    user_id: int = dynamo_field("UserID,hash", default=0)
    seq: int = dynamo_field("Seq,range", default=0)
    msg: str = dynamo_field("Msg", index=["Msg-index,hash"], default="")


def _seed(db: DB, name: str, n: int) -> None:
    db.table(name).batch().write().put(*[Message(1, i, f"m{i % 3}") for i in range(n)]).run()


def test_query_pages_and_resumes(db: DB, table_name: str) -> None:
    db.create_table(table_name, Message).wait()
    table = db.table(table_name)
    try:
        _seed(db, table_name, 10)

        items = table.get("UserID", 1).range("Seq", Operator.GREATER_OR_EQUAL, 2).order(Order.DESCENDING).all(Message)
        assert [m.seq for m in items] == list(range(9, 1, -1))

        first, lek = table.get("UserID", 1).limit(4).all_with_last_evaluated_key(Message)
        assert [m.seq for m in first] == [0, 1, 2, 3]
        assert lek is not None

        rest = table.get("UserID", 1).start_from(lek).all(Message)
        assert [m.seq for m in rest] == list(range(4, 10))

        filtered = table.get("UserID", 1).filter("Msg = ?", "m0").all(Message)
        assert [m.seq for m in filtered] == [0, 3, 6, 9]

        assert table.get("UserID", 1).count() == 10
        assert len(table.get("Msg", "m1").index("Msg-index").all()) == 3
    finally:
        table.delete_table().wait()


def test_scan_and_parallel_scan(db: DB, table_name: str) -> None:
    db.create_table(table_name, Message).on_demand().wait()
    table = db.table(table_name)
    try:
        _seed(db, table_name, 12)

        cc = ConsumedCapacity()
        assert len(table.scan().consumed_capacity(cc).all()) == 12
        assert cc.requests >= 1

        assert table.scan().filter("Msg = ?", "m2").count() == 4

        items = table.scan().all_parallel(3, Message)
        assert {m.seq for m in items} == set(range(12))
    finally:
        table.delete_table().wait()
