from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

from dynamo_py import DB, Operator, dynamo_field


@dataclass
class Note:
    pk: str = dynamo_field("PK,hash", default="")
    sk: str = dynamo_field("SK,range", default="")
    value: int = dynamo_field("Value", default=0)


def main() -> None:
    db = DB(
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region=os.environ.get("AWS_REGION", "us-east-1"),
    )
    table_name = f"dynamo_py_example_{uuid.uuid4().hex[:12]}"

    db.create_table(table_name, Note).on_demand().wait()
    table = db.table(table_name)
    try:
        table.put(Note(pk="A", sk="001", value=1)).run()
        table.put(Note(pk="A", sk="010", value=10)).run()
        table.put(Note(pk="A", sk="100", value=100)).run()

        print("get:", table.get("PK", "A").range("SK", Operator.EQUAL, "010").one(Note))

        notes = table.get("PK", "A").range("SK", Operator.BEGINS_WITH, "0").all(Note)
        print("query begins_with('0'):", notes)

        bumped = table.update("PK", "A").range("SK", "100").add("Value", 1).value(Note)
        print("update:", bumped)
    finally:
        table.delete_table().wait()


if __name__ == "__main__":
    main()
