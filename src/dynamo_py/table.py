from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .context import Context, ensure
from .describe import Description, Status, new_description
from .errors import ValidationError
from .iterator import PagingKey

if TYPE_CHECKING:
    from .batchget import Batch
    from .conditioncheck import ConditionCheck
    from .db import DB
    from .delete import Delete
    from .put import Put
    from .query import Query
    from .scan import Scan
    from .schema import DeleteTable, UpdateTable
    from .ttl import DescribeTTL, UpdateTTL
    from .update import Update


class Table:
    """A handle on one DynamoDB table; every request starts here."""

    def __init__(self, db: DB, name: str) -> None:
        self.db = db
        self.name = name

    def __repr__(self) -> str:
        return f"Table({self.name!r})"

    def get(self, name: str, value: Any) -> Query:
        """Start a request for items whose hash key ``name`` equals ``value``."""
        from .query import Query

        return Query(self, name, value)

    def scan(self) -> Scan:
        from .scan import Scan

        return Scan(self)

    def put(self, item: Any) -> Put:
        from .put import Put

        return Put(self, item)

    def update(self, name: str, value: Any) -> Update:
        from .update import Update

        return Update(self, name, value)

    def delete(self, name: str, value: Any) -> Delete:
        from .delete import Delete

        return Delete(self, name, value)

    def check(self, name: str, value: Any) -> ConditionCheck:
        from .conditioncheck import ConditionCheck

        return ConditionCheck(self, name, value)

    def batch(self, hash_key: str = "", range_key: str = "") -> Batch:
        from .batchget import Batch

        return Batch(self, hash_key, range_key)

    def describe(self, *, ctx: Context | None = None) -> Description:
        """Describe the table and refresh the cached key names used for paging."""
        resp = self.db.call(ctx, "describe_table", {"TableName": self.name})
        desc = new_description(resp.get("Table") or {})
        self.db.store_description(desc)
        return desc

    def primary_keys(
        self,
        ctx: Context | None,
        lek: PagingKey | None,
        esk: PagingKey | None,
        index: str = "",
    ) -> frozenset[str]:
        """Attribute names that make up a paging key.

        A key seen on the wire is the cheapest source; otherwise the table
        is described once and the result cached on the DB.
        """
        if lek:
            return frozenset(lek)
        if esk:
            return frozenset(esk)

        desc = self.db.load_description(self.name)
        if desc is None:
            desc = self.describe(ctx=ensure(ctx))
        keys = desc.keys(index or None)
        if keys is None:
            raise ValidationError(f"unknown index {index!r} for table {self.name}")
        return keys

    def update_table(self) -> UpdateTable:
        from .schema import UpdateTable

        return UpdateTable(self)

    def delete_table(self) -> DeleteTable:
        from .schema import DeleteTable

        return DeleteTable(self)

    def update_ttl(self, attribute: str, enabled: bool) -> UpdateTTL:
        from .ttl import UpdateTTL

        return UpdateTTL(self, attribute, enabled)

    def describe_ttl(self) -> DescribeTTL:
        from .ttl import DescribeTTL

        return DescribeTTL(self)

    def wait(self, *statuses: Status, ctx: Context | None = None) -> Description:
        """Block until the table reaches one of ``statuses`` (ACTIVE by default).

        Pass ``Status.DELETED`` to wait for the table to disappear.
        """
        from .schema import wait_for_status

        return wait_for_status(self, statuses, ctx=ctx)
