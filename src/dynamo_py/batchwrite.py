from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Self

from botocore.exceptions import BotoCoreError

from .attributevalue import item_to_wire
from .capacity import ConsumedCapacity
from .context import Context, ensure
from .delete import Delete
from .encode import marshal_item
from .errors import BatchRetryExceededError, BatchWriteError, DynamoPyError, NoInputError
from .keys import as_keyed

if TYPE_CHECKING:
    from .batchget import Batch
    from .table import Table

logger = logging.getLogger(__name__)

MAX_WRITE_OPS = 25


def _chunked[T](items: list[T], size: int) -> list[list[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchWrite:
    """Puts and deletes items across one or more tables, 25 operations per request."""

    def __init__(self, batch: Batch) -> None:
        self.batch = batch
        # (table name, WriteRequest)
        self.ops: list[tuple[str, dict[str, Any]]] = []
        self._cc: ConsumedCapacity | None = None
        self._err: Exception | None = None

    def put(self, *items: Any) -> Self:
        return self.put_in(self.batch.table, *items)

    def put_in(self, table: Table, *items: Any) -> Self:
        for item in items:
            try:
                encoded = marshal_item(item)
            except DynamoPyError as err:
                self._set_error(err)
                continue
            self.ops.append((table.name, {"PutRequest": {"Item": item_to_wire(encoded)}}))
        return self

    def delete(self, *keys: Any) -> Self:
        return self._delete_in(self.batch.table, self.batch.hash_key, self.batch.range_key, keys)

    def delete_in(self, table: Table, hash_key: str, *keys: Any) -> Self:
        return self._delete_in(table, hash_key, "", keys)

    def delete_in_range(self, table: Table, hash_key: str, range_key: str, *keys: Any) -> Self:
        return self._delete_in(table, hash_key, range_key, keys)

    def merge(self, *others: BatchWrite) -> Self:
        for src in others:
            self.ops.extend(src.ops)
            if src._err is not None:
                self._set_error(src._err)
        return self

    def consumed_capacity(self, cc: ConsumedCapacity) -> Self:
        self._cc = cc
        return self

    def run(self, *, ctx: Context | None = None) -> int:
        """Write everything, returning how many operations the service confirmed.

        A failure part way raises ``BatchWriteError`` with ``wrote`` set to
        the confirmed count and the underlying error as ``__cause__``.
        """
        if self._err is not None:
            raise self._err
        if not self.ops:
            raise NoInputError()

        ctx = ensure(ctx)
        db = self.batch.table.db
        wrote = 0
        for chunk in _chunked(self.ops, MAX_WRITE_OPS):
            ops = chunk
            backoff = db.backoff.start()
            resubmits = 0
            while True:
                try:
                    resp = db.call(ctx, "batch_write_item", self.input(ops))
                except (DynamoPyError, BotoCoreError) as err:
                    raise BatchWriteError(str(err), wrote=wrote) from err
                if self._cc is not None:
                    self._cc.inc_requests()
                    self._cc.add_all(resp.get("ConsumedCapacity"))

                wrote += len(ops)
                unprocessed = resp.get("UnprocessedItems") or {}
                if not unprocessed:
                    break

                ops = [(table, op) for table, reqs in unprocessed.items() for op in reqs]
                wrote -= len(ops)

                if 0 <= db.max_retries <= resubmits:
                    err = BatchRetryExceededError(operation="batch_write_item", unprocessed_count=len(ops))
                    raise BatchWriteError(str(err), wrote=wrote) from err
                resubmits += 1
                delay = backoff.next() or 0.0
                logger.debug("resubmitting %d unprocessed writes (delay=%.3fs)", len(ops), delay)
                try:
                    db.sleep(ctx, delay)
                except DynamoPyError as err:
                    raise BatchWriteError(str(err), wrote=wrote) from err
        return wrote

    def input(self, ops: list[tuple[str, dict[str, Any]]]) -> dict[str, Any]:
        items: dict[str, list[dict[str, Any]]] = {}
        for table, op in ops:
            items.setdefault(table, []).append(op)
        req: dict[str, Any] = {"RequestItems": items}
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return req

    def _delete_in(self, table: Table, hash_key: str, range_key: str, keys: tuple[Any, ...]) -> Self:
        for key in keys:
            keyed = as_keyed(key)
            delete = Delete(table, hash_key, keyed.hash_key())
            rk = keyed.range_key()
            if range_key and rk is not None:
                delete.range(range_key, rk)
            if delete._err is not None:
                self._set_error(delete._err)
                continue
            self.ops.append((table.name, {"DeleteRequest": {"Key": item_to_wire(delete.key())}}))
        return self

    def _set_error(self, err: Exception) -> None:
        if self._err is None:
            self._err = err
