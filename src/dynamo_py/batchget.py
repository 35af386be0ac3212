from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Self

from .attributevalue import Item, item_from_wire
from .capacity import ConsumedCapacity
from .context import Context, ensure
from .decode import unmarshal_item
from .errors import (
    BatchRetryExceededError,
    NoInputError,
    NotFoundError,
    ValidationError,
)
from .keys import as_keyed
from .query import Operator, Query

if TYPE_CHECKING:
    from .batchwrite import BatchWrite
    from .table import Table

logger = logging.getLogger(__name__)

MAX_GET_OPS = 100


class Batch:
    """Batch operations against a table whose key attributes are named up front."""

    def __init__(self, table: Table, hash_key: str = "", range_key: str = "") -> None:
        self.table = table
        self.hash_key = hash_key
        self.range_key = range_key

    def get(self, *keys: Any) -> BatchGet:
        """Get items by key.

        Keys are ``Keys`` values, ``Keyed`` objects, ``(hash, range)`` tuples
        or bare hash key values.
        """
        return BatchGet(self).and_(*keys)

    def write(self) -> BatchWrite:
        from .batchwrite import BatchWrite

        return BatchWrite(self)


class BatchGet:
    """Gets items from one or more tables, up to 100 keys per request."""

    def __init__(self, batch: Batch) -> None:
        self.batch = batch
        self.reqs: list[Query] = []
        self._projections: dict[str, list[str]] = {}
        self._projection: list[str] = []
        self._consistent = False
        self._cc: ConsumedCapacity | None = None
        self._err: Exception | None = None

    def and_(self, *keys: Any) -> Self:
        return self._add(self.batch.table, self.batch.hash_key, self.batch.range_key, keys)

    def from_(self, table: Table, hash_key: str, *keys: Any) -> Self:
        """Also get items from another table with a hash key only."""
        return self._add(table, hash_key, "", keys)

    def from_range(self, table: Table, hash_key: str, range_key: str, *keys: Any) -> Self:
        return self._add(table, hash_key, range_key, keys)

    def project(self, *paths: str) -> Self:
        """Default projection for tables without their own (see ``project_table``)."""
        self._projection = list(paths)
        return self

    def project_table(self, table: Table, *paths: str) -> Self:
        self._projections[table.name] = list(paths)
        return self

    def merge(self, *others: BatchGet) -> Self:
        """Fold the keys of ``others`` into this request.

        Consistent reads win. Projections of other tables are unioned; this
        request's own table keeps its projection.
        """
        this = self.batch.table.name
        for src in others:
            self.reqs.extend(src.reqs)
            self._consistent = self._consistent or src._consistent
            for table, proj in src._projections.items():
                if table != this:
                    self._merge_projection(table, proj)
            if src._projection and src.batch.table.name != this:
                self._merge_projection(src.batch.table.name, src._projection)
        return self

    def consistent(self, on: bool = True) -> Self:
        self._consistent = on
        return self

    def consumed_capacity(self, cc: ConsumedCapacity) -> Self:
        self._cc = cc
        return self

    def iter(self, out: Any = dict, *, ctx: Context | None = None) -> BatchGetIter:
        return BatchGetIter(self, out, ctx=ctx)

    def iter_with_table(self, out: Any = dict, *, ctx: Context | None = None) -> Iterator[tuple[str, Any]]:
        """Like ``iter`` but yields ``(table_name, item)`` pairs."""
        it = self.iter(out, ctx=ctx)
        for item in it:
            yield it.table, item

    def all(self, out: Any = dict, *, ctx: Context | None = None) -> list[Any]:
        """Fetch every item; ``NotFoundError`` when none of the keys exist."""
        return list(self.iter(out, ctx=ctx))

    def check(self) -> None:
        if self._err is not None:
            raise self._err

    def input(self, start: int) -> dict[str, Any] | None:
        """Request for the keys starting at ``start``; ``None`` when all were sent."""
        if start >= len(self.reqs):
            return None
        window = self.reqs[start : start + MAX_GET_OPS]

        for get in window:
            proj = self._projection_for(get.table.name)
            if proj:
                get.project(*proj)
                self._set_error(get._err)

        items: dict[str, dict[str, Any]] = {}
        for get in window:
            kas = items.get(get.table.name)
            if kas is None:
                kas = get.keys_and_attribs()
                if self._consistent:
                    kas["ConsistentRead"] = True
                items[get.table.name] = kas
                continue
            kas["Keys"].extend(get.keys_and_attribs()["Keys"])

        req: dict[str, Any] = {"RequestItems": items}
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return req

    def _add(self, table: Table, hash_key: str, range_key: str, keys: tuple[Any, ...]) -> Self:
        for key in keys:
            if key is None:
                self._set_error(ValidationError("batch: key must not be None"))
                break
            keyed = as_keyed(key)
            get = Query(table, hash_key, keyed.hash_key())
            rk = keyed.range_key()
            if range_key and rk is not None:
                get.range(range_key, Operator.EQUAL, rk)
            self._set_error(get._err)
            self.reqs.append(get)
        return self

    def _projection_for(self, table: str) -> list[str]:
        return self._projections.get(table) or self._projection

    def _merge_projection(self, table: str, proj: list[str]) -> None:
        merged = list(self._projections.get(table, []))
        merged.extend(p for p in proj if p not in merged)
        self._projections[table] = merged

    def _set_error(self, err: Exception | None) -> None:
        if self._err is None and err is not None:
            self._err = err


class BatchGetIter:
    """Iterates the items of a BatchGet.

    Unprocessed keys are requested again after a backoff pause. ``table``
    names the table the most recent item came from.
    """

    def __init__(self, bg: BatchGet, out: Any = dict, *, ctx: Context | None = None) -> None:
        self._bg = bg
        self._out = out
        self._ctx = ensure(ctx)
        self._db = bg.batch.table.db
        self._input: dict[str, Any] | None = None
        self._output: dict[str, Any] | None = None
        self._got: list[tuple[str, Item]] = []
        self._idx = 0
        self._total = 0
        self._processed = 0
        self._resubmits = 0
        self._backoff = self._db.backoff.start()
        self._done = False
        self.table = ""

    def __iter__(self) -> BatchGetIter:
        return self

    def __next__(self) -> Any:
        if self._done:
            raise StopIteration
        try:
            got = self._next_item()
        except Exception:
            self._done = True
            raise
        if got is None:
            self._done = True
            raise StopIteration
        self.table, item = got
        return unmarshal_item(item, self._out)

    def _next_item(self) -> tuple[str, Item] | None:
        bg = self._bg
        bg.check()
        if not bg.reqs:
            raise NoInputError()

        while True:
            self._ctx.check()

            if self._output is not None and self._idx < len(self._got):
                got = self._got[self._idx]
                self._idx += 1
                self._total += 1
                return got

            if self._input is None:
                self._input = bg.input(self._processed)
                bg.check()

            if self._output is not None:
                unprocessed = self._output.get("UnprocessedKeys") or {}
                self._processed += _count_keys(self._input["RequestItems"])
                self._processed -= _count_keys(unprocessed)
                if not unprocessed:
                    self._input = bg.input(self._processed)
                    if self._input is None:
                        if self._total == 0:
                            raise NotFoundError()
                        return None
                    self._resubmits = 0
                    self._backoff.reset()
                else:
                    self._resubmit(unprocessed)
                self._idx = 0

            req = self._input
            if req is None:
                return None
            self._output = self._db.call(self._ctx, "batch_get_item", req)
            if bg._cc is not None:
                bg._cc.inc_requests()
                bg._cc.add_all(self._output.get("ConsumedCapacity"))

            self._got = [
                (table, item_from_wire(raw) or {})
                for table, raws in (self._output.get("Responses") or {}).items()
                for raw in raws
            ]

    def _resubmit(self, unprocessed: dict[str, Any]) -> None:
        count = _count_keys(unprocessed)
        max_retries = self._db.max_retries
        if 0 <= max_retries <= self._resubmits:
            raise BatchRetryExceededError(operation="batch_get_item", unprocessed_count=count)
        self._resubmits += 1

        delay = self._backoff.next() or 0.0
        logger.debug("resubmitting %d unprocessed keys (delay=%.3fs)", count, delay)
        self._db.sleep(self._ctx, delay)
        self._input = {**(self._input or {}), "RequestItems": unprocessed}


def _count_keys(request_items: dict[str, Any]) -> int:
    return sum(len(kas.get("Keys") or ()) for kas in request_items.values())
