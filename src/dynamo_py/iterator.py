from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from typing import TYPE_CHECKING, Any, Self

from botocore.exceptions import BotoCoreError

from .attributevalue import Item, item_from_wire, item_to_wire
from .capacity import ConsumedCapacity
from .context import Context, ensure
from .decode import unmarshal_item
from .errors import DynamoPyError, LastEvaluatedKeyError, ValidationError
from .expression import Subber, wrap_expr

if TYPE_CHECKING:
    from .table import Table

logger = logging.getLogger(__name__)

type PagingKey = Item

_INT32_MAX = 2**31 - 1


def lekify(item: Item | None, keys: Collection[str]) -> PagingKey:
    """Project ``item`` down to the attributes named in ``keys``."""
    if item is None:
        raise ValidationError("can't determine LastEvaluatedKey: no head item")
    lek: PagingKey = {}
    for k in keys:
        if k not in item:
            raise ValidationError(f"can't determine LastEvaluatedKey: missing key {k!r} (hint: projection?)")
        lek[k] = item[k]
    return lek


class PagedRequest:
    """Fluent state shared by Query and Scan.

    Errors raised while chaining are held and re-raised by the first
    execution method, before any request is sent.
    """

    operation = ""

    def __init__(self, table: Table) -> None:
        self.table = table
        self.subber = Subber()
        self._start_key: PagingKey | None = None
        self._index = ""
        self._projection = ""
        self._filters: list[str] = []
        self._consistent = False
        self._limit = 0
        self._search_limit = 0
        self._request_limit = 0
        self._cc: ConsumedCapacity | None = None
        self._err: Exception | None = None

    def start_from(self, key: PagingKey | None) -> Self:
        self._start_key = dict(key) if key else None
        return self

    def index(self, name: str) -> Self:
        self._index = name
        return self

    def project(self, *paths: str) -> Self:
        try:
            self._projection = ", ".join(self.subber.escape(p) for p in paths)
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def project_expr(self, expr: str, *args: Any) -> Self:
        try:
            self._projection = self.subber.sub_expr(expr, *args)
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def filter(self, expr: str, *args: Any) -> Self:
        """Add a filter expression; several filters are joined with AND.

        Use ``'Name'`` or ``$`` for names (required for reserved words) and
        ``?`` for values.
        """
        try:
            self._filters.append(wrap_expr(self.subber.sub_expr_n(expr, *args)))
        except DynamoPyError as err:
            self._set_error(err)
        return self

    def consistent(self, on: bool = True) -> Self:
        self._consistent = on
        return self

    def limit(self, limit: int) -> Self:
        self._limit = limit
        return self

    def search_limit(self, limit: int) -> Self:
        """Cap the number of items evaluated; implies a single request."""
        self._search_limit = min(limit, _INT32_MAX)
        return self

    def request_limit(self, limit: int) -> Self:
        self._request_limit = limit
        return self

    def consumed_capacity(self, cc: ConsumedCapacity) -> Self:
        self._cc = cc
        return self

    def iter(self, out: Any = dict, *, ctx: Context | None = None) -> PagingIter:
        return PagingIter(self, out, ctx=ctx)

    def all(self, out: Any = dict, *, ctx: Context | None = None) -> list[Any]:
        return list(self.iter(out, ctx=ctx))

    def all_with_last_evaluated_key(
        self, out: Any = dict, *, ctx: Context | None = None
    ) -> tuple[list[Any], PagingKey | None]:
        it = self.iter(out, ctx=ctx)
        items = list(it)
        try:
            return items, it.last_evaluated_key()
        except LastEvaluatedKeyError as err:
            err.items = items
            raise

    def check(self) -> None:
        if self._err is not None:
            raise self._err

    def input(self) -> dict[str, Any]:
        raise NotImplementedError

    def _base_input(self) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.table.name}
        if self._start_key:
            req["ExclusiveStartKey"] = item_to_wire(self._start_key)
        if self._consistent:
            req["ConsistentRead"] = True
        if self._limit > 0 and not self._filters:
            req["Limit"] = min(self._limit, _INT32_MAX)
        if self._search_limit > 0:
            req["Limit"] = self._search_limit
        if self._index:
            req["IndexName"] = self._index
        if self._projection:
            req["ProjectionExpression"] = self._projection
        if self._filters:
            req["FilterExpression"] = " AND ".join(self._filters)
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return req

    def _count(self, ctx: Context | None) -> int:
        self.check()
        ctx = ensure(ctx)
        req = self.input()
        req["Select"] = "COUNT"
        count = scanned = reqs = 0
        while True:
            resp = self.table.db.call(ctx, self.operation, req)
            self._record(resp)
            reqs += 1
            count += int(resp.get("Count") or 0)
            scanned += int(resp.get("ScannedCount") or 0)

            lek = resp.get("LastEvaluatedKey")
            if (
                not lek
                or (self._limit > 0 and count >= self._limit)
                or (self._search_limit > 0 and scanned >= self._search_limit)
                or (self._request_limit > 0 and reqs >= self._request_limit)
            ):
                return count
            req["ExclusiveStartKey"] = lek

    def _record(self, resp: Mapping[str, Any]) -> None:
        if self._cc is not None:
            self._cc.inc_requests()
            self._cc.add(resp.get("ConsumedCapacity"))

    def _set_error(self, err: Exception) -> None:
        if self._err is None:
            self._err = err


class PagingIter:
    """Iterates the results of a Query or Scan, fetching pages as needed."""

    def __init__(self, request: PagedRequest, out: Any = dict, *, ctx: Context | None = None) -> None:
        self._request = request
        self._out = out
        self._ctx = ensure(ctx)
        self._input: dict[str, Any] | None = None
        self._output: dict[str, Any] | None = None
        self._idx = 0
        self._n = 0
        self._reqs = 0
        self._done = False
        # last item handed out, used to infer a paging key
        self._last: Item | None = None
        self._keys: frozenset[str] | None = None
        self._key_err: Exception | None = None
        # longest LastEvaluatedKey / ExclusiveStartKey seen, a cheap source of key names
        self._ex_lek: dict[str, Any] = {}
        self._ex_esk: dict[str, Any] = {}
        self.scanned = 0
        self.count = 0

    def __iter__(self) -> PagingIter:
        return self

    def __next__(self) -> Any:
        if self._done:
            raise StopIteration
        try:
            item = self._next_item()
            if item is None:
                self._done = True
                raise StopIteration
            return unmarshal_item(item, self._out)
        except StopIteration:
            raise
        except Exception:
            self._done = True
            raise

    def last_evaluated_key(self, ctx: Context | None = None) -> PagingKey | None:
        """A key for ``start_from`` that continues after the last item returned.

        When the service key can't be used as is, one is inferred from the
        last item. If that fails, ``LastEvaluatedKeyError`` carries the
        service key instead.
        """
        if self._output is None:
            return None
        op = self._request.operation
        lek = item_from_wire(self._output.get("LastEvaluatedKey"))
        if self._idx == len(self._output.get("Items") or []):
            return lek

        if self._keys is None and self._key_err is None:
            self._resolve_keys(ctx or self._ctx)
        if self._key_err is not None:
            logger.warning("failed to determine LastEvaluatedKey in %s: %s", op, self._key_err)
            raise LastEvaluatedKeyError(
                f"failed to determine LastEvaluatedKey in {op}: {self._key_err}", key=lek
            ) from self._key_err

        try:
            return lekify(self._last, self._keys or ())
        except ValidationError as err:
            logger.warning("failed to infer LastEvaluatedKey in %s: %s", op, err)
            raise LastEvaluatedKeyError(f"failed to infer LastEvaluatedKey in {op}: {err}", key=lek) from err

    def _next_item(self) -> Item | None:
        req = self._request
        req.check()
        while True:
            self._ctx.check()

            if req._limit > 0 and self._n == req._limit:
                # fetch key names now so a paging key can be inferred later
                self._resolve_keys(self._ctx)
                return None

            if self._output is not None:
                items = self._output.get("Items") or []
                if self._idx < len(items):
                    item = item_from_wire(items[self._idx]) or {}
                    self._idx += 1
                    self._n += 1
                    self._last = item
                    return item

            if self._input is None:
                self._input = req.input()
            esk = self._input.get("ExclusiveStartKey") or {}
            if len(esk) > len(self._ex_esk):
                self._ex_esk = esk

            if self._output is not None:
                lek = self._output.get("LastEvaluatedKey")
                if not lek or req._search_limit > 0:
                    return None
                if req._request_limit > 0 and self._reqs == req._request_limit:
                    return None
                self._input["ExclusiveStartKey"] = lek
                self._idx = 0

            self._output = req.table.db.call(self._ctx, req.operation, self._input)
            req._record(self._output)
            self._reqs += 1
            self.scanned += int(self._output.get("ScannedCount") or 0)
            self.count += int(self._output.get("Count") or 0)

            lek = self._output.get("LastEvaluatedKey") or {}
            if len(lek) > len(self._ex_lek):
                self._ex_lek = lek

            if not self._output.get("Items"):
                if req._request_limit > 0 and self._reqs == req._request_limit:
                    return None
                if lek:
                    # keep going until a page has data
                    continue
                return None

    def _resolve_keys(self, ctx: Context) -> None:
        try:
            self._keys = self._request.table.primary_keys(
                ctx, self._ex_lek, self._ex_esk, self._request._index
            )
        except (DynamoPyError, BotoCoreError) as err:
            self._key_err = err
