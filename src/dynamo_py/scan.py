from __future__ import annotations

import copy
import queue
import threading
from collections.abc import Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Self

from .attributevalue import Item
from .capacity import ConsumedCapacity
from .context import Context, ensure
from .decode import unmarshal_item
from .errors import LastEvaluatedKeyError, ValidationError
from .iterator import PagedRequest, PagingIter, PagingKey

if TYPE_CHECKING:
    from .table import Table

_INT32_MAX = 2**31 - 1


class Scan(PagedRequest):
    """A request to read every item of a table or index."""

    operation = "scan"

    def __init__(self, table: Table) -> None:
        super().__init__(table)
        self._segment = 0
        self._total_segments = 0

    def segment(self, segment: int, total_segments: int) -> Self:
        """Scan one segment of a manual parallel scan. Ignored by the parallel methods."""
        self._segment = segment
        self._total_segments = total_segments
        if total_segments > _INT32_MAX:
            self._set_error(
                ValidationError(f"total segments in Scan must be less than or equal to {_INT32_MAX} (got {total_segments})")
            )
        return self

    def count(self, *, ctx: Context | None = None) -> int:
        """Number of items matching the scan.

        Limits are checked after each page, so the count may exceed them.
        """
        return self._count(ctx)

    def input(self) -> dict[str, Any]:
        req = self._base_input()
        if self._total_segments > 0:
            req["Segment"] = self._segment
            req["TotalSegments"] = self._total_segments
        return self.subber.attach(req)

    def iter_parallel(self, segments: int, out: Any = dict, *, ctx: Context | None = None) -> ParallelIter:
        return ParallelIter(self._segments(segments, ()), self._cc, out, ctx=ctx)

    def iter_parallel_start_from(
        self, keys: Sequence[PagingKey | None], out: Any = dict, *, ctx: Context | None = None
    ) -> ParallelIter:
        return ParallelIter(self._segments(len(keys), keys), self._cc, out, ctx=ctx)

    def all_parallel(self, segments: int, out: Any = dict, *, ctx: Context | None = None) -> list[Any]:
        return list(ParallelIter(self._segments(segments, ()), self._cc, out, ctx=ctx, track_keys=False))

    def all_parallel_with_last_evaluated_keys(
        self, segments: int, out: Any = dict, *, ctx: Context | None = None
    ) -> tuple[list[Any], list[PagingKey | None]]:
        it = self.iter_parallel(segments, out, ctx=ctx)
        items = list(it)
        return items, it.last_evaluated_keys(items)

    def all_parallel_start_from(
        self, keys: Sequence[PagingKey | None], out: Any = dict, *, ctx: Context | None = None
    ) -> tuple[list[Any], list[PagingKey | None]]:
        it = self.iter_parallel_start_from(keys, out, ctx=ctx)
        items = list(it)
        return items, it.last_evaluated_keys(items)

    def _segments(self, segments: int, leks: Sequence[PagingKey | None]) -> list[Scan | None]:
        self.check()
        if segments <= 0:
            raise ValidationError("segments must be > 0")

        out: list[Scan | None] = []
        for i in range(segments):
            if i < len(leks) and leks[i] is None:
                # this segment already finished
                out.append(None)
                continue
            seg = copy.copy(self)
            seg.segment(i, segments)
            seg._cc = ConsumedCapacity() if self._cc is not None else None
            seg.start_from(leks[i] if i < len(leks) else None)
            out.append(seg)
        return out


class ParallelIter:
    """Merges the results of several scan segments running on worker threads.

    Item order across segments is not defined. Call ``close`` (or use the
    iterator as a context manager) when abandoning it before exhaustion.
    """

    def __init__(
        self,
        segments: list[Scan | None],
        cc: ConsumedCapacity | None,
        out: Any = dict,
        *,
        ctx: Context | None = None,
        track_keys: bool = True,
    ) -> None:
        self._segments = segments
        self._cc = cc
        self._out = out
        self._ctx = ensure(ctx)
        self._track_keys = track_keys
        self._items: queue.Queue[Any] = queue.Queue(maxsize=len(segments) * 4 or 1)
        # finished segments keep None; live ones start from their current key
        self._leks: list[PagingKey | None] = [seg._start_key if seg else None for seg in segments]
        self._lek_err: LastEvaluatedKeyError | None = None
        self._err: BaseException | None = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._started = False
        self._executor: ThreadPoolExecutor | None = None
        self._futures: list[Future[None]] = []

    def __iter__(self) -> Iterator[Any]:
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __del__(self) -> None:
        self.close()

    def __next__(self) -> Any:
        if not self._started:
            self._start()
        while True:
            if self._stop.is_set():
                self._finish()
                raise StopIteration
            try:
                got = self._items.get(timeout=0.1)
            except queue.Empty:
                if all(f.done() for f in self._futures) and self._items.empty():
                    self._finish()
                    raise StopIteration
                continue
            try:
                return unmarshal_item(got, self._out)
            except Exception:
                self.close()
                raise

    def close(self) -> None:
        """Stop the workers and drop buffered items. Safe to call more than once."""
        self._stop.set()
        self._drain()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def last_evaluated_keys(self, items: list[Any] | None = None) -> list[PagingKey | None]:
        """One paging key per segment, in segment order; ``None`` marks a finished segment."""
        with self._lock:
            keys = list(self._leks)
            err = self._lek_err
        if err is not None:
            raise LastEvaluatedKeyError(str(err), key=err.key, items=items) from err
        return keys

    def _start(self) -> None:
        self._started = True
        live = [(i, seg) for i, seg in enumerate(self._segments) if seg is not None]
        if not live:
            return
        self._executor = ThreadPoolExecutor(max_workers=len(live), thread_name_prefix="dynamo-scan")
        self._futures = [self._executor.submit(self._run_segment, i, seg) for i, seg in live]

    def _run_segment(self, i: int, seg: Scan) -> None:
        try:
            it = PagingIter(seg, Item, ctx=self._ctx)
            for item in it:
                if not self._put(item):
                    return
                if self._track_keys:
                    self._store_key(i, it)
            if self._stop.is_set():
                return
            if self._track_keys:
                # None once the segment is exhausted
                self._store_key(i, it)
            if self._cc is not None and seg._cc is not None:
                with self._lock:
                    self._cc.merge(seg._cc)
        except BaseException as err:
            with self._lock:
                self._err = self._err or err
            self._stop.set()

    def _store_key(self, i: int, it: PagingIter) -> None:
        try:
            lek = it.last_evaluated_key()
        except LastEvaluatedKeyError as err:
            lek = err.key
            with self._lock:
                self._lek_err = self._lek_err or err
        with self._lock:
            self._leks[i] = lek

    def _put(self, item: Any) -> bool:
        while not self._stop.is_set():
            self._ctx.check()
            try:
                self._items.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _drain(self) -> None:
        while True:
            try:
                self._items.get_nowait()
            except queue.Empty:
                return

    def _finish(self) -> None:
        self.close()
        with self._lock:
            err = self._err
            self._err = None
        if err is not None:
            raise err
