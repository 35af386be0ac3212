from __future__ import annotations

import threading
import time

from .errors import CanceledError, ContextError, DeadlineExceededError


class Context:
    """Cooperative cancellation with an optional deadline.

    Drivers call ``check()`` before every service request and ``sleep()``
    between retries; both raise once the context has ended.
    """

    def __init__(self, *, deadline: float | None = None, parent: Context | None = None) -> None:
        self._done = threading.Event()
        self._parent = parent
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

    @classmethod
    def background(cls) -> Context:
        return cls()

    def with_timeout(self, seconds: float) -> Context:
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def cancel(self) -> None:
        self._done.set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def error(self) -> ContextError | None:
        if self._done.is_set():
            return CanceledError()
        if self._parent is not None:
            err = self._parent.error()
            if err is not None:
                return err
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            return DeadlineExceededError()
        return None

    def check(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    def sleep(self, seconds: float) -> None:
        self.check()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._wait(remaining)
            raise DeadlineExceededError()
        self._wait(seconds)
        self.check()

    def _wait(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self._parent is None:
            self._done.wait(seconds)
            return
        # wake up for a parent cancel too
        deadline = time.monotonic() + seconds
        while not self._done.is_set() and self._parent.error() is None:
            left = deadline - time.monotonic()
            if left <= 0:
                return
            self._done.wait(min(left, 0.05))


def ensure(ctx: Context | None) -> Context:
    return ctx if ctx is not None else Context.background()
