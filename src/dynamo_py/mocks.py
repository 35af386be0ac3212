from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .attributevalue import is_attribute_value, to_wire

# boto3 client methods the library calls
OPERATIONS = frozenset(
    {
        "get_item",
        "put_item",
        "update_item",
        "delete_item",
        "query",
        "scan",
        "batch_get_item",
        "batch_write_item",
        "transact_get_items",
        "transact_write_items",
        "list_tables",
        "create_table",
        "update_table",
        "delete_table",
        "describe_table",
        "update_time_to_live",
        "describe_time_to_live",
    }
)


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()

type Handler = Callable[[dict[str, Any]], Mapping[str, Any]]
type Check = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]


def _diff(expected: Any, actual: Any, path: str) -> str | None:
    """First difference between ``expected`` and ``actual``, or None.

    ``expected`` is a subset: dicts only need the keys they name. Attribute
    values from ``dynamo_py.attributevalue`` are compared in wire form.
    """
    if expected is ANY:
        return None
    if is_attribute_value(expected):
        expected = to_wire(expected)

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            return f"{path}: expected dict, got {type(actual).__name__}"
        for k, v in expected.items():
            if k not in actual:
                return f"{path}: missing key {k!r}"
            found = _diff(v, actual[k], f"{path}.{k}")
            if found is not None:
                return found
        return None

    if isinstance(expected, list):
        if not isinstance(actual, list) or len(expected) != len(actual):
            return f"{path}: expected {expected!r}, got {actual!r}"
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            found = _diff(e, a, f"{path}[{i}]")
            if found is not None:
                return found
        return None

    if expected != actual:
        return f"{path}: expected {expected!r}, got {actual!r}"
    return None


@dataclass(frozen=True)
class Scripted:
    """One queued answer for a single call."""

    operation: str
    check: Check | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None

    def answer(self, operation: str, req: dict[str, Any]) -> dict[str, Any]:
        if operation != self.operation:
            raise AssertionError(f"expected {self.operation}, got {operation}")
        if callable(self.check):
            self.check(req)
        elif self.check is not None:
            found = _diff(dict(self.check), req, operation)
            if found is not None:
                raise AssertionError(found)
        if self.error is not None:
            raise self.error
        return dict(self.response or {})


class FakeDynamoDBClient:
    """Stands in for a boto3 DynamoDB client.

    Calls are answered, in order, by queued ``expect`` entries; the expected
    request is a subset (``ANY`` matches anything, attribute values match
    their wire form) or a callable that asserts on it. Operations registered
    with ``on`` bypass the queue and answer every call, which suits requests
    issued from several threads.
    """

    def __init__(self) -> None:
        self._queue: list[Scripted] = []
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        operation: str,
        check: Check | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._queue.append(Scripted(_known(operation), check, response, error))

    def on(self, operation: str, handler: Handler) -> None:
        self._handlers[_known(operation)] = handler

    def assert_no_pending(self) -> None:
        if self._queue:
            raise AssertionError(f"pending expected calls: {self._queue!r}")

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == operation]

    def __getattr__(self, name: str) -> Callable[..., dict[str, Any]]:
        if name not in OPERATIONS:
            raise AttributeError(name)

        def call(**kwargs: Any) -> dict[str, Any]:
            return self._dispatch(name, kwargs)

        return call

    def _dispatch(self, operation: str, req: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((operation, dict(req)))
            handler = self._handlers.get(operation)
            if handler is None:
                if not self._queue:
                    raise AssertionError(f"unexpected call: {operation}")
                scripted = self._queue.pop(0)
        if handler is not None:
            return dict(handler(req))
        return scripted.answer(operation, req)


def _known(operation: str) -> str:
    if operation not in OPERATIONS:
        raise ValueError(f"unknown DynamoDB operation {operation!r}")
    return operation
