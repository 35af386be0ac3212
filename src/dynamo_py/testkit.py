from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from botocore.exceptions import ClientError

from .mocks import ANY, FakeDynamoDBClient


def fixed_rand_bytes(seed: bytes) -> Callable[[int], bytes]:
    if not seed:
        raise ValueError("seed must be non-empty")

    def rand(n: int) -> bytes:
        if n < 0:
            raise ValueError("n must be >= 0")
        if n == 0:
            return b""
        repeats = (n + len(seed) - 1) // len(seed)
        return (seed * repeats)[:n]

    return rand


def no_sleep(_: float) -> None:
    return None


def client_error(
    code: str,
    message: str = "",
    *,
    operation: str = "DynamoDB",
    status: int = 400,
    extra: Mapping[str, Any] | None = None,
) -> ClientError:
    """Build the ``ClientError`` botocore raises for a service error ``code``.

    ``extra`` is merged into the top level of the error response, e.g.
    ``{"Item": ...}`` or ``{"CancellationReasons": [...]}``.
    """
    response: dict[str, Any] = {
        "Error": {"Code": code, "Message": message or code},
        "ResponseMetadata": {"HTTPStatusCode": status},
    }
    if extra:
        response.update(extra)
    return ClientError(response, operation)  # type: ignore[arg-type]


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "client_error",
    "fixed_rand_bytes",
    "no_sleep",
]
