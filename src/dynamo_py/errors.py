from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .attributevalue import Item


class DynamoPyError(Exception):
    pass


class NotFoundError(DynamoPyError):
    def __init__(self, message: str = "no item found") -> None:
        super().__init__(message)


class TooManyResultsError(DynamoPyError):
    def __init__(self, message: str = "too many results") -> None:
        super().__init__(message)


class NoInputError(DynamoPyError):
    def __init__(self, message: str = "no input items") -> None:
        super().__init__(message)


class ValidationError(DynamoPyError):
    pass


class CodecError(DynamoPyError):
    pass


class KindMismatchError(CodecError):
    def __init__(self, *, path: str, expected: str, got: str) -> None:
        super().__init__(f"{path or '<root>'}: cannot decode {got} into {expected}")
        self.path = path
        self.expected = expected
        self.got = got


class InvalidTagError(CodecError):
    pass


class TagCollisionError(CodecError):
    pass


class NullInNonNullableError(CodecError):
    def __init__(self, *, path: str, target: str) -> None:
        super().__init__(f"{path or '<root>'}: cannot decode NULL into non-nullable {target}")
        self.path = path
        self.target = target


class SetElementUnsupportedError(CodecError):
    pass


class LastEvaluatedKeyError(DynamoPyError):
    """Raised when a paging key could not be inferred.

    ``key`` holds the key returned by the service, which is still usable but
    may not line up with the last item handed to the caller. ``items`` holds
    the decoded results when raised from an ``all_*`` method.
    """

    def __init__(self, message: str, *, key: Item | None, items: list[Any] | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.items = items


class BatchWriteError(DynamoPyError):
    def __init__(self, message: str, *, wrote: int) -> None:
        super().__init__(f"{message} (wrote={wrote})")
        self.wrote = wrote


class BatchRetryExceededError(DynamoPyError):
    def __init__(self, *, operation: str, unprocessed_count: int) -> None:
        super().__init__(f"{operation}: retry limit exceeded (unprocessed={unprocessed_count})")
        self.operation = operation
        self.unprocessed_count = unprocessed_count


class ContextError(DynamoPyError):
    pass


class CanceledError(ContextError):
    def __init__(self) -> None:
        super().__init__("context canceled")


class DeadlineExceededError(ContextError):
    def __init__(self) -> None:
        super().__init__("context deadline exceeded")


class AwsError(DynamoPyError):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int | None = None,
        response: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status_code = status_code
        self.response: Mapping[str, Any] = response or {}


class ConditionFailedError(AwsError):
    def __init__(self, *, item: Item | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.item = item


class ResourceNotFoundError(AwsError):
    pass


@dataclass(frozen=True)
class CancellationReason:
    code: str
    message: str = ""
    item: Item | None = None


class TransactionCanceledError(AwsError):
    def __init__(self, *, reasons: tuple[CancellationReason, ...], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.reasons = reasons

    @property
    def reason_codes(self) -> tuple[str, ...]:
        return tuple(r.code for r in self.reasons)
