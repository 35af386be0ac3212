from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from botocore.exceptions import ClientError, ConnectionError as BotoConnectionError, HTTPClientError

from .aws_errors import cancellation_reasons, error_code, status_code
from .context import Context
from .errors import TransactionCanceledError

logger = logging.getLogger(__name__)

RETRYABLE_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
    }
)
RETRYABLE_STATUS = frozenset({500, 503})

# cancellation reasons inside a TransactionCanceledException
FATAL_REASONS = frozenset({"ValidationError", "ConditionalCheckFailed", "ItemCollectionSizeLimitExceeded"})
THROTTLE_REASONS = frozenset({"ThrottlingError", "ProvisionedThroughputExceeded"})
CONFLICT_REASONS = frozenset({"TransactionConflict"})

# only retried when the caller allows transaction conflicts to be retried
CONFLICT_CODES = frozenset({"TransactionConflictException", "TransactionInProgressException"})


@dataclass(frozen=True)
class BackoffPolicy:
    initial_interval: float = 0.5
    multiplier: float = 1.5
    randomization_factor: float = 0.5
    max_interval: float = 60.0
    max_elapsed: float | None = None

    def start(self, *, rand: Callable[[], float] = random.random) -> Backoff:
        return Backoff(self, rand=rand)


class Backoff:
    """Exponential backoff with jitter.

    ``next()`` returns the delay before the next attempt, or ``None`` once
    ``max_elapsed`` has passed.
    """

    def __init__(
        self,
        policy: BackoffPolicy,
        *,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy
        self._rand = rand
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self._interval = self._policy.initial_interval
        self._started = self._clock()

    def next(self) -> float | None:
        p = self._policy
        if p.max_elapsed is not None and self._clock() - self._started > p.max_elapsed:
            return None

        delta = p.randomization_factor * self._interval
        low, high = self._interval - delta, self._interval + delta
        delay = low + self._rand() * (high - low)

        if self._interval >= p.max_interval / p.multiplier:
            self._interval = p.max_interval
        else:
            self._interval *= p.multiplier
        return delay


def is_retryable(err: BaseException, *, tx_conflicts: bool = False) -> bool:
    if isinstance(err, (BotoConnectionError, HTTPClientError)):
        return True

    reasons: tuple[str, ...] | None = None
    if isinstance(err, TransactionCanceledError):
        reasons = err.reason_codes
    elif isinstance(err, ClientError) and error_code(err) == "TransactionCanceledException":
        reasons = tuple(r.code for r in cancellation_reasons(err.response))

    if reasons is not None:
        retry = False
        for code in reasons:
            if code in FATAL_REASONS:
                return False
            if code in THROTTLE_REASONS or (tx_conflicts and code in CONFLICT_REASONS):
                retry = True
        return retry

    code = error_code(err)
    if code in RETRYABLE_CODES:
        return True
    if tx_conflicts and code in CONFLICT_CODES:
        return True
    return status_code(err) in RETRYABLE_STATUS


def pause(ctx: Context, seconds: float, sleep: Callable[[float], None] | None) -> None:
    if sleep is None:
        ctx.sleep(seconds)
        return
    ctx.check()
    sleep(seconds)
    ctx.check()


def retry_call[T](
    fn: Callable[[], T],
    *,
    ctx: Context,
    policy: BackoffPolicy,
    max_retries: int = -1,
    sleep: Callable[[float], None] | None = None,
    operation: str = "",
    tx_conflicts: bool = False,
    rand: Callable[[], float] = random.random,
) -> T:
    """Call ``fn`` until it succeeds or fails with an error that is not retryable.

    ``max_retries`` caps the number of retries (``-1`` means no cap).
    """
    backoff = policy.start(rand=rand)
    attempt = 0
    while True:
        ctx.check()
        try:
            return fn()
        except Exception as err:
            if not is_retryable(err, tx_conflicts=tx_conflicts):
                raise
            if 0 <= max_retries <= attempt:
                raise
            delay = backoff.next()
            if delay is None:
                raise
            attempt += 1
            logger.debug(
                "retrying %s (attempt=%d delay=%.3fs error=%s)",
                operation or "call",
                attempt,
                delay,
                error_code(err) or type(err).__name__,
            )
            pause(ctx, delay, sleep)
