from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

from botocore.config import Config
from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .context import Context, ensure
from .decode import unmarshal_append, unmarshal_item
from .describe import Description
from .errors import ConditionFailedError, TransactionCanceledError, ValidationError
from .retry import BackoffPolicy, pause, retry_call
from .runtime import create_boto3_config, create_dynamodb_client

if TYPE_CHECKING:
    from .schema import CreateTable
    from .table import Table
    from .tx import GetTx, WriteTx

logger = logging.getLogger(__name__)


class DB:
    """A DynamoDB client.

    Service calls are retried with exponential backoff unless
    ``sdk_retries`` hands that job to botocore. ``max_retries`` caps the
    number of retries per call (``0`` disables retrying, ``-1`` means no cap).
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        config: Config | None = None,
        max_retries: int = -1,
        backoff: BackoffPolicy = BackoffPolicy(),
        sdk_retries: bool = False,
        sleep: Callable[[float], None] | None = None,
        rand_bytes: Callable[[int], bytes] = os.urandom,
    ) -> None:
        if max_retries < -1:
            raise ValueError("max_retries must be >= -1")

        if client is None:
            if config is None:
                config = create_boto3_config(max_attempts=3 if sdk_retries else 1)
            client = create_dynamodb_client(region=region, endpoint_url=endpoint_url, config=config)

        self.client: Any = client
        self.max_retries = max_retries
        self.backoff = backoff
        self.sdk_retries = sdk_retries
        self.rand_bytes = rand_bytes
        self._sleep = sleep
        # table name -> Description, used to infer paging keys
        self._descs: dict[str, Description] = {}

    def table(self, name: str) -> Table:
        from .table import Table

        return Table(self, name)

    def list_tables(self) -> ListTables:
        return ListTables(self)

    def get_tx(self) -> GetTx:
        from .tx import GetTx

        return GetTx(self)

    def write_tx(self) -> WriteTx:
        from .tx import WriteTx

        return WriteTx(self)

    def create_table(self, name: str, record_type: type) -> CreateTable:
        from .schema import CreateTable

        return CreateTable(self.table(name), record_type)

    def load_description(self, name: str) -> Description | None:
        return self._descs.get(name)

    def store_description(self, desc: Description) -> None:
        logger.debug("cached description for table %s (hash=%s range=%s)", desc.name, desc.hash_key, desc.range_key)
        self._descs[desc.name] = desc

    def retry[T](
        self, ctx: Context | None, fn: Callable[[], T], *, operation: str = "", tx_conflicts: bool = False
    ) -> T:
        ctx = ensure(ctx)
        if self.sdk_retries:
            ctx.check()
            return fn()
        return retry_call(
            fn,
            ctx=ctx,
            policy=self.backoff,
            max_retries=self.max_retries,
            sleep=self._sleep,
            operation=operation,
            tx_conflicts=tx_conflicts,
        )

    def call(
        self,
        ctx: Context | None,
        operation: str,
        req: Mapping[str, Any],
        *,
        tx_conflicts: bool = False,
        map_error: Callable[[ClientError], Exception] = map_client_error,
    ) -> dict[str, Any]:
        """Invoke a client operation under retry, mapping service errors."""
        method = getattr(self.client, operation)

        def once() -> dict[str, Any]:
            try:
                return dict(method(**req))
            except ClientError as err:
                raise map_error(err) from err

        return self.retry(ctx, once, operation=operation, tx_conflicts=tx_conflicts)

    def sleep(self, ctx: Context | None, seconds: float) -> None:
        pause(ensure(ctx), seconds, self._sleep)


class ListTables:
    def __init__(self, db: DB) -> None:
        self._db = db

    def all(self, ctx: Context | None = None) -> list[str]:
        return list(self.iter(ctx))

    def iter(self, ctx: Context | None = None) -> Iterator[str]:
        ctx = ensure(ctx)
        start: str | None = None
        while True:
            req: dict[str, Any] = {}
            if start is not None:
                req["ExclusiveStartTableName"] = start
            resp = self._db.call(ctx, "list_tables", req)
            yield from resp.get("TableNames") or []
            start = resp.get("LastEvaluatedTableName")
            if not start:
                return


def is_cond_check_failed(err: BaseException | None) -> bool:
    """True for a failed condition, alone or as a transaction cancellation reason."""
    if isinstance(err, TransactionCanceledError):
        return "ConditionalCheckFailed" in err.reason_codes
    return isinstance(err, ConditionFailedError)


def unmarshal_item_from_cond_check_failed(err: BaseException | None, out: Any = dict) -> tuple[bool, Any]:
    """Decode the item returned with a failed condition check.

    Returns ``(matched, value)``; ``matched`` is false when ``err`` is not a
    condition check failure.
    """
    if not isinstance(err, ConditionFailedError):
        return False, None
    if err.item is None:
        raise ValidationError(
            "ConditionalCheckFailedException does not contain item "
            "(is include_item_in_cond_check_fail disabled?)"
        ) from err
    return True, unmarshal_item(err.item, out)


def unmarshal_items_from_tx_cond_check_failed(
    err: BaseException | None, dst: list[Any], out: Any = dict
) -> bool:
    """Append the items of every ConditionalCheckFailed cancellation reason to ``dst``."""
    if not isinstance(err, TransactionCanceledError):
        return False

    matched = False
    for reason in err.reasons:
        if reason.code != "ConditionalCheckFailed":
            continue
        if reason.item is None:
            raise ValidationError(
                "TransactionCanceledException cancellation reasons do not contain item "
                "(is include_item_in_cond_check_fail disabled?)"
            ) from err
        unmarshal_append(reason.item, dst, out)
        matched = True
    return matched
