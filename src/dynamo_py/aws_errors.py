from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from botocore.exceptions import ClientError

from .attributevalue import item_from_wire
from .errors import (
    AwsError,
    CancellationReason,
    ConditionFailedError,
    ResourceNotFoundError,
    TransactionCanceledError,
)


def error_code(err: BaseException) -> str:
    if isinstance(err, AwsError):
        return err.code
    if isinstance(err, ClientError):
        return str(err.response.get("Error", {}).get("Code", ""))
    return ""


def status_code(err: BaseException) -> int | None:
    if isinstance(err, AwsError):
        return err.status_code
    if isinstance(err, ClientError):
        status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return int(status) if status is not None else None
    return None


def cancellation_reasons(response: Mapping[str, Any]) -> tuple[CancellationReason, ...]:
    reasons: list[CancellationReason] = []
    for reason in response.get("CancellationReasons") or []:
        if not isinstance(reason, dict):
            continue
        reasons.append(
            CancellationReason(
                code=str(reason.get("Code") or "None"),
                message=str(reason.get("Message") or ""),
                item=item_from_wire(reason.get("Item")),
            )
        )
    return tuple(reasons)


def map_client_error(err: ClientError) -> Exception:
    code = error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))
    kwargs: dict[str, Any] = {
        "code": code or "UnknownError",
        "message": message or str(err),
        "status_code": status_code(err),
        "response": err.response,
    }

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(item=item_from_wire(err.response.get("Item")), **kwargs)
    if code == "ResourceNotFoundException":
        return ResourceNotFoundError(**kwargs)
    if code == "TransactionCanceledException":
        return TransactionCanceledError(reasons=cancellation_reasons(err.response), **kwargs)

    return AwsError(**kwargs)


def map_transaction_error(err: ClientError) -> Exception:
    mapped = map_client_error(err)
    if isinstance(mapped, TransactionCanceledError) and not mapped.reasons:
        # some endpoints only report the reasons inside the message
        # e.g. "Transaction cancelled, please refer cancellation reasons for specific reasons
        # [ConditionalCheckFailed, None]"
        start, end = mapped.message.rfind("["), mapped.message.rfind("]")
        if 0 <= start < end:
            codes = [c.strip() for c in mapped.message[start + 1 : end].split(",")]
            mapped.reasons = tuple(CancellationReason(code=c) for c in codes if c)
    return mapped
