from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .attributevalue import (
    NULL,
    AttributeValue,
    BinarySetValue,
    BinaryValue,
    BoolValue,
    Item,
    ListValue,
    MapValue,
    NullValue,
    NumberSetValue,
    NumberValue,
    StringSetValue,
    StringValue,
    binary_set,
    number_set,
    string_set,
)
from .capacity import ConsumedCapacity
from .context import Context
from .db import (
    DB,
    is_cond_check_failed,
    unmarshal_item_from_cond_check_failed,
    unmarshal_items_from_tx_cond_check_failed,
)
from .decode import unmarshal, unmarshal_append, unmarshal_item
from .describe import Description, Index, IndexProjection, Status, StreamView, Throughput
from .encode import marshal, marshal_item
from .encoding import AWSEncoding, aws_encoding
from .errors import (
    AwsError,
    BatchRetryExceededError,
    BatchWriteError,
    CanceledError,
    CodecError,
    ConditionFailedError,
    ContextError,
    DeadlineExceededError,
    DynamoPyError,
    LastEvaluatedKeyError,
    NoInputError,
    NotFoundError,
    ResourceNotFoundError,
    TooManyResultsError,
    TransactionCanceledError,
    ValidationError,
)
from .keys import Keys, KeyType
from .query import Operator, Order
from .tags import AttributeConverter, EncodeFlags, dynamo_field

if TYPE_CHECKING:
    from .retry import BackoffPolicy
    from .runtime import create_boto3_config, create_dynamodb_client
    from .schema import CreateTable, DeleteTable, UpdateTable
    from .table import Table
    from .ttl import TTLDescription, TTLStatus
    from .tx import GetTx, WriteTx


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except Exception:
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "Table":
        from .table import Table

        return Table
    if name in {"CreateTable", "UpdateTable", "DeleteTable"}:
        from . import schema

        return getattr(schema, name)
    if name in {"GetTx", "WriteTx"}:
        from . import tx

        return getattr(tx, name)
    if name in {"TTLDescription", "TTLStatus"}:
        from . import ttl

        return getattr(ttl, name)
    if name == "BackoffPolicy":
        from .retry import BackoffPolicy

        return BackoffPolicy
    if name in {"create_boto3_config", "create_dynamodb_client"}:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "AWSEncoding",
    "AttributeConverter",
    "AttributeValue",
    "AwsError",
    "BackoffPolicy",
    "BatchRetryExceededError",
    "BatchWriteError",
    "BinarySetValue",
    "BinaryValue",
    "BoolValue",
    "CanceledError",
    "CodecError",
    "ConditionFailedError",
    "ConsumedCapacity",
    "Context",
    "ContextError",
    "CreateTable",
    "DB",
    "DeadlineExceededError",
    "DeleteTable",
    "Description",
    "DynamoPyError",
    "EncodeFlags",
    "GetTx",
    "Index",
    "IndexProjection",
    "Item",
    "KeyType",
    "Keys",
    "LastEvaluatedKeyError",
    "ListValue",
    "MapValue",
    "NULL",
    "NoInputError",
    "NotFoundError",
    "NullValue",
    "NumberSetValue",
    "NumberValue",
    "Operator",
    "Order",
    "ResourceNotFoundError",
    "Status",
    "StreamView",
    "StringSetValue",
    "StringValue",
    "TTLDescription",
    "TTLStatus",
    "Table",
    "Throughput",
    "TooManyResultsError",
    "TransactionCanceledError",
    "UpdateTable",
    "ValidationError",
    "WriteTx",
    "__repo_version__",
    "__version__",
    "aws_encoding",
    "binary_set",
    "create_boto3_config",
    "create_dynamodb_client",
    "dynamo_field",
    "is_cond_check_failed",
    "marshal",
    "marshal_item",
    "number_set",
    "string_set",
    "unmarshal",
    "unmarshal_append",
    "unmarshal_item",
    "unmarshal_item_from_cond_check_failed",
    "unmarshal_items_from_tx_cond_check_failed",
]
