from __future__ import annotations

import os
import uuid
from collections.abc import Iterator

import boto3
import pytest
from moto import mock_aws

from dynamo_py import DB


def _dynamodb_endpoint() -> str | None:
    return os.environ.get("DYNAMODB_ENDPOINT")


@pytest.fixture
def db(monkeypatch: pytest.MonkeyPatch) -> Iterator[DB]:
    """A DB backed by DynamoDB Local when DYNAMODB_ENDPOINT is set, otherwise by moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", os.environ.get("AWS_ACCESS_KEY_ID", "dummy"))
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"))
    region = os.environ.get("AWS_REGION", "us-east-1")

    endpoint = _dynamodb_endpoint()
    if endpoint:
        yield DB(boto3.client("dynamodb", endpoint_url=endpoint, region_name=region))
        return

    with mock_aws():
        yield DB(boto3.client("dynamodb", region_name=region))


@pytest.fixture
def table_name() -> str:
    return f"dynamo_py_{uuid.uuid4().hex[:12]}"
