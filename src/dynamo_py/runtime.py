from __future__ import annotations

from typing import Any, cast

import boto3
from botocore.config import Config


def create_boto3_config(
    *,
    connect_timeout: float = 5.0,
    read_timeout: float = 60.0,
    max_attempts: int = 1,
) -> Config:
    """botocore config for the DynamoDB client.

    ``max_attempts=1`` leaves retrying to this library; pass a higher value
    together with ``DB(sdk_retries=True)`` to let botocore retry instead.
    """
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"total_max_attempts": max_attempts, "mode": "standard"},
    )


def create_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
) -> Any:
    sess = session or boto3.session.Session(region_name=region)
    return cast(Any, sess).client("dynamodb", region_name=region, endpoint_url=endpoint_url, config=config)
