"""Shared helpers for the boto3 DynamoDB resource API."""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from functools import partial
from typing import Any, Callable

import boto3
from botocore.exceptions import ClientError


def create_resource(region: str, endpoint_url: str | None = None) -> Any:
    return boto3.resource("dynamodb", region_name=region, endpoint_url=endpoint_url)


def to_dynamo(value: Any) -> Any:
    """Floats are not accepted by the resource API; round-trip them as Decimal."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


async def run_sync(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking boto3 call off the event loop."""
    return await asyncio.to_thread(partial(fn, *args, **kwargs))


def is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"
