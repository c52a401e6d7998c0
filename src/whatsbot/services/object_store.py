"""S3 object store for business context blobs, invoices and generated media."""

from __future__ import annotations

from typing import Any

import boto3

from whatsbot.log import get_logger
from whatsbot.services.base import Service
from whatsbot.storage.dynamo import run_sync

logger = get_logger(__name__)


class ObjectStore(Service):
    def __init__(self, region: str, client: Any | None = None):
        self._region = region
        self._client = client

    @property
    def service_name(self) -> str:
        return "object_store"

    async def start(self) -> None:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._region)
        logger.info("service_started", service=self.service_name)

    async def stop(self) -> None:
        logger.info("service_stopped", service=self.service_name)

    async def health_check(self) -> bool:
        return self._client is not None

    def public_url(self, bucket: str, key: str) -> str:
        return f"https://{bucket}.s3.{self._region}.amazonaws.com/{key}"

    async def get_text(self, bucket: str, key: str) -> str:
        if self._client is None:
            await self.start()
        response = await run_sync(self._client.get_object, Bucket=bucket, Key=key)
        body = await run_sync(response["Body"].read)
        return body.decode("utf-8")

    async def put_bytes(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        """Upload and return the object's public URL."""
        if self._client is None:
            await self.start()
        await run_sync(
            self._client.put_object, Bucket=bucket, Key=key, Body=data, ContentType=content_type
        )
        url = self.public_url(bucket, key)
        logger.info("object_stored", bucket=bucket, key=key)
        return url
