"""At-most-once admission of inbound messages within a dedup window."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Callable

from botocore.exceptions import ClientError

from whatsbot.log import get_logger
from whatsbot.storage.database import Database
from whatsbot.storage.dynamo import is_conditional_failure, run_sync

logger = get_logger(__name__)


def message_key(tenant_id: str, message_id: str) -> str:
    return f"{tenant_id}_{message_id}"


class ProcessedMessageStore(ABC):
    """Durable, write-once record of processed message ids."""

    @abstractmethod
    async def claim(self, key: str, now: float, window_seconds: float) -> bool:
        """Record ``key`` as processed at ``now``.

        Returns False if a record younger than the window already exists.
        """
        ...


class SqliteProcessedStore(ProcessedMessageStore):
    def __init__(self, db: Database):
        self._db = db

    async def claim(self, key: str, now: float, window_seconds: float) -> bool:
        cursor = await self._db.conn.execute(
            """INSERT INTO processed_messages (message_key, processed_at) VALUES (?, ?)
               ON CONFLICT(message_key) DO UPDATE SET processed_at = excluded.processed_at
               WHERE processed_messages.processed_at < ?""",
            (key, now, now - window_seconds),
        )
        await self._db.conn.commit()
        return cursor.rowcount == 1

    async def purge(self, older_than: float) -> int:
        cursor = await self._db.conn.execute(
            "DELETE FROM processed_messages WHERE processed_at < ?", (older_than,)
        )
        await self._db.conn.commit()
        return cursor.rowcount


class DynamoProcessedStore(ProcessedMessageStore):
    """Conditional put on ``messageKey``; the ``ttl`` attribute lets DynamoDB expire records."""

    def __init__(self, table: Any):
        self._table = table

    async def claim(self, key: str, now: float, window_seconds: float) -> bool:
        try:
            await run_sync(
                self._table.put_item,
                Item={
                    "messageKey": key,
                    "processedAt": Decimal(repr(now)),
                    "ttl": int(now + window_seconds),
                },
                ConditionExpression="attribute_not_exists(messageKey) OR processedAt < :cutoff",
                ExpressionAttributeValues={":cutoff": Decimal(repr(now - window_seconds))},
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise
        return True


class IdempotencyFilter:
    """In-process LRU fast path in front of an optional durable store.

    The LRU alone is per replica; deployments with several replicas must
    configure a durable store so parallel duplicates are caught.
    """

    def __init__(
        self,
        window_seconds: float = 24 * 3600,
        cache_size: int = 1000,
        durable: ProcessedMessageStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._window = window_seconds
        self._cache_size = cache_size
        self._durable = durable
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

    async def admit(self, tenant_id: str, message_id: str) -> bool:
        """True if the message should be dispatched; records it before returning."""
        key = message_key(tenant_id, message_id)
        now = self._clock()

        seen_at = self._seen.get(key)
        if seen_at is not None and now - seen_at < self._window:
            self._seen.move_to_end(key)
            logger.info("duplicate_message_suppressed", message_key=key, source="cache")
            return False

        if self._durable is not None and not await self._durable.claim(key, now, self._window):
            self._remember(key, now)
            logger.info("duplicate_message_suppressed", message_key=key, source="durable")
            return False

        self._remember(key, now)
        return True

    def _remember(self, key: str, now: float) -> None:
        self._seen[key] = now
        self._seen.move_to_end(key)
        while len(self._seen) > self._cache_size:
            self._seen.popitem(last=False)

    def __len__(self) -> int:
        return len(self._seen)
