"""Session store: durable (tenant, user) -> ConversationRecord map with TTL and CAS commits."""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable

from botocore.exceptions import ClientError

from whatsbot.core.errors import ConcurrentUpdateError
from whatsbot.log import get_logger
from whatsbot.storage.database import Database
from whatsbot.storage.dynamo import from_dynamo, is_conditional_failure, run_sync, to_dynamo
from whatsbot.storage.models import ConversationRecord, session_key
from whatsbot.storage.transcript import bound

logger = get_logger(__name__)


class SessionStore(ABC):
    """Loads and commits conversation records.

    Records whose ``expires_at`` has passed are never handed to callers; a
    fresh record replaces them on the next commit.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_user_turns: int = 10,
        max_assistant_turns: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl = ttl_seconds
        self._max_user = max_user_turns
        self._max_assistant = max_assistant_turns
        self._clock = clock

    @abstractmethod
    async def _get(self, key: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def _put(self, data: dict[str, Any], expected_version: float | None) -> bool:
        """Write ``data`` iff the stored ``updatedAt`` equals ``expected_version``."""
        ...

    async def load(self, tenant_id: str, user: str, initial_state: str) -> ConversationRecord:
        key = session_key(tenant_id, user)
        data = await self._get(key)
        now = self._clock()

        if data is None:
            logger.debug("session_created", session_key=key)
            return ConversationRecord(tenant_id=tenant_id, user=user, state=initial_state, created_at=now)

        record = ConversationRecord.from_dict(data)
        if record.expires_at is not None and record.expires_at <= now:
            logger.info("session_expired", session_key=key, session_id=record.session_id)
            fresh = ConversationRecord(tenant_id=tenant_id, user=user, state=initial_state, created_at=now)
            # The expired item is still stored; overwrite it under its version.
            fresh.version = record.version
            return fresh
        return record

    async def commit(self, record: ConversationRecord, ttl_seconds: float | None = None) -> None:
        """Atomically replace the stored record.

        Raises ConcurrentUpdateError when another writer committed since load.
        """
        now = self._clock()
        if record.version is not None and now <= record.version:
            now = record.version + 1e-6
        ttl = ttl_seconds if ttl_seconds is not None else self._ttl

        record.turns = bound(record.turns, self._max_user, self._max_assistant)
        previous = (record.updated_at, record.expires_at)
        record.updated_at = now
        record.expires_at = now + ttl

        if not await self._put(record.to_dict(), record.version):
            record.updated_at, record.expires_at = previous
            logger.warning("session_commit_conflict", session_key=record.key)
            raise ConcurrentUpdateError(f"Session {record.key} changed since it was loaded")

        record.version = now
        logger.debug("session_committed", session_key=record.key, turns=len(record.turns))

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class SqliteSessionStore(SessionStore):
    """Session store on the local aiosqlite database."""

    def __init__(self, db: Database, **kwargs: Any):
        super().__init__(**kwargs)
        self._db = db

    async def _get(self, key: str) -> dict[str, Any] | None:
        cursor = await self._db.conn.execute(
            "SELECT data_json FROM sessions WHERE session_key = ?", (key,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["data_json"])

    async def _put(self, data: dict[str, Any], expected_version: float | None) -> bool:
        payload = json.dumps(data, ensure_ascii=False)
        if expected_version is None:
            cursor = await self._db.conn.execute(
                """INSERT OR IGNORE INTO sessions
                   (session_key, tenant_id, user_contact, data_json, updated_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (data["sessionKey"], data["tenantId"], data["user"], payload,
                 data["updatedAt"], data["expiresAt"]),
            )
        else:
            cursor = await self._db.conn.execute(
                """UPDATE sessions
                   SET data_json = ?, updated_at = ?, expires_at = ?
                   WHERE session_key = ? AND updated_at = ?""",
                (payload, data["updatedAt"], data["expiresAt"], data["sessionKey"], expected_version),
            )
        await self._db.conn.commit()
        return cursor.rowcount == 1


class DynamoSessionStore(SessionStore):
    """Session store on a DynamoDB table keyed by ``sessionKey`` with a ``ttl`` attribute."""

    def __init__(self, table: Any, **kwargs: Any):
        super().__init__(**kwargs)
        self._table = table

    async def _get(self, key: str) -> dict[str, Any] | None:
        response = await run_sync(
            self._table.get_item, Key={"sessionKey": key}, ConsistentRead=True
        )
        item = response.get("Item")
        if item is None:
            return None
        return from_dynamo(item)

    async def _put(self, data: dict[str, Any], expected_version: float | None) -> bool:
        item = to_dynamo(data)
        item["ttl"] = int(data["expiresAt"])
        kwargs: dict[str, Any] = {"Item": item}
        if expected_version is None:
            kwargs["ConditionExpression"] = "attribute_not_exists(sessionKey)"
        else:
            kwargs["ConditionExpression"] = "updatedAt = :expected"
            kwargs["ExpressionAttributeValues"] = {":expected": Decimal(repr(expected_version))}
        try:
            await run_sync(self._table.put_item, **kwargs)
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise
        return True
