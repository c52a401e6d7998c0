"""Persistence for approved viral deals and their posting status."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Optional

from whatsbot.storage.database import Database
from whatsbot.storage.dynamo import from_dynamo, run_sync, to_dynamo
from whatsbot.storage.models import ViralDeal


class DealStore(ABC):
    @abstractmethod
    async def save(self, deal: ViralDeal) -> None:
        ...

    @abstractmethod
    async def get(self, deal_id: str) -> ViralDeal | None:
        ...

    async def update_posting_status(
        self,
        deal_id: str,
        status: str,
        platforms_posted: list[str],
        platforms_failed: list[str],
        posted_at: Optional[str] = None,
        pipeline_id: Optional[str] = None,
    ) -> ViralDeal | None:
        """Apply a workflow status callback. Returns None for unknown deals."""
        deal = await self.get(deal_id)
        if deal is None:
            return None
        deal.posting_status = status
        deal.platforms_posted = list(platforms_posted)
        deal.platforms_failed = list(platforms_failed)
        deal.posted_at = posted_at
        deal.pipeline_id = pipeline_id
        await self.save(deal)
        return deal


class SqliteDealStore(DealStore):
    def __init__(self, db: Database):
        self._db = db

    async def save(self, deal: ViralDeal) -> None:
        await self._db.conn.execute(
            """INSERT INTO viral_deals (deal_id, tenant_id, data_json) VALUES (?, ?, ?)
               ON CONFLICT(deal_id) DO UPDATE SET data_json = excluded.data_json""",
            (deal.deal_id, deal.tenant_id, json.dumps(deal.to_dict(), ensure_ascii=False)),
        )
        await self._db.conn.commit()

    async def get(self, deal_id: str) -> ViralDeal | None:
        cursor = await self._db.conn.execute(
            "SELECT data_json FROM viral_deals WHERE deal_id = ?", (deal_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return ViralDeal.from_dict(json.loads(row["data_json"]))


class DynamoDealStore(DealStore):
    def __init__(self, table: Any):
        self._table = table

    async def save(self, deal: ViralDeal) -> None:
        await run_sync(self._table.put_item, Item=to_dynamo(deal.to_dict()))

    async def get(self, deal_id: str) -> ViralDeal | None:
        response = await run_sync(self._table.get_item, Key={"dealId": deal_id})
        item = response.get("Item")
        return ViralDeal.from_dict(from_dynamo(item)) if item else None
