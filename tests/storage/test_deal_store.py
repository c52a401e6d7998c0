"""Unit tests for viral deal persistence on SQLite and DynamoDB."""

import pytest

from fakes import FakeTable
from whatsbot.storage.deal_store import DynamoDealStore, SqliteDealStore
from whatsbot.storage.models import ViralDeal

pytestmark = pytest.mark.unit


@pytest.fixture(params=["sqlite", "dynamodb"])
async def store(request, db):
    if request.param == "sqlite":
        return SqliteDealStore(db)
    return DynamoDealStore(FakeTable("dealId"))


def sample_deal(deal_id="deal_0123456789ab"):
    return ViralDeal(
        deal_id=deal_id,
        tenant_id="viral",
        restaurant_owner="6590000000",
        restaurant={"name": "Ah Hock Laksa", "address": "12 Joo Chiat Rd", "latitude": 1.31, "longitude": 103.9},
        deal={"description": "1-for-1 laksa", "price": "5.50"},
        content={"caption": "Slurp!", "hashtags": ["#AhHockLaksa", "#1for1"]},
        status="approved",
        created_at=1_700_000_000.5,
    )


class TestDealStore:
    """Tests shared by both backends."""

    async def test_save_and_get(self, store):
        deal = sample_deal()
        await store.save(deal)
        loaded = await store.get(deal.deal_id)
        assert loaded == deal

    async def test_unknown_deal_is_none(self, store):
        assert await store.get("deal_missing") is None

    async def test_update_posting_status(self, store):
        await store.save(sample_deal())
        updated = await store.update_posting_status(
            "deal_0123456789ab", "posted", ["instagram", "tiktok"], ["facebook"],
            posted_at="2024-01-01T10:00:00Z", pipeline_id="run-7",
        )
        assert updated.posting_status == "posted"

        loaded = await store.get("deal_0123456789ab")
        assert loaded.platforms_posted == ["instagram", "tiktok"]
        assert loaded.platforms_failed == ["facebook"]
        assert loaded.posted_at == "2024-01-01T10:00:00Z"
        assert loaded.pipeline_id == "run-7"
        assert loaded.status == "approved"

    async def test_update_posting_status_for_unknown_deal(self, store):
        assert await store.update_posting_status("deal_missing", "posted", [], []) is None

    async def test_save_overwrites(self, store):
        deal = sample_deal()
        await store.save(deal)
        deal.status = "rejected"
        await store.save(deal)
        assert (await store.get(deal.deal_id)).status == "rejected"
