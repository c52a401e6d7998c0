"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import structlog

# Shared fakes live next to this file
TESTS_ROOT = Path(__file__).parent
sys.path.insert(0, str(TESTS_ROOT))

from fakes import (  # noqa: E402
    FakeDealStore,
    FakeLLM,
    FakeObjectStore,
    FakePlaces,
    FakePos,
    FakeTransport,
    FakeWorkflow,
    make_services,
    make_tenant,
)
from whatsbot.core.types import TenantKind  # noqa: E402
from whatsbot.storage.database import Database  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_structlog(monkeypatch):
    """Undo any ``setup_logging`` call so later tests don't log to a closed capture stream."""
    configure = structlog.configure

    def configure_uncached(**kwargs):
        kwargs["cache_logger_on_first_use"] = False
        configure(**kwargs)

    monkeypatch.setattr(structlog, "configure", configure_uncached)
    yield
    structlog.reset_defaults()


@pytest.fixture
async def db():
    database = Database(":memory:")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def clock():
    """Mutable clock: ``clock.now`` is returned by ``clock()``."""

    class Clock:
        def __init__(self) -> None:
            self.now = 1_700_000_000.25

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return Clock()


@pytest.fixture
def pos():
    return FakePos()


@pytest.fixture
def places():
    return FakePlaces()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def deal_store():
    return FakeDealStore()


@pytest.fixture
def workflow():
    return FakeWorkflow()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def services(pos, places, llm, deal_store, workflow, object_store, transport):
    return make_services(
        pos=pos,
        places=places,
        llm=llm,
        deals=deal_store,
        workflow=workflow,
        object_store=object_store,
        transport=transport,
        media_bucket="whatsbot-media",
    )


@pytest.fixture
def pos_tenant():
    return make_tenant()


@pytest.fixture
def deals_tenant():
    return make_tenant(tenant_id="lobang", kind=TenantKind.DEALS, phone_number_id="PHONE2",
                       store_name="LobangLah")


@pytest.fixture
def agency_tenant():
    return make_tenant(tenant_id="viral", kind=TenantKind.VIRAL_AGENCY, phone_number_id="PHONE3",
                       store_name="Viral Agency", n8n_webhook_url="https://n8n.test/webhook/viral")
