"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Any

from whatsbot.ai.client import LLMClient, LLMClientPool
from whatsbot.ai.tools.registry import ToolRegistry
from whatsbot.config import AppConfig
from whatsbot.core.dispatcher import Dispatcher
from whatsbot.dialog.context import DialogServices
from whatsbot.dialog.engine import DialogEngine
from whatsbot.log import get_logger
from whatsbot.outbound.sender import OutboundSender
from whatsbot.services.service_manager import ServiceManager
from whatsbot.storage.database import Database
from whatsbot.storage.deal_store import DealStore, DynamoDealStore, SqliteDealStore
from whatsbot.storage.dynamo import create_resource
from whatsbot.storage.idempotency import (
    DynamoProcessedStore,
    IdempotencyFilter,
    ProcessedMessageStore,
    SqliteProcessedStore,
)
from whatsbot.storage.session_store import DynamoSessionStore, SessionStore, SqliteSessionStore
from whatsbot.tenancy.resolver import TenantResolver
from whatsbot.tenancy.sources import DynamoTenantSource, StaticTenantSource, TenantSource
from whatsbot.tenancy.store import ConfigStore
from whatsbot.transport.base import TransportAdapter
from whatsbot.transport.whatsapp import WhatsAppTransport

logger = get_logger(__name__)


class WhatsBotApp:
    """Top-level application orchestrator.

    ``transport``, ``llm_client``, ``service_manager`` and ``tenant_source``
    may be injected; anything not given is built from ``config``.
    """

    def __init__(
        self,
        config: AppConfig,
        transport: TransportAdapter | None = None,
        llm_client: LLMClient | None = None,
        service_manager: ServiceManager | None = None,
        tenant_source: TenantSource | None = None,
        dynamo: Any | None = None,
    ):
        self.config = config
        self.db: Database | None = None
        self._dynamo = dynamo

        if config.storage.backend == "dynamodb":
            self._dynamo = self._dynamo or create_resource(config.aws.region, config.aws.endpoint_url)
        elif config.storage.backend != "sqlite":
            raise ValueError(f"Unknown storage backend: {config.storage.backend}")
        else:
            self.db = Database(config.storage.db_path)

        self.service_manager = service_manager or ServiceManager(config)
        self.transport = transport or WhatsAppTransport(
            config.whatsapp.base_url, config.whatsapp.api_version, config.whatsapp.send_timeout
        )
        self.llm = LLMClientPool(
            timeout=config.llm.timeout, max_retries=config.llm.max_retries, client=llm_client
        )

        source = tenant_source or self._create_tenant_source()
        self.config_store = ConfigStore(
            source,
            object_store=self.service_manager.get_object_store(),
            ttl_seconds=config.tenant_cache_ttl,
        )
        self.resolver = TenantResolver(source, ttl_seconds=config.tenant_cache_ttl)

        self.sessions = self._create_session_store()
        self.deals = self._create_deal_store()
        self.idempotency = IdempotencyFilter(
            window_seconds=config.idempotency.window_hours * 3600,
            cache_size=config.idempotency.cache_size,
            durable=self._create_processed_store(),
        )

        self.tool_registry = ToolRegistry(self.service_manager.get_pos())
        self.engine: DialogEngine | None = None
        self.dispatcher: Dispatcher | None = None
        self.sender = OutboundSender(self.transport, pacing=config.whatsapp.pacing_seconds)

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        if self.db is not None:
            await self.db.initialize()

        # 2. Services and transport
        await self.service_manager.start_all()
        await self.transport.start()
        await self.sessions.start()

        # 3. Tools
        self.tool_registry.discover_and_register()

        # 4. Dialog engine and dispatcher
        services = DialogServices(
            pos=self.service_manager.get_pos(),
            places=self.service_manager.get_places(),
            llm=self.llm,
            deals=self.deals,
            workflow=self.service_manager.get_workflow(),
            object_store=self.service_manager.get_object_store(),
            transport=self.transport,
            media_bucket=self.config.aws.media_bucket,
        )
        self.engine = DialogEngine(services, self.tool_registry.all_tools(), self.config.llm)
        self.dispatcher = Dispatcher(
            config=self.config,
            resolver=self.resolver,
            config_store=self.config_store,
            idempotency=self.idempotency,
            sessions=self.sessions,
            engine=self.engine,
            llm=self.llm,
            sender=self.sender,
        )
        logger.info(
            "whatsbot_started",
            storage=self.config.storage.backend,
            tools=len(self.tool_registry.all_tools()),
            environment=self.config.environment,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.sessions.stop()
        await self.transport.stop()
        await self.service_manager.stop_all()
        if self.db is not None:
            await self.db.close()
        logger.info("whatsbot_stopped")

    async def health(self) -> dict[str, bool]:
        checks = await self.service_manager.health_check_all()
        checks["dispatcher"] = self.dispatcher is not None
        return checks

    def _table(self, name: str) -> Any:
        return self._dynamo.Table(name)

    def _create_tenant_source(self) -> TenantSource:
        if self.config.tenants:
            return StaticTenantSource(self.config.tenants)
        if self._dynamo is None:
            self._dynamo = create_resource(self.config.aws.region, self.config.aws.endpoint_url)
        return DynamoTenantSource(
            self._table(self.config.aws.tenant_table),
            self._table(self.config.aws.store_tokens_table),
        )

    def _create_session_store(self) -> SessionStore:
        session = self.config.session
        kwargs: dict[str, Any] = {
            "ttl_seconds": session.ttl_hours * 3600,
            "max_user_turns": session.max_user_turns,
            "max_assistant_turns": session.max_assistant_turns,
        }
        if self.db is not None:
            return SqliteSessionStore(self.db, **kwargs)
        return DynamoSessionStore(self._table(self.config.aws.sessions_table), **kwargs)

    def _create_deal_store(self) -> DealStore:
        if self.db is not None:
            return SqliteDealStore(self.db)
        return DynamoDealStore(self._table(self.config.aws.deals_table))

    def _create_processed_store(self) -> ProcessedMessageStore:
        if self.db is not None:
            return SqliteProcessedStore(self.db)
        return DynamoProcessedStore(self._table(self.config.aws.processed_messages_table))
