"""Webhook ingress checks and the per-message pipeline.

Ingress (synchronous, before the 200): tenant lookup, signature, envelope,
idempotency. Dispatch (background): session load, dialog turn, optional tool
loop, session commit, outbound delivery.
"""

from __future__ import annotations

from dataclasses import dataclass

from whatsbot.ai.client import LLMClientPool
from whatsbot.ai.orchestrator import LoopContext, run_tool_loop
from whatsbot.ai.tools.base import ToolContext
from whatsbot.config import AppConfig
from whatsbot.core.errors import ConcurrentUpdateError, ConfigError, ExternalServiceError, MalformedPayload
from whatsbot.dialog.engine import DialogEngine, TurnResult
from whatsbot.log import bind_context, clear_context, get_logger
from whatsbot.outbound.sender import DeliveryReport, OutboundSender
from whatsbot.storage.idempotency import IdempotencyFilter
from whatsbot.storage.models import ConversationRecord
from whatsbot.storage.session_store import SessionStore
from whatsbot.tenancy.models import TenantConfig
from whatsbot.tenancy.resolver import TenantResolver
from whatsbot.tenancy.store import ConfigStore
from whatsbot.transport.models import NormalizedInbound
from whatsbot.transport.whatsapp import decode_body, validate_and_parse

logger = get_logger(__name__)

COMMIT_ATTEMPTS = 2


@dataclass(frozen=True, slots=True)
class AdmittedMessage:
    tenant: TenantConfig
    inbound: NormalizedInbound


class Dispatcher:
    def __init__(
        self,
        config: AppConfig,
        resolver: TenantResolver,
        config_store: ConfigStore,
        idempotency: IdempotencyFilter,
        sessions: SessionStore,
        engine: DialogEngine,
        llm: LLMClientPool,
        sender: OutboundSender,
    ):
        self._config = config
        self._resolver = resolver
        self._config_store = config_store
        self._idempotency = idempotency
        self._sessions = sessions
        self._engine = engine
        self._llm = llm
        self._sender = sender

    # --- Ingress ---------------------------------------------------------------

    async def ingest(self, raw_body: bytes, signature_header: str | None) -> list[AdmittedMessage]:
        """Validate a webhook POST and return the messages to dispatch.

        Raises IngressError / ConfigError subclasses for the HTTP layer to map.
        """
        envelope = decode_body(raw_body)
        phone_number_id, ref = await self._resolver.resolve_envelope(envelope)
        tenant = await self._config_store.get(ref.tenant_id)
        if tenant.phone_number_id and tenant.phone_number_id != phone_number_id:
            logger.warning("tenant_phone_mismatch", tenant_id=tenant.tenant_id, phone_number_id=phone_number_id)
        if ref.owner_number and not tenant.owner_number:
            tenant = tenant.model_copy(update={"owner_number": ref.owner_number})
        if not tenant.phone_number_id:
            tenant = tenant.model_copy(update={"phone_number_id": phone_number_id})

        bypass = self._config.whatsapp.signature_bypass and not self._config.is_production
        events = validate_and_parse(raw_body, signature_header, tenant.app_secret, bypass=bypass)

        if any(not inbound.message_id or not inbound.sender for inbound in events):
            raise MalformedPayload("Message is missing an id or sender")

        admitted = []
        for inbound in events:
            if await self._idempotency.admit(tenant.tenant_id, inbound.message_id):
                admitted.append(AdmittedMessage(tenant=tenant, inbound=inbound))
        if not events:
            logger.debug("status_callback_ignored", tenant_id=tenant.tenant_id)
        return admitted

    # --- Dispatch --------------------------------------------------------------

    async def dispatch_all(self, messages: list[AdmittedMessage]) -> None:
        for message in messages:
            await self.dispatch(message.tenant, message.inbound)

    async def dispatch(self, tenant: TenantConfig, inbound: NormalizedInbound) -> DeliveryReport | None:
        """Run one inbound message end to end. Never raises."""
        bind_context(tenant_id=tenant.tenant_id, message_id=inbound.message_id)
        try:
            return await self._dispatch(tenant, inbound)
        except Exception as e:
            logger.exception("dispatch_failed", error=str(e))
            return None
        finally:
            clear_context()

    async def _dispatch(self, tenant: TenantConfig, inbound: NormalizedInbound) -> DeliveryReport | None:
        ttl = self._ttl_seconds(tenant)
        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            record = await self._sessions.load(
                tenant.tenant_id, inbound.sender, self._engine.initial_state(tenant.kind)
            )
            result = await self._engine.handle(tenant, record, inbound)
            if result.llm_request is not None:
                await self._run_llm(tenant, result)
            try:
                await self._sessions.commit(record, ttl_seconds=ttl)
                break
            except ConcurrentUpdateError:
                logger.warning("turn_conflict", attempt=attempt)
        else:
            await self._record_drop(tenant, inbound, ttl)
            return None

        logger.info("turn_completed", state=record.state, outbound=len(result.plan))
        report = await self._sender.send(tenant, result.plan, inbound.sender)
        if report.failures:
            await self._record_delivery_failures(record, report, ttl)
        return report

    async def _run_llm(self, tenant: TenantConfig, result: TurnResult) -> None:
        llm_config = self._config.llm
        loop = LoopContext.start(
            llm_config.loop_budget,
            llm_timeout=llm_config.timeout,
            tool_timeout=llm_config.tool_timeout,
            max_iterations=llm_config.max_iterations,
        )
        context = ToolContext(tenant=tenant, user=result.record.user, plan=result.plan)
        try:
            outcome = await run_tool_loop(
                self._llm.for_tenant(tenant), result.record, result.llm_request, context, loop
            )
        except (ExternalServiceError, ConfigError) as e:
            result.plan.extend(self._engine.fail_llm_turn(result.record, e))
            return
        result.plan.extend(self._engine.complete_llm_turn(tenant, result.record, outcome.text))

    async def _record_drop(self, tenant: TenantConfig, inbound: NormalizedInbound, ttl: float | None) -> None:
        logger.error("turn_dropped", reason="concurrent_update")
        record = await self._sessions.load(
            tenant.tenant_id, inbound.sender, self._engine.initial_state(tenant.kind)
        )
        record.note(f"Message {inbound.message_id} was dropped after repeated concurrent updates.")
        try:
            await self._sessions.commit(record, ttl_seconds=ttl)
        except ConcurrentUpdateError:
            logger.warning("drop_note_not_recorded")

    async def _record_delivery_failures(
        self, record: ConversationRecord, report: DeliveryReport, ttl: float | None
    ) -> None:
        for failure in report.failures:
            record.note(f"Delivery of {failure.kind} to {failure.recipient} failed: {failure.error}")
        try:
            await self._sessions.commit(record, ttl_seconds=ttl)
        except ConcurrentUpdateError:
            logger.warning("delivery_note_not_recorded")

    def _ttl_seconds(self, tenant: TenantConfig) -> float | None:
        if tenant.session_ttl_hours:
            return tenant.session_ttl_hours * 3600
        return None
