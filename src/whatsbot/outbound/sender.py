"""Ordered delivery of a turn's outbound plan."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from whatsbot.core.errors import ConfigError, TransportError
from whatsbot.core.types import normalize_contact
from whatsbot.log import get_logger
from whatsbot.tenancy.models import TenantConfig
from whatsbot.transport.base import TransportAdapter
from whatsbot.transport.models import OutboundItem, OutboundPlan, Text, fallback_text

logger = get_logger(__name__)


@dataclass
class Delivery:
    recipient: str
    kind: str
    message_id: str = ""
    error: str = ""
    degraded: bool = False

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class DeliveryReport:
    deliveries: list[Delivery] = field(default_factory=list)

    @property
    def failures(self) -> list[Delivery]:
        return [d for d in self.deliveries if not d.ok]

    @property
    def all_delivered(self) -> bool:
        return not self.failures


class OutboundSender:
    """Sends plan items in order; never raises, reports instead.

    Consecutive messages to the same recipient are spaced by ``pacing``
    seconds. A transient failure is retried once. Other rejections are never
    re-sent; a rich message the API refuses as malformed (400) is replaced
    by its plain-text rendition when one exists.
    """

    def __init__(
        self,
        transport: TransportAdapter,
        pacing: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._transport = transport
        self._pacing = pacing
        self._sleep = sleep

    async def send(self, tenant: TenantConfig, plan: OutboundPlan, default_recipient: str) -> DeliveryReport:
        report = DeliveryReport()
        previous: str | None = None
        for message in plan:
            recipient = normalize_contact(message.recipient or default_recipient)
            if previous == recipient and self._pacing > 0:
                await self._sleep(self._pacing)
            previous = recipient
            report.deliveries.append(await self._deliver(tenant, message.item, recipient))

        if report.failures:
            logger.warning(
                "outbound_partial_failure",
                tenant_id=tenant.tenant_id,
                failed=len(report.failures),
                total=len(report.deliveries),
            )
        return report

    async def _deliver(self, tenant: TenantConfig, item: OutboundItem, recipient: str) -> Delivery:
        kind = type(item).__name__
        try:
            message_id = await self._attempt(tenant, item, recipient)
            return Delivery(recipient=recipient, kind=kind, message_id=message_id)
        except ConfigError as e:
            logger.error("outbound_not_configured", tenant_id=tenant.tenant_id, error=str(e))
            return Delivery(recipient=recipient, kind=kind, error=str(e))
        except TransportError as e:
            if e.status != 400 or isinstance(item, Text):
                return Delivery(recipient=recipient, kind=kind, error=str(e))
            text = fallback_text(item)
            if not text:
                return Delivery(recipient=recipient, kind=kind, error=str(e))
            logger.info("outbound_text_fallback", kind=kind, status=e.status)
            try:
                message_id = await self._attempt(tenant, Text(text), recipient)
            except (TransportError, ConfigError) as fallback_error:
                return Delivery(recipient=recipient, kind=kind, error=str(fallback_error))
            return Delivery(recipient=recipient, kind=kind, message_id=message_id, degraded=True)

    async def _attempt(self, tenant: TenantConfig, item: OutboundItem, recipient: str) -> str:
        """One send, plus one retry for transient failures."""
        try:
            return await self._transport.render(item, tenant, recipient)
        except TransportError as e:
            if not e.transient:
                raise
            logger.warning("outbound_retry", kind=type(item).__name__, error=str(e))
            return await self._transport.render(item, tenant, recipient)
