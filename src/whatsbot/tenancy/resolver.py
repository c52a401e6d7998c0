"""Maps an inbound business phone number id to a tenant."""

from __future__ import annotations

import time
from typing import Any, Callable

from whatsbot.core.errors import MalformedPayload, UnknownTenant
from whatsbot.log import get_logger
from whatsbot.tenancy.sources import TenantRef, TenantSource
from whatsbot.transport.whatsapp import extract_phone_number_id

logger = get_logger(__name__)


class TenantResolver:
    def __init__(self, source: TenantSource, ttl_seconds: float = 300.0,
                 clock: Callable[[], float] = time.time):
        self._source = source
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, TenantRef]] = {}

    async def resolve(self, phone_number_id: str) -> TenantRef:
        now = self._clock()
        cached = self._cache.get(phone_number_id)
        if cached and now - cached[0] < self._ttl:
            return cached[1]

        ref = await self._source.find_by_phone_id(phone_number_id)
        if ref is None:
            logger.warning("unknown_tenant", phone_number_id=phone_number_id)
            raise UnknownTenant(f"No tenant for phone number id {phone_number_id}")
        self._cache[phone_number_id] = (now, ref)
        return ref

    async def resolve_envelope(self, envelope: dict[str, Any]) -> tuple[str, TenantRef]:
        phone_number_id = extract_phone_number_id(envelope)
        if not phone_number_id:
            raise MalformedPayload("Invalid payload: missing WhatsApp Phone Number ID")
        return phone_number_id, await self.resolve(phone_number_id)

    def clear(self) -> None:
        self._cache.clear()
