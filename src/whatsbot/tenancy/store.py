"""Read-through, TTL-cached configuration store for tenant snapshots."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Callable

from pydantic import ValidationError

from whatsbot.core.errors import TenantNotConfigured
from whatsbot.log import get_logger
from whatsbot.tenancy.models import TenantConfig
from whatsbot.tenancy.sources import TenantSource

if TYPE_CHECKING:
    from whatsbot.services.object_store import ObjectStore

logger = get_logger(__name__)

ROTATABLE_CREDENTIALS = ("whatsappAppSecret", "verifyToken", "whatsappToken")


class ConfigStore:
    """The only component that reads tenant secrets.

    Snapshots are cached per replica for ``ttl_seconds``; ``invalidate`` and
    ``refresh`` are the out-of-band hooks.
    """

    def __init__(
        self,
        source: TenantSource,
        object_store: ObjectStore | None = None,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self._object_store = object_store
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, TenantConfig]] = {}

    async def get(self, tenant_id: str) -> TenantConfig:
        cached = self._cache.get(tenant_id)
        now = self._clock()
        if cached and now - cached[0] < self._ttl:
            return cached[1]
        config = await self._load(tenant_id)
        self._cache[tenant_id] = (now, config)
        return config

    async def refresh(self, tenant_id: str) -> TenantConfig:
        self.invalidate(tenant_id)
        return await self.get(tenant_id)

    def invalidate(self, tenant_id: str | None = None) -> None:
        if tenant_id is None:
            self._cache.clear()
        else:
            self._cache.pop(tenant_id, None)
        logger.info("tenant_cache_invalidated", tenant_id=tenant_id or "*")

    async def verify_tokens(self) -> list[str]:
        return await self._source.verify_tokens()

    async def rotate_credentials(self, tenant_id: str, updates: dict[str, str]) -> list[str]:
        """Administrative credential rotation. Returns the attribute names changed."""
        clean = {k: v for k, v in updates.items() if k in ROTATABLE_CREDENTIALS and v}
        if not clean:
            return []
        await self._source.update_credentials(tenant_id, clean)
        self.invalidate(tenant_id)
        logger.info("tenant_credentials_rotated", tenant_id=tenant_id, fields=sorted(clean))
        return sorted(clean)

    async def _load(self, tenant_id: str) -> TenantConfig:
        data = await self._source.load(tenant_id)
        if not data:
            raise TenantNotConfigured(f"No configuration for tenant '{tenant_id}'")
        data.setdefault("storeId", tenant_id)
        try:
            config = TenantConfig.model_validate(data)
        except ValidationError as e:
            raise TenantNotConfigured(f"Invalid configuration for tenant '{tenant_id}': {e}") from e

        if not config.business_context and config.s3_context_bucket and config.s3_context_key:
            config = await self._attach_business_context(config)

        logger.info("tenant_config_loaded", tenant_id=tenant_id, kind=config.kind.value)
        return config

    async def _attach_business_context(self, config: TenantConfig) -> TenantConfig:
        if self._object_store is None:
            return config
        try:
            context = await self._object_store.get_text(config.s3_context_bucket, config.s3_context_key)
        except Exception as e:
            logger.warning("business_context_unavailable", tenant_id=config.tenant_id, error=str(e))
            return config
        return config.model_copy(update={"business_context": context})
