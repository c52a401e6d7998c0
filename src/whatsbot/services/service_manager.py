"""Service lifecycle manager."""

from __future__ import annotations

from whatsbot.config import AppConfig
from whatsbot.log import get_logger
from whatsbot.services.base import Service
from whatsbot.services.object_store import ObjectStore
from whatsbot.services.places import PlacesClient
from whatsbot.services.pos_client import PosClient
from whatsbot.services.workflow import WorkflowClient

logger = get_logger(__name__)


class ServiceManager:
    """Manages startup and shutdown of all external collaborators."""

    def __init__(
        self,
        config: AppConfig,
        pos: PosClient | None = None,
        places: PlacesClient | None = None,
        workflow: WorkflowClient | None = None,
        object_store: ObjectStore | None = None,
    ):
        self._pos = pos or PosClient(config.pos.base_url, timeout=config.pos.timeout)
        self._places = places or PlacesClient(config.places.base_url, timeout=config.places.timeout)
        self._workflow = workflow or WorkflowClient(
            config.workflow.webhook_url,
            callback_base_url=config.workflow.callback_base_url,
            timeout=config.workflow.timeout,
        )
        self._object_store = object_store or ObjectStore(config.aws.region)

    def get_pos(self) -> PosClient:
        return self._pos

    def get_places(self) -> PlacesClient:
        return self._places

    def get_workflow(self) -> WorkflowClient:
        return self._workflow

    def get_object_store(self) -> ObjectStore:
        return self._object_store

    def _all(self) -> list[Service]:
        return [self._pos, self._places, self._workflow, self._object_store]

    async def start_all(self) -> None:
        """Start all services. The object store is optional and logs instead of blocking startup."""
        await self._pos.start()
        await self._places.start()
        await self._workflow.start()
        try:
            await self._object_store.start()
        except Exception as e:
            logger.warning(
                "object_store_unavailable",
                error=str(e),
                hint="Configure AWS credentials to enable S3 business context and media storage",
            )
        logger.info("all_services_started")

    async def stop_all(self) -> None:
        """Stop all services gracefully."""
        for service in reversed(self._all()):
            await service.stop()
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of all services."""
        return {service.service_name: await service.health_check() for service in self._all()}
