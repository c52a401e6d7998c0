"""Per-turn context handed to dialog actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from whatsbot.ai.client import LLMClientPool
from whatsbot.ai.orchestrator import ToolLoopRequest
from whatsbot.dialog.states import initial_state, is_legal
from whatsbot.log import get_logger
from whatsbot.services.object_store import ObjectStore
from whatsbot.services.places import PlacesClient
from whatsbot.services.pos_client import PosClient
from whatsbot.services.workflow import WorkflowClient
from whatsbot.storage.deal_store import DealStore
from whatsbot.storage.models import ConversationRecord
from whatsbot.tenancy.models import TenantConfig
from whatsbot.transport.base import TransportAdapter
from whatsbot.transport.models import NormalizedInbound, OutboundItem, OutboundPlan

logger = get_logger(__name__)


@dataclass
class DialogServices:
    """External collaborators the dialog flows may call."""

    pos: PosClient
    places: PlacesClient
    llm: LLMClientPool
    deals: DealStore
    workflow: WorkflowClient
    object_store: ObjectStore | None = None
    transport: TransportAdapter | None = None
    media_bucket: str = ""


@dataclass
class TurnContext:
    tenant: TenantConfig
    record: ConversationRecord
    inbound: NormalizedInbound
    services: DialogServices
    plan: OutboundPlan = field(default_factory=OutboundPlan)
    llm_request: ToolLoopRequest | None = None

    @property
    def user(self) -> str:
        return self.record.user

    @property
    def scratch(self) -> dict[str, Any]:
        return self.record.scratch

    @property
    def is_owner(self) -> bool:
        return self.tenant.is_owner(self.user)

    def reply(self, item: OutboundItem) -> None:
        self.plan.add(item)

    def say(self, text: str) -> None:
        self.plan.text(text)

    def send_to(self, recipient: str, item: OutboundItem) -> None:
        self.plan.add(item, to=recipient)

    def notify_owner(self, item: OutboundItem) -> bool:
        if not self.tenant.owner_number:
            logger.warning("owner_not_configured", tenant_id=self.tenant.tenant_id)
            return False
        self.plan.add(item, to=self.tenant.owner_number)
        return True

    def reset(self) -> None:
        """Return to the tenant machine's initial state; used by greetings and restarts."""
        self.record.state = initial_state(self.tenant.kind)

    def transition(self, target: str) -> bool:
        """Move to ``target`` if the tenant machine allows it; otherwise stay put."""
        current = self.record.state
        if not is_legal(self.tenant.kind, current, target):
            logger.warning(
                "illegal_transition",
                tenant_id=self.tenant.tenant_id,
                current=current,
                target=target,
            )
            return False
        if current != target:
            logger.debug("state_transition", current=current, target=target)
        self.record.state = target
        return True
