"""Dialog engine: one inbound message in, next record + outbound plan (+ optional LLM request) out."""

from __future__ import annotations

from dataclasses import dataclass

from whatsbot.ai.orchestrator import ToolLoopRequest
from whatsbot.ai.tools.base import Tool
from whatsbot.config import LLMConfig
from whatsbot.core.errors import ConfigError, PermanentExternalError, TransientExternalError
from whatsbot.core.types import TenantKind
from whatsbot.dialog.agency import AgencyFlow
from whatsbot.dialog.context import DialogServices, TurnContext
from whatsbot.dialog.deals import DealsFlow
from whatsbot.dialog.money import InvalidAmount
from whatsbot.dialog.pos import PosFlow
from whatsbot.dialog.pos_messages import GENERIC_FAILURE, todays_offer_wrap
from whatsbot.dialog.states import initial_state, known_state
from whatsbot.log import get_logger
from whatsbot.storage.models import ConversationRecord, UserTurn
from whatsbot.tenancy.models import TenantConfig
from whatsbot.transport.models import NormalizedInbound, OutboundPlan, Text

logger = get_logger(__name__)

INVALID_AMOUNT = "Sorry, that amount doesn't look right. Please check the price or quantity and try again."


@dataclass
class TurnResult:
    record: ConversationRecord
    plan: OutboundPlan
    llm_request: ToolLoopRequest | None = None


class DialogEngine:
    """Routes a turn to the tenant's flow and is the single place errors become user-facing text."""

    def __init__(self, services: DialogServices, tools: list[Tool], llm_config: LLMConfig):
        self.services = services
        self._flows = {
            TenantKind.POS: PosFlow(tools, llm_config),
            TenantKind.DEALS: DealsFlow(llm_config),
            TenantKind.VIRAL_AGENCY: AgencyFlow(llm_config),
        }

    @staticmethod
    def initial_state(kind: TenantKind) -> str:
        return initial_state(kind)

    async def handle(
        self, tenant: TenantConfig, record: ConversationRecord, inbound: NormalizedInbound
    ) -> TurnResult:
        if not known_state(tenant.kind, record.state):
            logger.warning("unknown_state_reset", state=record.state, tenant_kind=tenant.kind.value)
            record.state = initial_state(tenant.kind)

        record.add_turn(UserTurn(text=inbound.describe(), raw_type=inbound.kind.value))
        record.last_message_type = inbound.kind.value
        ctx = TurnContext(tenant=tenant, record=record, inbound=inbound, services=self.services)
        state_before = record.state

        try:
            await self._flows[tenant.kind].handle(ctx)
        except PermanentExternalError as e:
            logger.warning("action_rejected", error=str(e), detail=e.detail)
            self._abort(ctx, state_before, f"Sorry, we couldn't complete that: {e.detail}")
        except (TransientExternalError, ConfigError) as e:
            logger.error("action_failed", error=str(e), error_type=type(e).__name__)
            self._abort(ctx, state_before, GENERIC_FAILURE)
            record.note(f"Action failed: {type(e).__name__}: {e}")
        except InvalidAmount as e:
            logger.warning("invalid_amount", error=str(e))
            self._abort(ctx, state_before, INVALID_AMOUNT)
        except Exception as e:
            logger.exception("action_crashed", error_type=type(e).__name__)
            self._abort(ctx, state_before, GENERIC_FAILURE)
            record.note(f"Action failed: {type(e).__name__}")

        return TurnResult(record=record, plan=ctx.plan, llm_request=ctx.llm_request)

    @staticmethod
    def _abort(ctx: TurnContext, state_before: str, message: str) -> None:
        """Drop whatever the failed action planned and keep the previous state."""
        ctx.record.state = state_before
        ctx.plan = OutboundPlan()
        ctx.llm_request = None
        ctx.say(message)

    def complete_llm_turn(self, tenant: TenantConfig, record: ConversationRecord, text: str) -> OutboundPlan:
        """Final text of a tool loop as the turn's closing message."""
        plan = OutboundPlan()
        if tenant.kind is TenantKind.POS and tenant.todays_offer_enabled and not tenant.is_owner(record.user):
            plan.add(todays_offer_wrap(text))
        else:
            plan.add(Text(text))
        return plan

    def fail_llm_turn(self, record: ConversationRecord, error: Exception) -> OutboundPlan:
        logger.error("llm_turn_failed", error=str(error), error_type=type(error).__name__)
        record.note(f"LLM turn failed: {type(error).__name__}")
        plan = OutboundPlan()
        plan.add(Text(GENERIC_FAILURE))
        return plan
