"""Point-of-sale tenant flow: interactive routing, keyword shortcuts, LLM fallback."""

from __future__ import annotations

from typing import Awaitable, Callable

from whatsbot.ai.conversation import build_pos_system_prompt
from whatsbot.ai.orchestrator import ToolLoopRequest
from whatsbot.ai.tools.base import Tool
from whatsbot.config import LLMConfig
from whatsbot.core.errors import ExternalServiceError
from whatsbot.core.types import InboundKind, TenantKind
from whatsbot.dialog import pos_orders, pos_owner
from whatsbot.dialog.context import TurnContext
from whatsbot.dialog.pos_messages import MEDIA_NOT_SUPPORTED, owner_dashboard
from whatsbot.dialog.rules import POS_ROUTES, match_text, route_action
from whatsbot.dialog.states import PosState
from whatsbot.log import get_logger

logger = get_logger(__name__)

Action = Callable[[TurnContext, str], Awaitable[bool | None]]

CLARIFICATION = "Sorry, I didn't catch that. Say 'products' to browse our catalog or just ask me a question."


class PosFlow:
    """Maps interactive ids and keyword shortcuts to actions; anything else goes to the LLM."""

    def __init__(self, tools: list[Tool], llm_config: LLMConfig):
        self._tools = tools
        self._llm_config = llm_config
        self._actions: dict[str, Action] = {
            "view_products": pos_orders.view_products,
            "product_detail": pos_orders.product_detail,
            "ask_about_product": pos_orders.ask_about_product,
            "buy_product": pos_orders.buy_product,
            "buy_by_name": pos_orders.buy_by_name,
            "confirm_order": pos_orders.confirm_order,
            "change_quantity": pos_orders.change_quantity,
            "update_quantity": pos_orders.update_quantity,
            "order_history": pos_orders.order_history,
            "order_detail": pos_orders.order_detail,
            "cancel_order": pos_orders.cancel_order,
            "payment_done": pos_orders.payment_done,
            "contact_support": pos_orders.contact_support,
            "owner_confirm_payment": pos_owner.owner_confirm_payment,
            "owner_reject_payment": pos_owner.owner_reject_payment,
            "owner_initiate_reply": pos_owner.owner_initiate_reply,
            "customer_response": pos_owner.customer_response,
            "owner_view_orders": pos_owner.owner_view_orders,
            "owner_view_customers": pos_owner.owner_view_customers,
            "owner_view_stats": pos_owner.owner_view_stats,
            "price_sensitive": pos_owner.price_sensitive,
            "discount_approval": pos_owner.discount_approval,
            "todays_offer": pos_owner.todays_offer,
            "offer_product": pos_owner.offer_product,
            "offer_discount": pos_owner.offer_discount,
            "accept_offer": pos_owner.accept_offer,
        }

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(self._actions)

    async def handle(self, ctx: TurnContext) -> None:
        match ctx.inbound.kind:
            case InboundKind.INTERACTIVE:
                await self._handle_interactive(ctx)
            case InboundKind.TEXT:
                await self._handle_text(ctx)
            case _:
                ctx.say(MEDIA_NOT_SUPPORTED)

    async def _handle_interactive(self, ctx: TurnContext) -> None:
        matched = route_action(POS_ROUTES, ctx.inbound.action_id)
        if matched is None:
            logger.info("unknown_action", action_id=ctx.inbound.action_id)
            ctx.say(CLARIFICATION)
            return
        logger.info("action_dispatched", action=matched.action)
        await self._actions[matched.action](ctx, matched.arg)

    async def _handle_text(self, ctx: TurnContext) -> None:
        text = ctx.inbound.text.strip()
        if ctx.is_owner:
            if ctx.record.state == PosState.AWAITING_CUSTOMER_MESSAGE:
                await pos_owner.relay_owner_message(ctx, text)
            else:
                ctx.reply(owner_dashboard())
            return

        matched = match_text(TenantKind.POS, text)
        if matched is not None:
            logger.info("keyword_matched", action=matched.action)
            if await self._actions[matched.action](ctx, matched.arg) is not False:
                return
        ctx.llm_request = await self.llm_request(ctx)

    async def llm_request(self, ctx: TurnContext) -> ToolLoopRequest:
        try:
            products = await ctx.services.pos.get_store_products(ctx.tenant, limit=20)
        except ExternalServiceError as e:
            logger.warning("product_snapshot_unavailable", error=str(e))
            products = []
        return ToolLoopRequest(
            system_prompt=build_pos_system_prompt(ctx.tenant, products),
            model=ctx.tenant.openai_model or self._llm_config.default_model,
            temperature=ctx.tenant.temperature,
            max_tokens=self._llm_config.max_tokens,
            tools=list(self._tools),
        )
