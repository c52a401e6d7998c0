"""Order tools: history list and invoice delivery."""

from __future__ import annotations

from typing import Any

from whatsbot.ai.tools.base import Tool, ToolContext
from whatsbot.core.types import normalize_contact
from whatsbot.dialog.pos_messages import order_history_list, order_number
from whatsbot.services.pos_client import PosClient
from whatsbot.transport.models import Document


class GetOrderHistoryTool(Tool):
    def __init__(self, pos: PosClient):
        self._pos = pos

    @property
    def name(self) -> str:
        return "execute_get_order_history"

    @property
    def description(self) -> str:
        return "Send the customer a list of their recent orders."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        orders = await self._pos.get_order_history(context.tenant, customer_id=context.user, limit=5)
        if not orders:
            return "The customer has no previous orders."
        context.plan.add(order_history_list(orders, context.tenant))
        return f"Displayed {len(orders)} recent orders."


class GetInvoiceTool(Tool):
    def __init__(self, pos: PosClient):
        self._pos = pos

    @property
    def name(self) -> str:
        return "execute_get_invoice"

    @property
    def description(self) -> str:
        return "Send the customer the invoice PDF for one of their orders."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"order_id": {"type": "string", "description": "The order ID"}},
            "required": ["order_id"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        order_id = str(kwargs.get("order_id") or "").strip()
        if not order_id:
            return "Error: order_id is required."
        order = await self._pos.get_order(context.tenant, order_id)
        owner_of_order = normalize_contact(str(order.get("customer_id") or "")) if order else ""
        if order is None or (owner_of_order and owner_of_order != normalize_contact(context.user)):
            return f"Order {order_id} was not found for this customer."
        url = order.get("invoice_pdf_url") or order.get("invoice_url")
        if not url:
            return f"No invoice is available yet for order {order_id} (status {order.get('status')})."
        number = order_number(order_id)
        context.plan.add(Document(link=url, filename=f"Invoice-{number}.pdf", caption=f"Invoice for order #{number}"))
        return f"Sent the invoice for order #{number}."
