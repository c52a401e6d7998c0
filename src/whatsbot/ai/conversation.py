"""Convert transcript turns to OpenAI chat-completions message format."""

from __future__ import annotations

import json
from typing import Any, Sequence

from whatsbot.services.pos_client import Product
from whatsbot.storage.models import AssistantTurn, SystemNote, ToolTurn, Turn, UserTurn
from whatsbot.tenancy.models import TenantConfig


def build_messages(turns: list[Turn], system: str = "") -> list[dict[str, Any]]:
    """Render the transcript as chat messages, system prompt first.

    The transcript must already be valid (see ``storage.transcript``); tool
    turns are emitted in stored order right after their assistant turn.
    """
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})

    for turn in turns:
        match turn:
            case UserTurn(text=text):
                messages.append({"role": "user", "content": text})
            case AssistantTurn(text=text, tool_calls=calls) if calls:
                messages.append({
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {
                            "id": c.id,
                            "type": "function",
                            "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                        }
                        for c in calls
                    ],
                })
            case AssistantTurn(text=text):
                messages.append({"role": "assistant", "content": text or ""})
            case ToolTurn(tool_call_id=call_id, result=result):
                messages.append({"role": "tool", "tool_call_id": call_id, "content": result})
            case SystemNote(text=text):
                messages.append({"role": "system", "content": text})
    return messages


def format_product_snapshot(products: Sequence[Product], currency: str) -> str:
    if not products:
        return "No products are currently listed."
    lines = []
    for p in products:
        stock = p.stock if p.stock is not None else "unknown"
        lines.append(f"- {p.name} (ID: {p.id}, Price: {p.currency or currency} {p.price}, Stock: {stock})")
    return "\n".join(lines)


def build_pos_system_prompt(tenant: TenantConfig, products: Sequence[Product]) -> str:
    parts = [
        f"You are a friendly WhatsApp sales assistant for {tenant.display_name}.",
        "Answer briefly. Use the tools to show products, start purchases, list order history "
        "and fetch invoices instead of describing them in text. Never invent products or prices.",
    ]
    if tenant.business_context:
        parts.append(f"Business information:\n{tenant.business_context}")
    parts.append("Available products:\n" + format_product_snapshot(products, tenant.currency))
    return "\n\n".join(parts)


def build_deals_system_prompt(tenant: TenantConfig, deals: Sequence[dict[str, Any]]) -> str:
    parts = [
        "You are LobangLah, a WhatsApp assistant that helps people in Singapore find deals "
        "near them. Keep replies short and practical.",
    ]
    if tenant.business_context:
        parts.append(tenant.business_context)
    if deals:
        listed = "\n".join(
            f"- {d.get('name')} ({d.get('formatted_address') or 'address unknown'}"
            + (f", rating {d['rating']}" if d.get("rating") else "")
            + ")"
            for d in deals
        )
        parts.append("Deals currently shown to the user:\n" + listed)
    else:
        parts.append("No deals are shown yet; suggest sharing a location to search nearby.")
    return "\n\n".join(parts)
