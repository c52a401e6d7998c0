"""Owner-side POS actions: payment review, dashboard, reply relay, discounts and offers."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from whatsbot.core.errors import ExternalServiceError, PermanentExternalError
from whatsbot.dialog.context import TurnContext
from whatsbot.dialog.money import apply_discount, display_money, try_parse_money
from whatsbot.dialog.pos_messages import (
    NOT_AUTHORIZED,
    discount_request,
    offer_card,
    offer_choices,
    offer_discount_request,
    order_currency,
    order_number,
    owner_order_summary,
    send_greeting_button,
)
from whatsbot.dialog.pos_orders import start_purchase
from whatsbot.dialog.states import PosState
from whatsbot.log import get_logger
from whatsbot.transport.models import Document, InteractiveButtons, Reaction, ReplyButton, Text

logger = get_logger(__name__)

OWNER_SUMMARY_LIMIT = 1000
PAID_STATUSES = frozenset({"PAYMENT_RECEIVED", "COMPLETED"})
DISCOUNT_CHOICES = (10, 25, 50)
OFFER_CHOICES = (10, 20, 30)
_GREETING_HINTS = ("address", "location", "located", "hours", "open", "opening")


def _require_owner(ctx: TurnContext) -> bool:
    if ctx.is_owner:
        return True
    logger.warning("owner_action_denied", tenant_id=ctx.tenant.tenant_id, action=ctx.inbound.action_id)
    ctx.say(NOT_AUTHORIZED)
    return False


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _created_on(order: dict[str, Any]) -> str:
    return str(order.get("created_at") or order.get("createdAt") or "")[:10]


# --- Payment review ----------------------------------------------------------


async def owner_confirm_payment(ctx: TurnContext, order_id: str) -> None:
    if not _require_owner(ctx):
        return
    number = order_number(order_id)
    try:
        result = await ctx.services.pos.confirm_payment(ctx.tenant, order_id)
    except PermanentExternalError as e:
        ctx.say(f"Could not confirm payment for order #{number} ({order_id}): {e.detail}")
        return
    except ExternalServiceError as e:
        ctx.say(f"Could not confirm payment for order #{number} ({order_id}): {e}. Please try again.")
        return

    order = await ctx.services.pos.get_order(ctx.tenant, order_id) or {"order_id": order_id}
    order.setdefault("order_id", order_id)
    invoice_url = result.get("invoice_pdf_url") or order.get("invoice_pdf_url")
    customer = str(order.get("customer_id") or "")
    if not customer:
        ctx.say(f"Payment for order #{number} is confirmed, but the order has no customer contact.")
        return

    ctx.send_to(customer, Text(f"Your payment for order #{number} is confirmed! Sending your invoice shortly..."))
    if invoice_url:
        ctx.send_to(customer, Document(
            link=invoice_url, filename=f"Invoice-{number}.pdf", caption=f"Invoice for order #{number}"
        ))
    else:
        ctx.record.note(f"No invoice URL returned for order {order_id}")
        ctx.say(f"Note: no invoice was generated for order #{number}.")

    summary = owner_order_summary(order, ctx.tenant)
    if len(summary) > OWNER_SUMMARY_LIMIT:
        ctx.say(summary)
        ctx.reply(send_greeting_button(order_id, "Tap below to send the customer a greeting."))
    else:
        ctx.reply(send_greeting_button(order_id, summary))
    ctx.transition(PosState.OWNER_REVIEWING_PAYMENT)


async def owner_reject_payment(ctx: TurnContext, order_id: str) -> None:
    if not _require_owner(ctx):
        return
    number = order_number(order_id)
    try:
        await ctx.services.pos.update_order_status(ctx.tenant, order_id, "PAYMENT_REJECTED")
    except PermanentExternalError as e:
        ctx.say(f"Could not reject payment for order #{number} ({order_id}): {e.detail}")
        return
    order = await ctx.services.pos.get_order(ctx.tenant, order_id) or {}
    customer = str(order.get("customer_id") or "")
    if customer:
        ctx.send_to(customer, InteractiveButtons(
            body=(
                f"We couldn't verify your payment for order #{number}. Please check your transfer "
                "and tap below once it has gone through, or contact the store."
            ),
            buttons=(ReplyButton(id=f"payment_done_{order_id}", title="I Have Paid"),),
        ))
    ctx.say(f"Payment for order #{number} was marked as rejected. The customer has been notified.")
    ctx.transition(PosState.OWNER_REVIEWING_PAYMENT)


# --- Reply relay -------------------------------------------------------------


def _greeting(ctx: TurnContext, number: str) -> str:
    lines = [f"Hi! Thank you for your order #{number} with {ctx.tenant.display_name}. 😊"]
    for line in ctx.tenant.business_context.splitlines():
        cleaned = line.strip(" -*")
        if cleaned and any(hint in cleaned.lower() for hint in _GREETING_HINTS):
            lines.append(cleaned)
    lines.append("We hope to see you again soon!")
    return "\n".join(lines[:6])


async def owner_initiate_reply(ctx: TurnContext, order_id: str) -> None:
    if not _require_owner(ctx):
        return
    order = await ctx.services.pos.get_order(ctx.tenant, order_id) or {}
    customer = str(order.get("customer_id") or "")
    number = order_number(order_id)
    if not customer:
        ctx.say(f"Order #{number} has no customer contact to greet.")
        return
    ctx.send_to(customer, Text(_greeting(ctx, number)))
    ctx.reply(InteractiveButtons(
        body=f"Greeting sent to the customer of order #{number}. Want to add a personal message?",
        buttons=(ReplyButton(id=f"customer_response_{order_id}", title="Message Customer"),),
    ))
    ctx.transition(PosState.OWNER_REVIEWING_PAYMENT)


async def customer_response(ctx: TurnContext, order_id: str) -> None:
    if not _require_owner(ctx):
        return
    order = await ctx.services.pos.get_order(ctx.tenant, order_id) or {}
    customer = str(order.get("customer_id") or "")
    if not customer:
        ctx.say(f"Order #{order_number(order_id)} has no customer contact.")
        return
    ctx.scratch["reply_order_id"] = order_id
    ctx.scratch["reply_customer"] = customer
    ctx.say(f"Type the message you'd like to send to the customer of order #{order_number(order_id)}.")
    ctx.transition(PosState.AWAITING_CUSTOMER_MESSAGE)


async def relay_owner_message(ctx: TurnContext, text: str) -> None:
    customer = ctx.scratch.pop("reply_customer", None)
    order_id = ctx.scratch.pop("reply_order_id", None)
    if not customer:
        ctx.say("I lost track of which customer to message. Please tap 'Message Customer' again.")
    else:
        ctx.send_to(customer, Text(f"Message from the store ({ctx.tenant.display_name}):\n\n{text}"))
        ctx.say(f"Your message has been sent to the customer of order #{order_number(order_id or '')}.")
        ctx.reply(Reaction(message_id=ctx.inbound.message_id, emoji="✅"))
    ctx.transition(PosState.START)


# --- Dashboard ---------------------------------------------------------------


async def owner_view_orders(ctx: TurnContext, arg: str = "") -> None:
    if not _require_owner(ctx):
        return
    orders = await ctx.services.pos.get_order_history(ctx.tenant, limit=10)
    if not orders:
        ctx.say("No orders yet.")
        return
    lines = ["*Recent Orders*"]
    for order in orders:
        lines.append(
            f"#{order_number(order.get('order_id', ''))} | {order.get('status', 'UNKNOWN')} | "
            f"{display_money(order.get('total_amount'), order_currency(order, ctx.tenant))} | "
            f"+{order.get('customer_id', '')}"
        )
    ctx.say("\n".join(lines))


async def owner_view_customers(ctx: TurnContext, arg: str = "", today: str | None = None) -> None:
    if not _require_owner(ctx):
        return
    today = today or _today()
    orders = [o for o in await ctx.services.pos.get_order_history(ctx.tenant, limit=100)
              if _created_on(o) == today]
    if not orders:
        ctx.say("No customers have ordered today yet.")
        return
    lines = [f"*Today's Customers* ({today})"]
    for order in orders:
        lines.append(
            f"+{order.get('customer_id', '')}: order #{order_number(order.get('order_id', ''))}, "
            f"{display_money(order.get('total_amount'), order_currency(order, ctx.tenant))}, "
            f"{order.get('status', 'UNKNOWN')}"
        )
    ctx.say("\n".join(lines))


async def owner_view_stats(ctx: TurnContext, arg: str = "", today: str | None = None) -> None:
    if not _require_owner(ctx):
        return
    today = today or _today()
    orders = [o for o in await ctx.services.pos.get_order_history(ctx.tenant, limit=100)
              if _created_on(o) == today]
    revenue = Decimal("0")
    by_status: dict[str, int] = {}
    for order in orders:
        status = str(order.get("status") or "UNKNOWN")
        by_status[status] = by_status.get(status, 0) + 1
        if status in PAID_STATUSES:
            revenue += try_parse_money(order.get("total_amount")) or Decimal("0")
    lines = [
        f"*Today's Stats* ({today})",
        f"Orders: {len(orders)}",
        f"Revenue: {display_money(revenue, ctx.tenant.currency)}",
    ]
    lines.extend(f"{status}: {count}" for status, count in sorted(by_status.items()))
    ctx.say("\n".join(lines))


# --- Discounts and today's offer ---------------------------------------------


async def price_sensitive(ctx: TurnContext, arg: str = "") -> None:
    ctx.say(
        "I understand! Let me check with the store whether we can offer you a better price. "
        "I'll get back to you shortly."
    )
    if ctx.notify_owner(discount_request(ctx.user, ctx.inbound.text)):
        ctx.scratch["discount_requested"] = True


async def discount_approval(ctx: TurnContext, arg: str) -> None:
    if not _require_owner(ctx):
        return
    raw_percent, _, customer = arg.partition("_")
    if not raw_percent.isdigit() or int(raw_percent) not in DISCOUNT_CHOICES or not customer:
        ctx.say("That discount option is not valid.")
        return
    percent = int(raw_percent)
    ctx.send_to(customer, Text(
        f"Good news! {ctx.tenant.display_name} has approved a {percent}% discount for you. "
        "Say 'products' to browse and we'll apply it to your order."
    ))
    ctx.scratch["last_discount"] = {"customer": customer, "percent": percent}
    ctx.say(f"Done! Customer +{customer} has been offered {percent}% off.")


async def todays_offer(ctx: TurnContext, arg: str = "") -> None:
    if not ctx.tenant.todays_offer_enabled:
        ctx.say("There's no special offer today. Check back soon!")
        return
    products = [p for p in await ctx.services.pos.get_store_products(ctx.tenant, limit=10)
                if p.stock is None or p.stock > 0]
    if not products:
        ctx.say("There's no special offer today. Check back soon!")
        return
    ctx.reply(offer_choices(products, ctx.tenant))
    ctx.transition(PosState.BROWSING)


async def offer_product(ctx: TurnContext, product_id: str) -> None:
    product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
    if product is None:
        ctx.say("Sorry, that product is no longer available.")
        return
    if not ctx.notify_owner(offer_discount_request(ctx.user, product, ctx.tenant)):
        ctx.say("Today's offers are not available right now. Say 'products' to browse our catalog.")
        return
    ctx.scratch["offer_product_id"] = product.id
    ctx.say(f"Great choice! We're checking with the store for a special price on {product.name}. Hang tight!")
    ctx.transition(PosState.VIEWING_PRODUCT)


async def offer_discount(ctx: TurnContext, arg: str) -> None:
    if not _require_owner(ctx):
        return
    raw_percent, _, rest = arg.partition("_")
    customer, _, product_id = rest.partition("_")
    if not raw_percent.isdigit() or int(raw_percent) not in OFFER_CHOICES or not customer or not product_id:
        ctx.say("That offer option is not valid.")
        return
    percent = int(raw_percent)
    product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
    if product is None:
        ctx.say("That product is no longer available.")
        return
    ctx.send_to(customer, offer_card(product, percent, ctx.tenant))
    ctx.say(f"Offer sent: {percent}% off {product.name} for +{customer}.")


async def accept_offer(ctx: TurnContext, arg: str) -> None:
    product_id, _, raw_percent = arg.rpartition("_")
    if not raw_percent.isdigit() or int(raw_percent) not in OFFER_CHOICES or not product_id:
        ctx.say("Sorry, that offer is no longer valid.")
        return
    percent = int(raw_percent)
    product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
    price = try_parse_money(product.price) if product else None
    if product is None or price is None:
        ctx.say("Sorry, that offer is no longer available.")
        return
    await start_purchase(ctx, product, unit_price=apply_discount(price, percent),
               intro=f"Here's your order with {percent}% off *{product.name}*:")
