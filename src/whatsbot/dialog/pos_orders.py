"""Customer-side POS actions: catalog browsing, ordering and payment."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from whatsbot.core.errors import ExternalServiceError
from whatsbot.core.types import normalize_contact
from whatsbot.dialog.catalog import match_products
from whatsbot.dialog.context import TurnContext
from whatsbot.dialog.money import InvalidAmount, build_line, parse_quantity, recompute_totals, try_parse_money
from whatsbot.dialog.pos_messages import (
    ambiguous_matches,
    order_detail_text,
    order_history_list,
    order_number,
    order_summary,
    owner_payment_review,
    payment_instructions,
    product_card,
    product_list,
    quantity_list,
    store_contact_card,
)
from whatsbot.dialog.states import PosState
from whatsbot.log import get_logger
from whatsbot.services.pos_client import Product

logger = get_logger(__name__)

PENDING = "PENDING_CONFIRMATION"
NON_CANCELLABLE = frozenset({"CANCELLED", "COMPLETED", "PAYMENT_RECEIVED"})
MAX_QUANTITY = 5


# --- Helpers -----------------------------------------------------------------


async def load_order(ctx: TurnContext, order_id: str) -> dict[str, Any] | None:
    """Fetch an order the current user may see; owners see every order."""
    order = await ctx.services.pos.get_order(ctx.tenant, order_id)
    if order is None:
        return None
    customer = normalize_contact(str(order.get("customer_id") or ""))
    if customer and not ctx.is_owner and customer != normalize_contact(ctx.user):
        logger.warning("order_access_denied", order_id=order_id)
        return None
    order.setdefault("order_id", order_id)
    return order


async def place_order(ctx: TurnContext, items: list[tuple[Product, int, Decimal]]) -> dict[str, Any] | None:
    """Create a PENDING_CONFIRMATION order and reserve stock per line.

    Returns None (after replying) when stock could not be reserved for
    every line; the order is then marked STOCK_UPDATE_FAILED.
    """
    if not items:
        raise InvalidAmount("An order needs at least one item")
    lines = [build_line(p.id, p.name, qty, price) for p, qty, price in items]
    order: dict[str, Any] = {
        "order_id": str(uuid.uuid4()),
        "customer_id": ctx.user,
        "currency": items[0][0].currency or ctx.tenant.currency,
        "status": PENDING,
        "order_lines": lines,
    }
    recompute_totals(order)

    created = await ctx.services.pos.create_order(ctx.tenant, order)
    if isinstance(created, dict) and created.get("order_id"):
        order["order_id"] = created["order_id"]

    failed = []
    for line in lines:
        try:
            await ctx.services.pos.update_product_stock(ctx.tenant, line["product_id"], -line["quantity"])
        except ExternalServiceError as e:
            logger.warning("stock_update_failed", product_id=line["product_id"], error=str(e))
            failed.append(line["product_name"])
    if not failed:
        return order

    order["status"] = "STOCK_UPDATE_FAILED"
    try:
        await ctx.services.pos.update_order_status(ctx.tenant, order["order_id"], "STOCK_UPDATE_FAILED")
    except ExternalServiceError as e:
        logger.error("order_status_update_failed", order_id=order["order_id"], error=str(e))
    ctx.record.note(f"Stock reservation failed for order {order['order_id']}: {', '.join(failed)}")
    ctx.say(
        f"Your order #{order_number(order['order_id'])} was created, but we couldn't reserve stock "
        f"for: {', '.join(failed)}. The store will confirm availability with you shortly."
    )
    return None


async def start_purchase(ctx: TurnContext, product: Product, quantity: int = 1,
                         unit_price: Decimal | None = None, intro: str | None = None) -> None:
    price = unit_price if unit_price is not None else try_parse_money(product.price)
    if price is None:
        ctx.say(f"Sorry, {product.name} isn't available for purchase right now.")
        return
    if product.stock is not None and product.stock < quantity:
        ctx.say(f"Sorry, {product.name} is currently out of stock.")
        return
    order = await place_order(ctx, [(product, quantity, price)])
    ctx.transition(PosState.ORDERING)
    if order is None:
        return
    ctx.scratch["pending_order_id"] = order["order_id"]
    intro = intro or f"You've got great taste! Here is your order summary for *{product.name}*:"
    ctx.reply(order_summary(order, ctx.tenant, intro=intro, image_url=product.image_url))


def _split_order_product(arg: str) -> tuple[str, str]:
    order_id, _, product_id = arg.partition("_")
    return order_id, product_id


def _find_line(order: dict[str, Any], product_id: str) -> dict[str, Any] | None:
    for line in order.get("order_lines") or []:
        if str(line.get("product_id")) == product_id:
            return line
    return None


# --- Catalog -----------------------------------------------------------------


async def view_products(ctx: TurnContext, arg: str = "") -> None:
    products = await ctx.services.pos.get_store_products(ctx.tenant, limit=5)
    if not products:
        ctx.say("We don't have any products listed right now. Please check back soon!")
        return
    ctx.reply(product_list(products, ctx.tenant))
    ctx.transition(PosState.BROWSING)


async def product_detail(ctx: TurnContext, product_id: str) -> None:
    product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
    if product is None:
        ctx.say("Sorry, I couldn't find that product. Say 'products' to see what we have.")
        return
    ctx.scratch["last_product_id"] = product.id
    ctx.reply(product_card(product, ctx.tenant))
    ctx.transition(PosState.VIEWING_PRODUCT)


async def ask_about_product(ctx: TurnContext, product_id: str) -> None:
    product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
    if product is None:
        ctx.say("Sorry, I couldn't find that product. Say 'products' to see what we have.")
        return
    ctx.scratch["last_product_id"] = product.id
    ctx.say(f"Sure! What would you like to know about {product.name}? Just type your question.")
    ctx.transition(PosState.VIEWING_PRODUCT)


async def buy_product(ctx: TurnContext, product_id: str) -> None:
    product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
    if product is None:
        ctx.say("Sorry, that product is no longer available.")
        return
    await start_purchase(ctx, product)


async def buy_by_name(ctx: TurnContext, name: str) -> bool:
    """Returns False when nothing matches so the turn falls through to the LLM."""
    products = await ctx.services.pos.get_store_products(ctx.tenant, limit=100)
    matches = match_products(products, name)
    if not matches:
        return False
    if len(matches) > 1:
        ctx.say(ambiguous_matches([p.name for p in matches]))
        return True
    await start_purchase(ctx, matches[0])
    return True


# --- Order lifecycle ---------------------------------------------------------


async def change_quantity(ctx: TurnContext, arg: str) -> None:
    order_id, product_id = _split_order_product(arg)
    order = await load_order(ctx, order_id)
    if order is None:
        ctx.say("Sorry, I couldn't find that order.")
        return
    line = _find_line(order, product_id)
    name = line.get("product_name") if line else "this item"
    ctx.reply(quantity_list(order_id, product_id, name))
    ctx.transition(PosState.ORDERING)


async def update_quantity(ctx: TurnContext, arg: str) -> None:
    order_id, rest = _split_order_product(arg)
    product_id, _, raw_quantity = rest.rpartition("_")
    try:
        quantity = int(raw_quantity)
    except ValueError:
        quantity = 0
    if not 1 <= quantity <= MAX_QUANTITY:
        ctx.say(f"Please choose a quantity between 1 and {MAX_QUANTITY}.")
        return

    order = await load_order(ctx, order_id)
    if order is None:
        ctx.say("Sorry, I couldn't find that order.")
        return
    if order.get("status", PENDING) != PENDING:
        ctx.say(f"Order #{order_number(order_id)} can no longer be changed (status: {order.get('status')}).")
        return
    line = _find_line(order, product_id)
    if line is None:
        ctx.say("Sorry, that item is not part of this order.")
        return

    fallback: dict[str, Decimal] = {}
    if try_parse_money(line.get("unit_price")) is None:
        product = await ctx.services.pos.get_store_product(ctx.tenant, product_id)
        price = try_parse_money(product.price) if product else None
        if price is not None:
            fallback[product_id] = price

    previous = parse_quantity(line.get("quantity"))
    line["quantity"] = quantity
    recompute_totals(order, fallback)
    await ctx.services.pos.update_order(ctx.tenant, order_id, order)

    delta = quantity - previous
    if delta:
        try:
            await ctx.services.pos.update_product_stock(ctx.tenant, product_id, -delta)
        except ExternalServiceError as e:
            logger.warning("stock_update_failed", product_id=product_id, error=str(e))
            ctx.record.note(f"Stock adjustment of {-delta} failed for product {product_id}")

    ctx.reply(order_summary(order, ctx.tenant, intro="Your order has been updated:"))
    ctx.transition(PosState.ORDERING)


async def confirm_order(ctx: TurnContext, order_id: str) -> None:
    order = await load_order(ctx, order_id)
    if order is None:
        ctx.say("Sorry, I couldn't find that order.")
        return
    status = order.get("status", PENDING)
    if status in NON_CANCELLABLE or status == "STOCK_UPDATE_FAILED":
        ctx.say(f"Order #{order_number(order_id)} is already {status}.")
        return
    await ctx.services.pos.initiate_payment(ctx.tenant, order_id)
    order["status"] = "AWAITING_PAYMENT"
    ctx.scratch["pending_order_id"] = order_id
    ctx.reply(payment_instructions(order, ctx.tenant))
    ctx.transition(PosState.ORDERING)


async def payment_done(ctx: TurnContext, order_id: str) -> None:
    order = await load_order(ctx, order_id)
    if order is None:
        ctx.say("Sorry, I couldn't find that order.")
        return
    if not ctx.notify_owner(owner_payment_review(order, ctx.user, ctx.tenant)):
        ctx.say("We couldn't reach the store to verify your payment. Please contact the store directly.")
        return
    ctx.say(
        f"Thank you! We've asked the store to verify your payment for order #{order_number(order_id)}. "
        "You'll receive your invoice as soon as it's confirmed."
    )
    ctx.transition(PosState.AWAITING_OWNER_PAYMENT)


async def order_history(ctx: TurnContext, arg: str = "") -> None:
    orders = await ctx.services.pos.get_order_history(ctx.tenant, customer_id=ctx.user, limit=5)
    if not orders:
        ctx.say("You don't have any orders yet. Say 'products' to start shopping!")
        return
    ctx.reply(order_history_list(orders, ctx.tenant))
    ctx.transition(PosState.BROWSING)


async def order_detail(ctx: TurnContext, order_id: str) -> None:
    order = await load_order(ctx, order_id)
    if order is None:
        ctx.say("Sorry, I couldn't find that order.")
        return
    ctx.say(order_detail_text(order, ctx.tenant))


async def cancel_order(ctx: TurnContext, order_id: str) -> None:
    order = await load_order(ctx, order_id)
    if order is None:
        ctx.say("Sorry, I couldn't find that order.")
        return
    status = order.get("status", PENDING)
    if status in NON_CANCELLABLE:
        ctx.say(f"Order #{order_number(order_id)} cannot be cancelled because it is {status}.")
        return
    await ctx.services.pos.update_order_status(ctx.tenant, order_id, "CANCELLED")
    if status != "STOCK_UPDATE_FAILED":
        for line in order.get("order_lines") or []:
            try:
                await ctx.services.pos.update_product_stock(
                    ctx.tenant, str(line.get("product_id")), parse_quantity(line.get("quantity"))
                )
            except (ExternalServiceError, InvalidAmount) as e:
                logger.warning("stock_restore_failed", product_id=line.get("product_id"), error=str(e))
    ctx.scratch.pop("pending_order_id", None)
    ctx.say(f"Your order #{order_number(order_id)} has been cancelled. Say 'products' whenever you'd like to shop again.")
    ctx.transition(PosState.TERMINAL)


async def contact_support(ctx: TurnContext, arg: str = "") -> None:
    owner = normalize_contact(ctx.tenant.owner_number)
    if owner:
        ctx.say(f"You can reach {ctx.tenant.display_name} directly at +{owner}.")
        ctx.reply(store_contact_card(ctx.tenant, owner))
    else:
        ctx.say(f"Just type your question here and {ctx.tenant.display_name} will get back to you.")
