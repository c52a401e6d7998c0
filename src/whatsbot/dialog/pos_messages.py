"""Message builders for the point-of-sale tenant."""

from __future__ import annotations

from typing import Any, Sequence

from whatsbot.dialog.money import apply_discount, display_money, try_parse_money
from whatsbot.services.pos_client import Product
from whatsbot.tenancy.models import TenantConfig
from whatsbot.transport.models import (
    Contacts,
    InteractiveButtons,
    InteractiveList,
    ListRow,
    ListSection,
    ReplyButton,
)

PRODUCT_LIST_ROWS = 5
HISTORY_ROWS = 10

AMBIGUOUS_HINT = "Please be more specific, or you can say 'products' to see all items."
MEDIA_NOT_SUPPORTED = "Sorry, I can only process text messages and button clicks at the moment."
NOT_AUTHORIZED = "You are not authorized to access this feature."
GENERIC_FAILURE = "I'm sorry, I encountered an issue trying to process that. Please try again shortly."


def order_number(order_id: str) -> str:
    return str(order_id)[:8].upper()


def order_currency(order: dict[str, Any], tenant: TenantConfig) -> str:
    return order.get("currency") or tenant.currency


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def product_list(products: Sequence[Product], tenant: TenantConfig,
                 body: str = "Here are some of our products. Tap one to see details.") -> InteractiveList:
    rows = tuple(
        ListRow(
            id=f"select_product_{p.id}",
            title=p.name,
            description=display_money(p.price, p.currency or tenant.currency),
        )
        for p in products[:PRODUCT_LIST_ROWS]
    )
    return InteractiveList(
        body=body,
        button="View Products",
        sections=(ListSection(title="Products", rows=rows),),
        header_text="Our Products",
    )


def product_card(product: Product, tenant: TenantConfig, intro: str | None = None) -> InteractiveButtons:
    currency = product.currency or tenant.currency
    lines = [f"*{product.name}*"]
    if intro:
        lines.insert(0, intro)
    if product.description:
        lines.append(product.description)
    lines.append(f"Price: {display_money(product.price, currency)}")
    if product.stock is not None:
        lines.append("In stock" if product.stock > 0 else "Currently out of stock")
    return InteractiveButtons(
        body="\n\n".join(lines),
        buttons=(
            ReplyButton(id=f"buy_product_{product.id}", title="🛒 Buy Now"),
            ReplyButton(id="initiate_view_products_list", title="All Products"),
            ReplyButton(id=f"ask_about_product_{product.id}", title="Ask Question"),
        ),
        header_image=product.image_url,
        header_text=None if product.image_url else product.name,
    )


def order_summary(order: dict[str, Any], tenant: TenantConfig, intro: str = "Here is your order summary:",
                  image_url: str | None = None) -> InteractiveButtons:
    currency = order_currency(order, tenant)
    order_id = order.get("order_id", "")
    lines = order.get("order_lines") or []
    item_lines = "\n".join(
        f"{line.get('quantity')} x {line.get('product_name')} @ {display_money(line.get('unit_price'), currency)}"
        f" = {display_money(line.get('line_total'), currency)}"
        for line in lines
    )
    body = (
        f"{intro}\n\n"
        f"{item_lines}\n"
        "-----------------------------------\n"
        f"Total: {display_money(order.get('total_amount'), currency)}\n"
        "-----------------------------------\n"
        "Ready to make it yours?"
    )
    product_id = lines[0].get("product_id", "") if lines else ""
    return InteractiveButtons(
        body=body,
        buttons=(
            ReplyButton(id=f"confirm_order_{order_id}", title="Confirm & Pay"),
            ReplyButton(id=f"change_qty_{order_id}_{product_id}", title="Change Quantity"),
            ReplyButton(id=f"cancel_order_{order_id}", title="Cancel Order"),
        ),
        header_image=image_url,
        header_text=None if image_url else "Order Summary",
        footer=f"Order ID: {order_number(order_id)}",
    )


def quantity_list(order_id: str, product_id: str, product_name: str) -> InteractiveList:
    rows = tuple(
        ListRow(id=f"update_quantity_{order_id}_{product_id}_{n}", title=f"{n}")
        for n in range(1, 6)
    )
    return InteractiveList(
        body=f"How many {product_name} would you like?",
        button="Select Quantity",
        sections=(ListSection(title="Quantity", rows=rows),),
        header_text="Change Quantity",
    )


def order_history_list(orders: Sequence[dict[str, Any]], tenant: TenantConfig) -> InteractiveList:
    rows = []
    for order in orders[:HISTORY_ROWS]:
        currency = order_currency(order, tenant)
        created = str(order.get("created_at") or order.get("createdAt") or "")[:10]
        description = " | ".join(
            p for p in (
                str(order.get("status") or "UNKNOWN"),
                display_money(order.get("total_amount"), currency),
                created,
            ) if p
        )
        rows.append(ListRow(
            id=f"view_order_detail_{order.get('order_id')}",
            title=f"Order #{order_number(order.get('order_id', ''))}",
            description=_clip(description, 72),
        ))
    return InteractiveList(
        body="Here are your recent orders. Tap one to see the details.",
        button="View Orders",
        sections=(ListSection(title="Orders", rows=tuple(rows)),),
        header_text="Your Recent Orders",
    )


def order_detail_text(order: dict[str, Any], tenant: TenantConfig) -> str:
    currency = order_currency(order, tenant)
    lines = [
        f"*Order #{order_number(order.get('order_id', ''))}*",
        f"Status: {order.get('status', 'UNKNOWN')}",
    ]
    for line in order.get("order_lines") or []:
        lines.append(
            f"- {line.get('quantity')} x {line.get('product_name')}: "
            f"{display_money(line.get('line_total'), currency)}"
        )
    lines.append(f"Total: {display_money(order.get('total_amount'), currency)}")
    if order.get("invoice_pdf_url"):
        lines.append(f"Invoice: {order['invoice_pdf_url']}")
    return "\n".join(lines)


def ambiguous_matches(names: Sequence[str]) -> str:
    listed = "\n".join(f"- {name}" for name in names[:3])
    more = "\n...and more." if len(names) > 3 else ""
    return f"I found a few products matching that:\n{listed}{more}\n\n{AMBIGUOUS_HINT}"


def payment_instructions(order: dict[str, Any], tenant: TenantConfig) -> InteractiveButtons:
    currency = order_currency(order, tenant)
    target = tenant.paynow_target or "the store's PayNow number"
    body = (
        f"Thank you! Your order #{order_number(order.get('order_id', ''))} is confirmed.\n\n"
        f"Please pay {display_money(order.get('total_amount'), currency)} via PayNow to {target}.\n\n"
        "Tap the button below once you have paid."
    )
    return InteractiveButtons(
        body=body,
        buttons=(ReplyButton(id=f"payment_done_{order.get('order_id')}", title="I Have Paid"),),
        header_text="Payment Instructions",
    )


def owner_payment_review(order: dict[str, Any], customer: str, tenant: TenantConfig) -> InteractiveButtons:
    currency = order_currency(order, tenant)
    order_id = order.get("order_id", "")
    body = (
        f"Customer +{customer} reports payment for order #{order_number(order_id)}.\n"
        f"Amount: {display_money(order.get('total_amount'), currency)}\n\n"
        "Please verify the transfer before confirming."
    )
    return InteractiveButtons(
        body=body,
        buttons=(
            ReplyButton(id=f"owner_confirm_payment_{order_id}", title="Confirm Payment"),
            ReplyButton(id=f"owner_reject_payment_{order_id}", title="Reject Payment"),
        ),
        header_text="Payment Verification",
    )


def owner_order_summary(order: dict[str, Any], tenant: TenantConfig) -> str:
    currency = order_currency(order, tenant)
    customer = order.get("customer_id", "")
    lines = [
        f"Payment confirmed for order #{order_number(order.get('order_id', ''))}.",
        f"Customer: +{customer}" if customer else "",
        f"Total: {display_money(order.get('total_amount'), currency)}",
    ]
    for line in order.get("order_lines") or []:
        lines.append(f"- {line.get('quantity')} x {line.get('product_name')}")
    lines.append("The invoice has been sent to the customer.")
    return "\n".join(line for line in lines if line)


def send_greeting_button(order_id: str, body: str) -> InteractiveButtons:
    return InteractiveButtons(
        body=body,
        buttons=(ReplyButton(id=f"owner_initiate_reply_{order_id}", title="Send Greeting"),),
        header_text="Order Paid",
    )


def owner_dashboard() -> InteractiveButtons:
    return InteractiveButtons(
        body="Welcome back! What would you like to check?",
        buttons=(
            ReplyButton(id="view_orders", title="View Orders"),
            ReplyButton(id="view_customers", title="View Customers"),
            ReplyButton(id="view_stats", title="View Stats"),
        ),
        header_text="Store Owner Dashboard",
    )


def todays_offer_wrap(text: str) -> InteractiveButtons:
    return InteractiveButtons(
        body=text,
        buttons=(ReplyButton(id="todays_offer", title="🎁 Today's Offer"),),
    )


def discount_request(customer: str, message: str) -> InteractiveButtons:
    return InteractiveButtons(
        body=(
            f"Customer +{customer} is asking about pricing:\n\"{_clip(message, 600)}\"\n\n"
            "Approve a discount? Ignore this message to offer no discount."
        ),
        buttons=tuple(
            ReplyButton(id=f"discount_{pct}_{customer}", title=f"{pct}% Off") for pct in (10, 25, 50)
        ),
        header_text="Discount Request",
    )


def offer_choices(products: Sequence[Product], tenant: TenantConfig) -> InteractiveButtons:
    return InteractiveButtons(
        body="Pick a product and we'll ask the store for a special price just for you!",
        buttons=tuple(
            ReplyButton(id=f"offer_product_{p.id}", title=p.name) for p in products[:3]
        ),
        header_text="Today's Offer",
    )


def offer_discount_request(customer: str, product: Product, tenant: TenantConfig) -> InteractiveButtons:
    return InteractiveButtons(
        body=(
            f"Customer +{customer} is interested in today's offer for *{product.name}* "
            f"({display_money(product.price, product.currency or tenant.currency)}).\n\n"
            "Choose a discount to offer."
        ),
        buttons=tuple(
            ReplyButton(id=f"offer_discount_{pct}_{customer}_{product.id}", title=f"{pct}% Off")
            for pct in (10, 20, 30)
        ),
        header_text="Today's Offer Request",
    )


def offer_card(product: Product, percent: int, tenant: TenantConfig) -> InteractiveButtons:
    currency = product.currency or tenant.currency
    price = try_parse_money(product.price)
    discounted = apply_discount(price, percent) if price is not None else None
    lines = [f"🎉 Special offer: *{percent}% off {product.name}*!"]
    if price is not None and discounted is not None:
        lines.append(f"Was {display_money(price, currency)}, now {display_money(discounted, currency)}.")
    return InteractiveButtons(
        body="\n".join(lines),
        buttons=(ReplyButton(id=f"accept_offer_{product.id}_{percent}", title="Accept Offer"),),
        header_image=product.image_url,
        header_text=None if product.image_url else "Today's Offer",
    )


def store_contact_card(tenant: TenantConfig, number: str) -> Contacts:
    """vCard-style contact for the store owner; ``number`` is digits only."""
    return Contacts(contacts=({
        "name": {"formatted_name": tenant.display_name, "first_name": tenant.display_name},
        "phones": [{"phone": f"+{number}", "type": "WORK", "wa_id": number}],
    },))
