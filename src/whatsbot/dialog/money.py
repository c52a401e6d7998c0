"""Fixed-scale money arithmetic for order lines.

Amounts travel as decimal strings at the POS boundary and as ``Decimal``
internally. Every displayed or stored amount is quantized to 2 places.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


class InvalidAmount(ValueError):
    pass


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value: Any) -> Decimal:
    """Parse a price; rejects blanks, NaN, infinities and negatives."""
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmount(f"Not a valid amount: {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise InvalidAmount(f"Not a valid amount: {value!r}")
    return quantize(amount)


def try_parse_money(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return parse_money(value)
    except InvalidAmount:
        return None


def parse_quantity(value: Any) -> int:
    """Whole-number quantity; the POS may send 2, "2" or "2.0". Blank means 0."""
    if value is None or value == "":
        return 0
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmount(f"Not a valid quantity: {value!r}") from e
    if not amount.is_finite() or amount < 0 or amount != amount.to_integral_value():
        raise InvalidAmount(f"Not a valid quantity: {value!r}")
    return int(amount)


def format_money(amount: Decimal) -> str:
    return f"{quantize(amount):.2f}"


def display_money(amount: Decimal | str, currency: str) -> str:
    if not isinstance(amount, Decimal):
        amount = try_parse_money(amount) or Decimal("0")
    return f"{currency} {format_money(amount)}"


def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    return quantize(unit_price * quantity)


def apply_discount(amount: Decimal, percent: int) -> Decimal:
    return quantize(amount * (Decimal(100) - Decimal(percent)) / Decimal(100))


def build_line(product_id: str, product_name: str, quantity: int, unit_price: Decimal) -> dict[str, Any]:
    if quantity <= 0:
        raise InvalidAmount("Quantity must be positive")
    return {
        "product_id": product_id,
        "product_name": product_name,
        "quantity": quantity,
        "unit_price": format_money(unit_price),
        "line_total": format_money(line_total(quantity, unit_price)),
    }


def recompute_totals(order: dict[str, Any], fallback_prices: dict[str, Decimal] | None = None) -> dict[str, Any]:
    """Recompute every line total and the order total in place.

    A line whose stored unit price is missing or invalid takes the fallback
    price for its product and keeps it. Raises InvalidAmount when neither is
    usable or a quantity is not positive.
    """
    fallback_prices = fallback_prices or {}
    total = Decimal("0")
    for line in order.get("order_lines") or []:
        quantity = parse_quantity(line.get("quantity"))
        if quantity <= 0:
            raise InvalidAmount(f"Quantity must be positive for {line.get('product_id')}")
        price = try_parse_money(line.get("unit_price"))
        if price is None:
            price = fallback_prices.get(str(line.get("product_id")))
            if price is None:
                raise InvalidAmount(f"No valid unit price for {line.get('product_id')}")
        line["quantity"] = quantity
        line["unit_price"] = format_money(price)
        amount = line_total(quantity, price)
        line["line_total"] = format_money(amount)
        total += amount
    order["total_amount"] = format_money(total)
    return order
