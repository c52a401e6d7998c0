"""Ordered routing rules: interactive ids and keyword shortcuts to named actions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from whatsbot.core.types import TenantKind


@dataclass(frozen=True, slots=True)
class ActionMatch:
    action: str
    arg: str = ""


@dataclass(frozen=True, slots=True)
class Route:
    pattern: str
    action: str
    prefix: bool = True

    def match(self, action_id: str) -> ActionMatch | None:
        if self.prefix:
            if action_id.startswith(self.pattern) and len(action_id) > len(self.pattern):
                return ActionMatch(self.action, action_id[len(self.pattern):])
            return None
        if action_id == self.pattern:
            return ActionMatch(self.action)
        return None


POS_ROUTES: tuple[Route, ...] = (
    Route("initiate_view_products_list", "view_products", prefix=False),
    Route("view_products", "view_products", prefix=False),
    Route("view_order_history", "order_history", prefix=False),
    Route("todays_offer", "todays_offer", prefix=False),
    Route("contact_support", "contact_support", prefix=False),
    Route("view_orders", "owner_view_orders", prefix=False),
    Route("view_customers", "owner_view_customers", prefix=False),
    Route("view_stats", "owner_view_stats", prefix=False),
    Route("select_product_", "product_detail"),
    Route("view_product_", "product_detail"),
    Route("ask_about_product_", "ask_about_product"),
    Route("buy_product_", "buy_product"),
    Route("confirm_order_", "confirm_order"),
    Route("change_qty_", "change_quantity"),
    Route("update_quantity_", "update_quantity"),
    Route("view_order_detail_", "order_detail"),
    Route("cancel_order_", "cancel_order"),
    Route("payment_done_", "payment_done"),
    Route("owner_confirm_payment_", "owner_confirm_payment"),
    Route("owner_reject_payment_", "owner_reject_payment"),
    Route("owner_initiate_reply_", "owner_initiate_reply"),
    Route("customer_response_", "customer_response"),
    Route("offer_discount_", "offer_discount"),
    Route("offer_product_", "offer_product"),
    Route("accept_offer_", "accept_offer"),
    Route("discount_", "discount_approval"),
)


def route_action(routes: tuple[Route, ...], action_id: str | None) -> ActionMatch | None:
    if not action_id:
        return None
    for route in routes:
        matched = route.match(action_id)
        if matched is not None:
            return matched
    return None


# --- Keyword shortcuts ---------------------------------------------------------

PRODUCT_KEYWORDS = frozenset({"products", "menu", "catalog", "items", "show products"})
ORDER_HISTORY_KEYWORDS = frozenset({"order history", "my orders", "past orders"})
PRICE_SENSITIVE_PHRASES = (
    "too expensive", "price too high", "lower price", "can't afford", "not affordable",
    "not worth", "overpriced", "expensive", "costly", "too much", "discount", "cheaper",
)
BUY_PREFIXES = ("buy ", "product ")

_TRAILING = re.compile(r"[\s.!?]+$")


def normalize_text(text: str) -> str:
    return _TRAILING.sub("", " ".join(text.lower().split()))


def _price_sensitive(text: str) -> str | None:
    lowered = text.replace("’", "'")
    return "" if any(phrase in lowered for phrase in PRICE_SENSITIVE_PHRASES) else None


def _exact(words: frozenset[str]) -> Callable[[str], str | None]:
    def matcher(text: str) -> str | None:
        return "" if text in words else None
    return matcher


def _buy_by_name(text: str) -> str | None:
    for prefix in BUY_PREFIXES:
        if text.startswith(prefix):
            name = text[len(prefix):].strip()
            return name or None
    return None


@dataclass(frozen=True, slots=True)
class KeywordRule:
    name: str
    kinds: frozenset[TenantKind]
    matcher: Callable[[str], str | None]
    action: str


_POS = frozenset({TenantKind.POS})

TEXT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("price_sensitive", _POS, _price_sensitive, "price_sensitive"),
    KeywordRule("products", _POS, _exact(PRODUCT_KEYWORDS), "view_products"),
    KeywordRule("buy_by_name", _POS, _buy_by_name, "buy_by_name"),
    KeywordRule("order_history", _POS, _exact(ORDER_HISTORY_KEYWORDS), "order_history"),
)


def match_text(kind: TenantKind, text: str) -> ActionMatch | None:
    """First keyword rule that applies to this tenant kind and text, or None for the LLM."""
    normalized = normalize_text(text)
    if not normalized:
        return None
    for rule in TEXT_RULES:
        if kind not in rule.kinds:
            continue
        arg = rule.matcher(normalized)
        if arg is not None:
            return ActionMatch(rule.action, arg)
    return None
