"""Per-tenant conversation state machines."""

from __future__ import annotations

from enum import StrEnum

from whatsbot.core.types import TenantKind


class PosState(StrEnum):
    START = "start"
    BROWSING = "browsing"
    VIEWING_PRODUCT = "viewing_product"
    ORDERING = "ordering"
    AWAITING_OWNER_PAYMENT = "awaiting_owner_payment"
    OWNER_REVIEWING_PAYMENT = "owner_reviewing_payment"
    AWAITING_CUSTOMER_MESSAGE = "awaiting_customer_message"
    TERMINAL = "terminal"


class DealsState(StrEnum):
    START = "start"
    ASK_LOCATION = "ask_location"
    LOCATION_RECEIVED = "location_received"
    ASK_CATEGORY = "ask_category"
    SEARCHING_DEALS = "searching_deals"
    SHOWING_DEALS = "showing_deals"
    DEAL_INTERACTION = "deal_interaction"
    ALERT_SETUP = "alert_setup"
    END = "end"


class AgencyState(StrEnum):
    WELCOME = "welcome"
    COLLECT_RESTAURANT_NAME = "collect_restaurant_name"
    CONFIRM_RESTAURANT = "confirm_restaurant"
    COLLECT_DESCRIPTION = "collect_description"
    COLLECT_PRICING = "collect_pricing"
    COLLECT_VALIDITY = "collect_validity"
    COLLECT_PHOTO = "collect_photo"
    COLLECT_AUDIENCE = "collect_audience"
    COLLECT_CONTACT = "collect_contact"
    COLLECT_SPECIAL_NOTES = "collect_special_notes"
    GENERATE_CONTENT = "generate_content"
    AWAIT_APPROVAL = "await_approval"
    SUBMITTED = "submitted"


_P = PosState
_POS_CUSTOMER = {_P.START, _P.BROWSING, _P.VIEWING_PRODUCT, _P.ORDERING, _P.AWAITING_OWNER_PAYMENT, _P.TERMINAL}
_POS_OWNER = {_P.OWNER_REVIEWING_PAYMENT, _P.AWAITING_CUSTOMER_MESSAGE}

# Owner states are left only through Start.
POS_TRANSITIONS: dict[str, set[str]] = {
    **{state: _POS_CUSTOMER | _POS_OWNER for state in _POS_CUSTOMER},
    **{state: {_P.START} | _POS_OWNER for state in _POS_OWNER},
}

_D = DealsState
DEALS_TRANSITIONS: dict[str, set[str]] = {
    _D.START: {_D.ASK_LOCATION, _D.LOCATION_RECEIVED},
    _D.ASK_LOCATION: {_D.START, _D.LOCATION_RECEIVED},
    _D.LOCATION_RECEIVED: {_D.START, _D.ASK_CATEGORY},
    _D.ASK_CATEGORY: {_D.START, _D.ASK_LOCATION, _D.LOCATION_RECEIVED, _D.SEARCHING_DEALS},
    _D.SEARCHING_DEALS: {_D.SHOWING_DEALS, _D.ASK_CATEGORY},
    _D.SHOWING_DEALS: {_D.START, _D.LOCATION_RECEIVED, _D.ASK_CATEGORY, _D.SEARCHING_DEALS,
                       _D.DEAL_INTERACTION},
    _D.DEAL_INTERACTION: {_D.START, _D.LOCATION_RECEIVED, _D.ASK_CATEGORY, _D.SEARCHING_DEALS,
                          _D.SHOWING_DEALS, _D.ALERT_SETUP},
    _D.ALERT_SETUP: {_D.START, _D.END, _D.SHOWING_DEALS, _D.LOCATION_RECEIVED},
    _D.END: {_D.START, _D.ASK_LOCATION, _D.LOCATION_RECEIVED},
}

_A = AgencyState
AGENCY_TRANSITIONS: dict[str, set[str]] = {
    _A.WELCOME: {_A.COLLECT_RESTAURANT_NAME},
    _A.COLLECT_RESTAURANT_NAME: {_A.WELCOME, _A.CONFIRM_RESTAURANT},
    _A.CONFIRM_RESTAURANT: {_A.WELCOME, _A.COLLECT_RESTAURANT_NAME, _A.COLLECT_DESCRIPTION},
    _A.COLLECT_DESCRIPTION: {_A.WELCOME, _A.COLLECT_PRICING},
    _A.COLLECT_PRICING: {_A.WELCOME, _A.COLLECT_VALIDITY},
    _A.COLLECT_VALIDITY: {_A.WELCOME, _A.COLLECT_PHOTO},
    _A.COLLECT_PHOTO: {_A.WELCOME, _A.COLLECT_AUDIENCE},
    _A.COLLECT_AUDIENCE: {_A.WELCOME, _A.COLLECT_CONTACT},
    _A.COLLECT_CONTACT: {_A.WELCOME, _A.COLLECT_SPECIAL_NOTES},
    _A.COLLECT_SPECIAL_NOTES: {_A.WELCOME, _A.GENERATE_CONTENT},
    _A.GENERATE_CONTENT: {_A.AWAIT_APPROVAL},
    _A.AWAIT_APPROVAL: {_A.WELCOME, _A.GENERATE_CONTENT, _A.COLLECT_DESCRIPTION, _A.SUBMITTED},
    _A.SUBMITTED: {_A.WELCOME, _A.COLLECT_RESTAURANT_NAME},
}

TRANSITIONS: dict[TenantKind, dict[str, set[str]]] = {
    TenantKind.POS: POS_TRANSITIONS,
    TenantKind.DEALS: DEALS_TRANSITIONS,
    TenantKind.VIRAL_AGENCY: AGENCY_TRANSITIONS,
}

INITIAL_STATES: dict[TenantKind, str] = {
    TenantKind.POS: PosState.START,
    TenantKind.DEALS: DealsState.START,
    TenantKind.VIRAL_AGENCY: AgencyState.WELCOME,
}


def initial_state(kind: TenantKind) -> str:
    return INITIAL_STATES[kind].value


def is_legal(kind: TenantKind, current: str, target: str) -> bool:
    """Staying in the same state is always legal."""
    if current == target:
        return True
    return target in TRANSITIONS[kind].get(current, set())


def known_state(kind: TenantKind, state: str) -> bool:
    return state in TRANSITIONS[kind]
