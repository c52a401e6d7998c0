"""Unit tests for interactive-id routing and keyword shortcuts."""

import pytest

from whatsbot.core.types import TenantKind
from whatsbot.dialog.rules import POS_ROUTES, ActionMatch, match_text, normalize_text, route_action

pytestmark = pytest.mark.unit


class TestRouteAction:
    """Tests for ordered interactive-id routing."""

    @pytest.mark.parametrize(
        "action_id, expected",
        [
            ("view_products", ActionMatch("view_products")),
            ("initiate_view_products_list", ActionMatch("view_products")),
            ("select_product_p1", ActionMatch("product_detail", "p1")),
            ("buy_product_p2", ActionMatch("buy_product", "p2")),
            ("confirm_order_o-1", ActionMatch("confirm_order", "o-1")),
            ("update_quantity_o1_p1_3", ActionMatch("update_quantity", "o1_p1_3")),
            ("owner_confirm_payment_o1", ActionMatch("owner_confirm_payment", "o1")),
            ("accept_offer_p1_20", ActionMatch("accept_offer", "p1_20")),
        ],
    )
    def test_routes(self, action_id, expected):
        assert route_action(POS_ROUTES, action_id) == expected

    def test_longer_prefix_wins_over_generic_discount(self):
        assert route_action(POS_ROUTES, "offer_discount_6581111111") == ActionMatch("offer_discount", "6581111111")
        assert route_action(POS_ROUTES, "discount_10_6581111111") == ActionMatch("discount_approval", "10_6581111111")

    def test_prefix_without_argument_does_not_match(self):
        assert route_action(POS_ROUTES, "buy_product_") is None

    def test_unknown_and_empty_ids(self):
        assert route_action(POS_ROUTES, "something_else") is None
        assert route_action(POS_ROUTES, None) is None
        assert route_action(POS_ROUTES, "") is None

    def test_exact_route_does_not_match_with_suffix(self):
        assert route_action(POS_ROUTES, "todays_offer_extra") is None


class TestMatchText:
    """Tests for free-text keyword shortcuts."""

    def test_normalize_text(self):
        assert normalize_text("  Show   PRODUCTS!! ") == "show products"

    @pytest.mark.parametrize("text", ["products", "Menu", "catalog.", "show products"])
    def test_product_keywords(self, text):
        assert match_text(TenantKind.POS, text) == ActionMatch("view_products")

    def test_product_keyword_must_be_whole_message(self):
        assert match_text(TenantKind.POS, "do you have a menu for kids") is None

    @pytest.mark.parametrize("text", ["This is too expensive", "any discount?", "can’t afford it", "cheaper please"])
    def test_price_sensitive(self, text):
        assert match_text(TenantKind.POS, text) == ActionMatch("price_sensitive")

    def test_price_sensitivity_wins_over_buy(self):
        assert match_text(TenantKind.POS, "buy kopi if cheaper").action == "price_sensitive"

    def test_buy_by_name(self):
        assert match_text(TenantKind.POS, "Buy Kaya Toast") == ActionMatch("buy_by_name", "kaya toast")
        assert match_text(TenantKind.POS, "product kopi o") == ActionMatch("buy_by_name", "kopi o")

    def test_order_history(self):
        assert match_text(TenantKind.POS, "My orders") == ActionMatch("order_history")

    def test_other_tenant_kinds_have_no_shortcuts(self):
        assert match_text(TenantKind.DEALS, "products") is None
        assert match_text(TenantKind.VIRAL_AGENCY, "too expensive") is None

    def test_free_text_falls_through(self):
        assert match_text(TenantKind.POS, "what time do you open?") is None
        assert match_text(TenantKind.POS, "   ") is None
