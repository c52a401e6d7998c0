"""
Scenario tests for the point-of-sale tenant.

Each test drives one or more conversations through the dialog engine with an
in-memory POS service and checks the planned replies, the state machine and
the calls made against the POS backend.
"""

from datetime import datetime, timezone

import pytest

from fakes import (
    CUSTOMER,
    OWNER,
    Conversation,
    bodies,
    button_ids,
    button_in,
    image_in,
    items_of,
    make_engine,
    make_tenant,
    row_ids,
    text_in,
)
from whatsbot.core.errors import PermanentExternalError, TransientExternalError
from whatsbot.dialog.engine import INVALID_AMOUNT
from whatsbot.dialog.pos import CLARIFICATION
from whatsbot.dialog.pos_messages import GENERIC_FAILURE, MEDIA_NOT_SUPPORTED, NOT_AUTHORIZED, order_number
from whatsbot.services.pos_client import Product
from whatsbot.storage.models import SystemNote, UserTurn
from whatsbot.transport.models import Contacts, Document, InteractiveButtons, InteractiveList, Reaction, Text

pytestmark = pytest.mark.unit


@pytest.fixture
def engine(services):
    return make_engine(services)


@pytest.fixture
def customer(engine, pos_tenant):
    return Conversation(engine, pos_tenant)


@pytest.fixture
def owner(engine, pos_tenant):
    return Conversation(engine, pos_tenant, user=OWNER)


async def place_kopi_order(customer) -> str:
    await customer.send(button_in("buy_product_p1"))
    return customer.scratch["pending_order_id"]


class TestBrowsing:
    """Tests for catalog browsing."""

    async def test_products_keyword_shows_list(self, customer):
        result = await customer.send(text_in("Products"))
        [listing] = items_of(result.plan, InteractiveList)
        assert row_ids(listing) == ["select_product_p1", "select_product_p2", "select_product_p3"]
        assert listing.sections[0].rows[0].description == "SGD 1.75"
        assert customer.state == "browsing"
        assert result.llm_request is None

    async def test_select_product_shows_card(self, customer):
        result = await customer.send(button_in("select_product_p1"))
        [card] = items_of(result.plan, InteractiveButtons)
        assert button_ids(card) == ["buy_product_p1", "initiate_view_products_list", "ask_about_product_p1"]
        assert "Black coffee with sugar" in card.body
        assert "Price: SGD 1.75" in card.body
        assert customer.scratch["last_product_id"] == "p1"
        assert customer.state == "viewing_product"

    async def test_product_card_uses_image_header(self, customer):
        result = await customer.send(button_in("view_product_p3"))
        [card] = items_of(result.plan, InteractiveButtons)
        assert card.header_image == "https://img.test/set.jpg"
        assert "Currently out of stock" in card.body

    async def test_unknown_product(self, customer):
        result = await customer.send(button_in("select_product_nope"))
        assert bodies(result.plan) == ["Sorry, I couldn't find that product. Say 'products' to see what we have."]

    async def test_empty_catalog(self, customer, pos):
        pos.products = {}
        result = await customer.send(text_in("menu"))
        assert "don't have any products" in bodies(result.plan)[0]
        assert customer.state == "start"

    async def test_inbound_is_recorded_as_user_turn(self, customer):
        await customer.send(button_in("select_product_p1"))
        assert customer.record.turns[0] == UserTurn("[Selected: select_product_p1]", raw_type="interactive")
        assert customer.record.last_message_type == "interactive"


class TestOrdering:
    """Tests for placing, changing and cancelling orders."""

    async def test_buy_creates_order_and_reserves_stock(self, customer, pos):
        result = await customer.send(button_in("buy_product_p1"))
        order_id = customer.scratch["pending_order_id"]

        assert pos.orders[order_id]["status"] == "PENDING_CONFIRMATION"
        assert pos.orders[order_id]["total_amount"] == "1.75"
        assert pos.stock_changes == [("p1", -1)]
        assert customer.state == "ordering"

        [summary] = items_of(result.plan, InteractiveButtons)
        assert button_ids(summary) == [f"confirm_order_{order_id}", f"change_qty_{order_id}_p1", f"cancel_order_{order_id}"]
        assert "1 x Kopi O @ SGD 1.75 = SGD 1.75" in summary.body
        assert "Total: SGD 1.75" in summary.body
        assert summary.footer == f"Order ID: {order_number(order_id)}"

    async def test_out_of_stock_product_is_refused(self, customer, pos):
        result = await customer.send(button_in("buy_product_p3"))
        assert bodies(result.plan) == ["Sorry, Kaya Toast Set is currently out of stock."]
        assert pos.orders == {}

    async def test_change_quantity_offers_one_to_five(self, customer):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"change_qty_{order_id}_p1"))
        [choices] = items_of(result.plan, InteractiveList)
        assert row_ids(choices) == [f"update_quantity_{order_id}_p1_{n}" for n in range(1, 6)]
        assert "How many Kopi O" in choices.body

    async def test_update_quantity_recomputes_totals(self, customer, pos):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"update_quantity_{order_id}_p1_2"))

        [summary] = items_of(result.plan, InteractiveButtons)
        assert summary.body.startswith("Your order has been updated:")
        assert "Total: SGD 3.50" in summary.body
        assert pos.orders[order_id]["total_amount"] == "3.50"
        assert pos.orders[order_id]["order_lines"][0]["line_total"] == "3.50"
        assert pos.stock_changes == [("p1", -1), ("p1", -1)]

    async def test_quantity_out_of_range(self, customer):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"update_quantity_{order_id}_p1_9"))
        assert bodies(result.plan) == ["Please choose a quantity between 1 and 5."]

    async def test_confirmed_order_cannot_change_quantity(self, customer):
        order_id = await place_kopi_order(customer)
        await customer.send(button_in(f"confirm_order_{order_id}"))
        result = await customer.send(button_in(f"update_quantity_{order_id}_p1_3"))
        assert "can no longer be changed" in bodies(result.plan)[0]

    async def test_cancel_restores_stock(self, customer, pos):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"cancel_order_{order_id}"))

        assert pos.orders[order_id]["status"] == "CANCELLED"
        assert pos.stock_changes == [("p1", -1), ("p1", 1)]
        assert "has been cancelled" in bodies(result.plan)[0]
        assert "pending_order_id" not in customer.scratch
        assert customer.state == "terminal"

    async def test_paid_order_cannot_be_cancelled(self, customer, pos):
        order_id = await place_kopi_order(customer)
        pos.orders[order_id]["status"] = "PAYMENT_RECEIVED"
        result = await customer.send(button_in(f"cancel_order_{order_id}"))
        assert "cannot be cancelled because it is PAYMENT_RECEIVED" in bodies(result.plan)[0]
        assert pos.stock_changes == [("p1", -1)]

    async def test_failed_stock_reservation(self, customer, pos):
        pos.failing_stock.add("p1")
        result = await customer.send(button_in("buy_product_p1"))

        [order] = pos.orders.values()
        assert order["order_id"] in [o for o, s in pos.status_updates if s == "STOCK_UPDATE_FAILED"]
        assert pos.orders[order["order_id"]]["status"] == "STOCK_UPDATE_FAILED"
        assert items_of(result.plan, InteractiveButtons) == []
        assert "couldn't reserve stock for: Kopi O" in bodies(result.plan)[0]
        assert any(isinstance(t, SystemNote) for t in customer.record.turns)
        assert "pending_order_id" not in customer.scratch

    async def test_other_customers_cannot_touch_an_order(self, engine, pos_tenant, customer):
        order_id = await place_kopi_order(customer)
        stranger = Conversation(engine, pos_tenant, user="6582222222")
        result = await stranger.send(button_in(f"confirm_order_{order_id}"))
        assert bodies(result.plan) == ["Sorry, I couldn't find that order."]

    async def test_order_detail(self, customer):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"view_order_detail_{order_id}"))
        [text] = bodies(result.plan)
        assert "Status: PENDING_CONFIRMATION" in text
        assert "- 1 x Kopi O: SGD 1.75" in text

    async def test_contact_support_shares_store_contact(self, customer):
        result = await customer.send(button_in("contact_support"))
        assert bodies(result.plan) == ["You can reach Kopi Corner directly at +6590000000."]
        [card] = items_of(result.plan, Contacts)
        [contact] = card.contacts
        assert contact["name"]["formatted_name"] == "Kopi Corner"
        assert contact["phones"] == [{"phone": "+6590000000", "type": "WORK", "wa_id": "6590000000"}]


class TestBuyByName:
    """Tests for 'buy <name>' shortcuts."""

    async def test_exact_name_starts_purchase(self, customer, pos):
        result = await customer.send(text_in("buy Kaya Toast"))
        order_id = customer.scratch["pending_order_id"]
        assert pos.orders[order_id]["order_lines"][0]["product_id"] == "p2"
        assert "Total: SGD 2.50" in items_of(result.plan, InteractiveButtons)[0].body

    async def test_ambiguous_name_lists_matches(self, customer, pos):
        result = await customer.send(text_in("buy kaya"))
        [text] = bodies(result.plan)
        assert text.startswith("I found a few products matching that:\n- Kaya Toast\n- Kaya Toast Set")
        assert pos.orders == {}

    async def test_unknown_name_falls_through_to_llm(self, customer):
        result = await customer.send(text_in("buy durian"))
        assert len(result.plan) == 0
        assert result.llm_request is not None
        assert "Kopi Corner" in result.llm_request.system_prompt
        assert "Kopi O (ID: p1, Price: SGD 1.75, Stock: 10)" in result.llm_request.system_prompt


class TestPayment:
    """Tests for the payment round trip between customer and owner."""

    async def test_confirm_order_sends_payment_instructions(self, customer, pos):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"confirm_order_{order_id}"))

        [instructions] = items_of(result.plan, InteractiveButtons)
        assert button_ids(instructions) == [f"payment_done_{order_id}"]
        assert "Please pay SGD 1.75 via PayNow to +65 9000 0000" in instructions.body
        assert pos.orders[order_id]["status"] == "AWAITING_PAYMENT"

    async def test_payment_done_asks_owner_to_verify(self, customer):
        order_id = await place_kopi_order(customer)
        await customer.send(button_in(f"confirm_order_{order_id}"))
        result = await customer.send(button_in(f"payment_done_{order_id}"))

        [to_owner] = [m for m in result.plan if m.recipient == OWNER]
        assert button_ids(to_owner.item) == [f"owner_confirm_payment_{order_id}", f"owner_reject_payment_{order_id}"]
        assert f"Customer +{CUSTOMER} reports payment" in to_owner.item.body
        [to_customer] = [m for m in result.plan if m.recipient is None]
        assert "asked the store to verify your payment" in to_customer.item.body
        assert customer.state == "awaiting_owner_payment"

    async def test_payment_done_without_owner_configured(self, services):
        tenant = make_tenant(owner_number="")
        customer = Conversation(make_engine(services), tenant)
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"payment_done_{order_id}"))
        assert bodies(result.plan) == [
            "We couldn't reach the store to verify your payment. Please contact the store directly."
        ]

    async def test_owner_confirms_payment_and_invoice_is_sent(self, customer, owner):
        order_id = await place_kopi_order(customer)
        number = order_number(order_id)
        result = await owner.send(button_in(f"owner_confirm_payment_{order_id}", sender=OWNER))

        to_customer = [m.item for m in result.plan if m.recipient == CUSTOMER]
        assert isinstance(to_customer[0], Text)
        assert f"order #{number} is confirmed" in to_customer[0].body
        assert to_customer[1] == Document(
            link=f"https://invoices.test/{order_id}.pdf",
            filename=f"Invoice-{number}.pdf",
            caption=f"Invoice for order #{number}",
        )
        [greeting_prompt] = [m.item for m in result.plan if m.recipient is None]
        assert button_ids(greeting_prompt) == [f"owner_initiate_reply_{order_id}"]
        assert f"Customer: +{CUSTOMER}" in greeting_prompt.body
        assert owner.state == "owner_reviewing_payment"

    async def test_owner_confirmation_rejected_by_backend(self, customer, owner, pos):
        order_id = await place_kopi_order(customer)
        pos.errors["confirm_payment"] = PermanentExternalError("rejected", detail="Order already paid", status=409)
        result = await owner.send(button_in(f"owner_confirm_payment_{order_id}"))
        assert bodies(result.plan) == [
            f"Could not confirm payment for order #{order_number(order_id)} ({order_id}): Order already paid"
        ]

    async def test_owner_rejects_payment(self, customer, owner, pos):
        order_id = await place_kopi_order(customer)
        result = await owner.send(button_in(f"owner_reject_payment_{order_id}"))

        assert (order_id, "PAYMENT_REJECTED") in pos.status_updates
        [to_customer] = [m.item for m in result.plan if m.recipient == CUSTOMER]
        assert button_ids(to_customer) == [f"payment_done_{order_id}"]
        assert "marked as rejected" in bodies(result.plan)[-1]

    async def test_customers_cannot_use_owner_actions(self, customer, pos):
        order_id = await place_kopi_order(customer)
        result = await customer.send(button_in(f"owner_confirm_payment_{order_id}"))
        assert bodies(result.plan) == [NOT_AUTHORIZED]
        assert pos.orders[order_id]["status"] == "PENDING_CONFIRMATION"


class TestOwnerRelay:
    """Tests for owner greetings and free-text relay to customers."""

    async def test_greeting_includes_store_details(self, customer, owner):
        order_id = await place_kopi_order(customer)
        result = await owner.send(button_in(f"owner_initiate_reply_{order_id}"))

        [greeting] = [m.item for m in result.plan if m.recipient == CUSTOMER]
        assert "Address: 1 Tanjong Pagar Road" in greeting.body
        assert "Opening hours: 7am to 3pm daily" in greeting.body
        [prompt] = items_of(result.plan, InteractiveButtons)
        assert button_ids(prompt) == [f"customer_response_{order_id}"]

    async def test_owner_message_is_relayed_once(self, customer, owner):
        order_id = await place_kopi_order(customer)
        await owner.send(button_in(f"customer_response_{order_id}"))
        assert owner.state == "awaiting_customer_message"

        reply = text_in("Your kopi is ready for pickup", sender=OWNER)
        result = await owner.send(reply)
        [relayed] = [m.item for m in result.plan if m.recipient == CUSTOMER]
        assert relayed.body == "Message from the store (Kopi Corner):\n\nYour kopi is ready for pickup"
        assert items_of(result.plan, Reaction) == [Reaction(message_id=reply.message_id, emoji="✅")]
        assert owner.state == "start"

        follow_up = await owner.send(text_in("hello", sender=OWNER))
        [dashboard] = items_of(follow_up.plan, InteractiveButtons)
        assert button_ids(dashboard) == ["view_orders", "view_customers", "view_stats"]

    async def test_owner_text_shows_dashboard(self, owner):
        result = await owner.send(text_in("hi"))
        assert result.llm_request is None
        [dashboard] = items_of(result.plan, InteractiveButtons)
        assert dashboard.header_text == "Store Owner Dashboard"

    async def test_view_orders(self, owner, pos):
        pos.history = [{"order_id": "abcdef12-3456", "status": "PAYMENT_RECEIVED", "total_amount": "3.50",
                        "customer_id": CUSTOMER}]
        result = await owner.send(button_in("view_orders"))
        assert bodies(result.plan) == [f"*Recent Orders*\n#ABCDEF12 | PAYMENT_RECEIVED | SGD 3.50 | +{CUSTOMER}"]

    async def test_view_stats_counts_today(self, owner, pos):
        today = datetime.now(timezone.utc).date().isoformat()
        pos.history = [
            {"order_id": "o1", "status": "PAYMENT_RECEIVED", "total_amount": "3.50", "created_at": f"{today}T09:00:00"},
            {"order_id": "o2", "status": "CANCELLED", "total_amount": "1.75", "created_at": f"{today}T10:00:00"},
            {"order_id": "o3", "status": "PAYMENT_RECEIVED", "total_amount": "9.00", "created_at": "2001-01-01"},
        ]
        result = await owner.send(button_in("view_stats"))
        [text] = bodies(result.plan)
        assert "Orders: 2" in text
        assert "Revenue: SGD 3.50" in text
        assert "CANCELLED: 1" in text


class TestDiscountsAndOffers:
    """Tests for price-sensitivity escalation and today's offer."""

    async def test_price_sensitive_text_escalates_to_owner(self, customer):
        result = await customer.send(text_in("hmm that's too expensive"))
        [to_owner] = [m.item for m in result.plan if m.recipient == OWNER]
        assert button_ids(to_owner) == [f"discount_{pct}_{CUSTOMER}" for pct in (10, 25, 50)]
        assert customer.scratch["discount_requested"] is True
        assert result.llm_request is None

    async def test_owner_approves_discount(self, owner):
        result = await owner.send(button_in(f"discount_25_{CUSTOMER}"))
        [to_customer] = [m.item for m in result.plan if m.recipient == CUSTOMER]
        assert "approved a 25% discount" in to_customer.body
        assert owner.scratch["last_discount"] == {"customer": CUSTOMER, "percent": 25}

    async def test_invalid_discount_percentage(self, owner):
        result = await owner.send(button_in(f"discount_15_{CUSTOMER}"))
        assert bodies(result.plan) == ["That discount option is not valid."]

    async def test_todays_offer_full_round_trip(self, customer, owner, pos):
        result = await customer.send(button_in("todays_offer"))
        [choices] = items_of(result.plan, InteractiveButtons)
        assert button_ids(choices) == ["offer_product_p1", "offer_product_p2"]

        result = await customer.send(button_in("offer_product_p1"))
        [request] = [m.item for m in result.plan if m.recipient == OWNER]
        assert button_ids(request) == [f"offer_discount_{pct}_{CUSTOMER}_p1" for pct in (10, 20, 30)]
        assert customer.state == "viewing_product"

        result = await owner.send(button_in(f"offer_discount_20_{CUSTOMER}_p1"))
        [card] = [m.item for m in result.plan if m.recipient == CUSTOMER]
        assert button_ids(card) == ["accept_offer_p1_20"]
        assert "Was SGD 1.75, now SGD 1.40." in card.body

        result = await customer.send(button_in("accept_offer_p1_20"))
        [summary] = items_of(result.plan, InteractiveButtons)
        assert "Total: SGD 1.40" in summary.body
        assert pos.orders[customer.scratch["pending_order_id"]]["order_lines"][0]["unit_price"] == "1.40"

    async def test_stale_offer_percentage_is_refused(self, customer, pos):
        result = await customer.send(button_in("accept_offer_p1_90"))
        assert bodies(result.plan) == ["Sorry, that offer is no longer valid."]
        assert pos.orders == {}

    async def test_offer_disabled_for_tenant(self, services):
        customer = Conversation(make_engine(services), make_tenant(todays_offer_enabled=False))
        result = await customer.send(button_in("todays_offer"))
        assert bodies(result.plan) == ["There's no special offer today. Check back soon!"]


class TestFallbacks:
    """Tests for unsupported input and engine-level error conversion."""

    async def test_media_is_not_supported(self, customer):
        result = await customer.send(image_in("media-1"))
        assert bodies(result.plan) == [MEDIA_NOT_SUPPORTED]

    async def test_unknown_button_asks_for_clarification(self, customer):
        result = await customer.send(button_in("mystery_button"))
        assert bodies(result.plan) == [CLARIFICATION]

    async def test_free_text_goes_to_llm(self, customer):
        result = await customer.send(text_in("what time do you open?"))
        assert len(result.plan) == 0
        assert result.llm_request.model == "gpt-4o-mini"
        assert result.llm_request.temperature == 0.7

    async def test_transient_failure_becomes_generic_message(self, customer, pos):
        pos.errors["get_store_products"] = TransientExternalError("pos down")
        result = await customer.send(text_in("products"))
        assert bodies(result.plan) == [GENERIC_FAILURE]
        assert customer.state == "start"
        assert customer.record.turns[-1].text.startswith("Action failed: TransientExternalError")

    async def test_permanent_failure_shows_backend_detail(self, customer, pos):
        pos.errors["create_order"] = PermanentExternalError("rejected", detail="Store is closed", status=422)
        await customer.send(button_in("select_product_p1"))
        result = await customer.send(button_in("buy_product_p1"))
        assert bodies(result.plan) == ["Sorry, we couldn't complete that: Store is closed"]
        assert customer.state == "viewing_product"
        assert "pending_order_id" not in customer.scratch

    async def test_invalid_amount_is_reported(self, customer, pos):
        pos.products["p9"] = Product(id="p9", name="Mystery", price="n/a")
        pos.orders["o9"] = {
            "order_id": "o9", "customer_id": CUSTOMER, "status": "PENDING_CONFIRMATION",
            "order_lines": [{"product_id": "p9", "product_name": "Mystery", "quantity": 1, "unit_price": "bad"}],
        }
        result = await customer.send(button_in("update_quantity_o9_p9_2"))
        assert bodies(result.plan) == [INVALID_AMOUNT]

    async def test_whole_number_quantity_sent_as_decimal_string(self, customer, pos):
        order_id = await place_kopi_order(customer)
        pos.orders[order_id]["order_lines"][0]["quantity"] = "1.0"

        result = await customer.send(button_in(f"update_quantity_{order_id}_p1_2"))

        assert items_of(result.plan, InteractiveButtons)[0].body.startswith("Your order has been updated:")
        assert pos.orders[order_id]["order_lines"][0]["quantity"] == 2
        assert pos.orders[order_id]["total_amount"] == "3.50"
        assert pos.stock_changes == [("p1", -1), ("p1", -1)]

    async def test_unparseable_quantity_is_reported(self, customer, pos):
        order_id = await place_kopi_order(customer)
        state = customer.state
        pos.orders[order_id]["order_lines"][0]["quantity"] = "lots"

        result = await customer.send(button_in(f"update_quantity_{order_id}_p1_2"))

        assert bodies(result.plan) == [INVALID_AMOUNT]
        assert customer.state == state
        assert pos.stock_changes == [("p1", -1)]

    async def test_unexpected_error_becomes_generic_message(self, customer, pos):
        pos.errors["get_store_products"] = RuntimeError("unexpected payload")
        result = await customer.send(text_in("products"))
        assert bodies(result.plan) == [GENERIC_FAILURE]
        assert result.llm_request is None
        assert customer.state == "start"
        assert customer.record.turns[-1] == SystemNote("Action failed: RuntimeError")

    async def test_unknown_state_is_reset(self, customer):
        customer.record.state = "legacy_state"
        await customer.send(text_in("products"))
        assert customer.state == "browsing"


class TestLlmCompletion:
    """Tests for wrapping tool-loop output."""

    def test_customer_reply_gets_todays_offer_button(self, engine, pos_tenant, customer):
        plan = engine.complete_llm_turn(pos_tenant, customer.record, "We open at 7am.")
        [message] = plan.messages
        assert message.item.body == "We open at 7am."
        assert button_ids(message.item) == ["todays_offer"]

    def test_owner_reply_is_plain_text(self, engine, pos_tenant, owner):
        plan = engine.complete_llm_turn(pos_tenant, owner.record, "Done.")
        assert plan.messages[0].item == Text("Done.")

    def test_failed_turn_gets_generic_message_and_note(self, engine, customer):
        plan = engine.fail_llm_turn(customer.record, TimeoutError("slow"))
        assert plan.messages[0].item == Text(GENERIC_FAILURE)
        assert customer.record.turns[-1] == SystemNote("LLM turn failed: TimeoutError")
