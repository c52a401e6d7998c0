"""
Unit tests for WhatsApp webhook ingress.

Covers the subscription handshake, HMAC signature checks and envelope
normalization into NormalizedInbound events.
"""

import json

import pytest

from whatsbot.core.errors import InvalidSignature, MalformedPayload, UnauthorizedVerification
from whatsbot.core.types import InboundKind
from whatsbot.transport.whatsapp import (
    compute_signature,
    decode_body,
    extract_phone_number_id,
    parse_envelope,
    validate_and_parse,
    verify_handshake,
    verify_signature,
)

pytestmark = pytest.mark.unit


def envelope(*messages, phone_id="PHONE1", statuses=None):
    value = {"messaging_product": "whatsapp", "metadata": {"phone_number_id": phone_id}}
    if messages:
        value["messages"] = list(messages)
    if statuses:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA1", "changes": [{"field": "messages", "value": value}]}],
    }


def text_message(body="hello", sender="6581111111", message_id="wamid.1"):
    return {"from": sender, "id": message_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}}


class TestHandshake:
    """Tests for GET /webhook verification."""

    def test_returns_challenge_for_accepted_token(self):
        assert verify_handshake("subscribe", "12345", "tok", ["other", "tok"]) == "12345"

    def test_rejects_unknown_token(self):
        with pytest.raises(UnauthorizedVerification):
            verify_handshake("subscribe", "12345", "nope", ["tok"])

    def test_rejects_wrong_mode(self):
        with pytest.raises(UnauthorizedVerification):
            verify_handshake("unsubscribe", "12345", "tok", ["tok"])

    def test_empty_accepted_tokens_never_match(self):
        with pytest.raises(UnauthorizedVerification):
            verify_handshake("subscribe", "12345", "", ["", "tok"])

    def test_missing_challenge_is_rejected(self):
        with pytest.raises(UnauthorizedVerification):
            verify_handshake("subscribe", None, "tok", ["tok"])


class TestSignature:
    """Tests for X-Hub-Signature-256 validation."""

    def test_valid_signature_passes(self):
        body = b'{"object":"whatsapp_business_account"}'
        verify_signature(body, compute_signature(body, "secret"), "secret")

    def test_signature_is_over_exact_bytes(self):
        body = b'{"a": 1}'
        reformatted = b'{"a":1}'
        with pytest.raises(InvalidSignature):
            verify_signature(reformatted, compute_signature(body, "secret"), "secret")

    def test_wrong_secret_fails(self):
        body = b"{}"
        with pytest.raises(InvalidSignature):
            verify_signature(body, compute_signature(body, "other"), "secret")

    def test_missing_header_fails(self):
        with pytest.raises(InvalidSignature):
            verify_signature(b"{}", None, "secret")

    def test_tenant_without_secret_fails(self):
        with pytest.raises(InvalidSignature):
            verify_signature(b"{}", "sha256=abc", "")

    def test_bypass_skips_check(self):
        verify_signature(b"{}", None, "", bypass=True)

    def test_signature_has_sha256_prefix(self):
        assert compute_signature(b"{}", "secret").startswith("sha256=")

    def test_validate_and_parse_checks_signature_before_parsing(self):
        body = json.dumps(envelope(text_message())).encode()
        with pytest.raises(InvalidSignature):
            validate_and_parse(body, "sha256=deadbeef", "secret")

    def test_validate_and_parse_returns_events(self):
        body = json.dumps(envelope(text_message("hi"))).encode()
        events = validate_and_parse(body, compute_signature(body, "secret"), "secret")
        assert [e.text for e in events] == ["hi"]


class TestDecodeAndPhoneId:
    """Tests for body decoding and phone number id extraction."""

    def test_invalid_json_is_malformed(self):
        with pytest.raises(MalformedPayload):
            decode_body(b"{not json")

    def test_non_object_is_malformed(self):
        with pytest.raises(MalformedPayload):
            decode_body(b"[1, 2]")

    def test_extracts_phone_number_id(self):
        assert extract_phone_number_id(envelope(text_message(), phone_id="12345")) == "12345"

    def test_missing_phone_number_id(self):
        assert extract_phone_number_id({"object": "whatsapp_business_account", "entry": []}) is None
        assert extract_phone_number_id({"entry": [{"changes": [{"value": {}}]}]}) is None


class TestParseEnvelope:
    """Tests for envelope normalization."""

    def test_text_message(self):
        [event] = parse_envelope(envelope(text_message("Hello there")))
        assert event.kind is InboundKind.TEXT
        assert event.text == "Hello there"
        assert event.sender == "6581111111"
        assert event.message_id == "wamid.1"
        assert event.tenant_phone_id == "PHONE1"
        assert event.describe() == "Hello there"

    def test_button_reply(self):
        message = {
            "from": "6581111111", "id": "wamid.2", "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "buy_product_p1", "title": "🛒 Buy Now"}},
        }
        [event] = parse_envelope(envelope(message))
        assert event.kind is InboundKind.INTERACTIVE
        assert event.action_id == "buy_product_p1"
        assert event.action_title == "🛒 Buy Now"
        assert event.describe() == "[Selected: buy_product_p1]"

    def test_list_reply(self):
        message = {
            "from": "6581111111", "id": "wamid.3", "type": "interactive",
            "interactive": {"type": "list_reply", "list_reply": {"id": "select_product_p2", "title": "Kaya Toast"}},
        }
        [event] = parse_envelope(envelope(message))
        assert event.action_id == "select_product_p2"

    def test_template_quick_reply_button(self):
        message = {
            "from": "6581111111", "id": "wamid.4", "type": "button",
            "button": {"payload": "todays_offer", "text": "Today's Offer"},
        }
        [event] = parse_envelope(envelope(message))
        assert event.kind is InboundKind.INTERACTIVE
        assert event.action_id == "todays_offer"

    def test_interactive_without_reply_id_is_malformed(self):
        message = {"from": "6581111111", "id": "wamid.5", "type": "interactive", "interactive": {}}
        with pytest.raises(MalformedPayload):
            parse_envelope(envelope(message))

    def test_location_message(self):
        message = {
            "from": "6581111111", "id": "wamid.6", "type": "location",
            "location": {"latitude": 1.3521, "longitude": 103.8198, "name": "Orchard"},
        }
        [event] = parse_envelope(envelope(message))
        assert event.kind is InboundKind.LOCATION
        assert event.location["latitude"] == 1.3521
        assert event.describe() == "[Shared location: 1.3521, 103.8198]"

    def test_image_message_keeps_media_id_and_caption(self):
        message = {
            "from": "6581111111", "id": "wamid.7", "type": "image",
            "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "our laksa"},
        }
        [event] = parse_envelope(envelope(message))
        assert event.kind is InboundKind.IMAGE
        assert event.media_id == "media-1"
        assert event.text == "our laksa"

    def test_unsupported_type_becomes_unknown(self):
        message = {"from": "6581111111", "id": "wamid.8", "type": "sticker", "sticker": {"id": "s1"}}
        [event] = parse_envelope(envelope(message))
        assert event.kind is InboundKind.UNKNOWN
        assert event.payload == {"type": "sticker"}

    def test_status_callback_yields_no_events(self):
        statuses = [{"id": "wamid.out1", "status": "delivered", "recipient_id": "6581111111"}]
        assert parse_envelope(envelope(statuses=statuses)) == []

    def test_several_messages_keep_order(self):
        events = parse_envelope(envelope(text_message("one", message_id="a"), text_message("two", message_id="b")))
        assert [e.message_id for e in events] == ["a", "b"]

    def test_wrong_object_is_malformed(self):
        data = envelope(text_message())
        data["object"] = "page"
        with pytest.raises(MalformedPayload):
            parse_envelope(data)

    def test_missing_entries_is_malformed(self):
        with pytest.raises(MalformedPayload):
            parse_envelope({"object": "whatsapp_business_account", "entry": []})

    def test_message_without_sender_is_malformed(self):
        with pytest.raises(MalformedPayload):
            parse_envelope(envelope({"id": "wamid.9", "type": "text", "text": {"body": "x"}}))
