"""Unit tests for ordered outbound delivery."""

import pytest

from fakes import CUSTOMER, OWNER, FakeTransport, make_tenant
from whatsbot.core.errors import ConfigError, TransportError
from whatsbot.outbound.sender import OutboundSender
from whatsbot.transport.models import InteractiveButtons, OutboundPlan, ReplyButton, Text

pytestmark = pytest.mark.unit


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def sender(transport, sleep):
    return OutboundSender(transport, pacing=0.5, sleep=sleep)


def menu() -> InteractiveButtons:
    return InteractiveButtons(
        body="What would you like to do?",
        buttons=(ReplyButton(id="view_products", title="View Products"), ReplyButton(id="help", title="Help")),
        header_text="Kopi Corner",
    )


class TestOrderingAndPacing:
    async def test_messages_go_out_in_plan_order(self, sender, transport):
        plan = OutboundPlan()
        plan.text("one")
        plan.text("two")
        plan.text("for the owner", to=OWNER)

        report = await sender.send(make_tenant(), plan, CUSTOMER)

        assert [(item.body, to) for item, to in transport.sent] == [
            ("one", CUSTOMER), ("two", CUSTOMER), ("for the owner", OWNER),
        ]
        assert report.all_delivered
        assert [d.message_id for d in report.deliveries] == ["wamid.out1", "wamid.out2", "wamid.out3"]

    async def test_pacing_only_between_same_recipient(self, sender, sleep):
        plan = OutboundPlan()
        plan.text("a")
        plan.text("b")
        plan.text("c", to=OWNER)
        plan.text("d")
        await sender.send(make_tenant(), plan, CUSTOMER)
        assert sleep.calls == [0.5]

    async def test_recipient_is_normalized(self, sender, transport):
        plan = OutboundPlan()
        plan.text("hello", to="+65 9000-0000")
        report = await sender.send(make_tenant(), plan, CUSTOMER)
        assert transport.sent[0][1] == "6590000000"
        assert report.deliveries[0].recipient == "6590000000"


class TestFailures:
    """Tests for retries, fallbacks and reported failures."""

    async def test_transient_error_retried_once(self, sender, transport):
        transport.errors = [TransportError("rate limited", status=429, transient=True)]
        plan = OutboundPlan()
        plan.text("hello")
        report = await sender.send(make_tenant(), plan, CUSTOMER)
        assert transport.calls == 2
        assert report.all_delivered

    async def test_second_transient_error_is_reported(self, sender, transport):
        transport.errors = [
            TransportError("unavailable", status=503, transient=True),
            TransportError("unavailable", status=503, transient=True),
        ]
        plan = OutboundPlan()
        plan.text("hello")
        plan.text("still sent")
        report = await sender.send(make_tenant(), plan, CUSTOMER)
        assert transport.calls == 3
        assert [d.ok for d in report.deliveries] == [False, True]
        assert len(report.failures) == 1

    async def test_forbidden_is_not_retried(self, sender, transport):
        transport.errors = [TransportError("forbidden", status=403)]
        plan = OutboundPlan()
        plan.text("hello")
        report = await sender.send(make_tenant(), plan, CUSTOMER)
        assert transport.calls == 1
        assert report.failures[0].error == "forbidden"

    async def test_rejected_rich_message_falls_back_to_text(self, sender, transport):
        transport.errors = [TransportError("invalid interactive", status=400)]
        plan = OutboundPlan()
        plan.add(menu())
        report = await sender.send(make_tenant(), plan, CUSTOMER)

        [(item, _)] = transport.sent
        assert item == Text("Kopi Corner\n\nWhat would you like to do?\n\n- View Products\n- Help")
        [delivery] = report.deliveries
        assert delivery.ok
        assert delivery.degraded is True
        assert delivery.kind == "InteractiveButtons"

    async def test_rejected_text_is_not_degraded(self, sender, transport):
        transport.errors = [TransportError("bad text", status=400)]
        plan = OutboundPlan()
        plan.text("hello")
        report = await sender.send(make_tenant(), plan, CUSTOMER)
        assert transport.calls == 1
        assert report.deliveries[0].error == "bad text"
        assert report.deliveries[0].degraded is False

    async def test_missing_credentials_are_reported(self, sender, transport):
        transport.errors = [ConfigError("no whatsapp token for store1")]
        plan = OutboundPlan()
        plan.text("hello")
        report = await sender.send(make_tenant(), plan, CUSTOMER)
        assert not report.all_delivered
        assert report.failures[0].error == "no whatsapp token for store1"
