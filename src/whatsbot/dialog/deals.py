"""LobangLah deal-discovery flow: location, category, nearby deals."""

from __future__ import annotations

from typing import Any

from whatsbot.ai.conversation import build_deals_system_prompt
from whatsbot.ai.orchestrator import ToolLoopRequest
from whatsbot.config import LLMConfig
from whatsbot.core.types import InboundKind
from whatsbot.dialog.context import TurnContext
from whatsbot.dialog.states import DealsState
from whatsbot.log import get_logger
from whatsbot.services.places import Place
from whatsbot.transport.models import (
    InteractiveButtons,
    InteractiveList,
    ListRow,
    ListSection,
    Location,
    ReplyButton,
)

logger = get_logger(__name__)

GREETINGS = frozenset({"hi", "hello", "hey", "start", "menu", "restart"})

CATEGORIES: dict[str, tuple[str, str]] = {
    "food": ("🍽️ Food & Dining", "Restaurants, cafes and bakeries"),
    "fashion": ("👗 Fashion", "Clothing, shoes and malls"),
    "groceries": ("🛒 Groceries", "Supermarkets and convenience stores"),
    "events": ("🎉 Events & Fun", "Attractions, cinemas and more"),
}

SEARCH_RADIUS = 1000.0
WIDER_RADIUS = 2000.0
MAX_DEALS = 10

# Scratch keys describing the current search.
SEARCH_KEYS = ("location", "area", "category", "deals")

SHARE_LOCATION_PROMPT = (
    "📍 Please share your location to find amazing deals near you!\n\n"
    "Tap the 📎 attachment icon, choose Location and send your current location. "
    "You can also type a place name, like 'Tampines Mall'."
)
HOW_IT_WORKS = (
    "❓ How LobangLah works:\n\n"
    "1. Share your location or type a place name\n"
    "2. Pick a category\n"
    "3. Browse deals nearby and get directions\n\n"
    "You can also ask me questions about any deal I show you."
)
ABOUT = (
    "🎯 LobangLah helps you find the best lobang around Singapore: food, fashion, "
    "groceries and events near wherever you are."
)
CLARIFICATION = "Sorry, I didn't get that. Say 'hi' to start over or share your location to find deals."


def welcome_message() -> InteractiveButtons:
    return InteractiveButtons(
        body="Find the best deals near you in Singapore! Share your location and pick what you're looking for.",
        buttons=(
            ReplyButton("share_location_prompt", "📍 Share Location"),
            ReplyButton("how_it_works", "❓ How It Works"),
            ReplyButton("about_lobanglah", "🎯 About Us"),
        ),
        header_text="🎯 Welcome to LobangLah!",
    )


def category_list(area: str = "") -> InteractiveList:
    rows = tuple(ListRow(f"category_{key}", title, desc) for key, (title, desc) in CATEGORIES.items())
    where = f" near {area}" if area else " near you"
    return InteractiveList(
        body=f"Got it! What kind of deals are you looking for{where}?",
        button="Choose Category",
        sections=(ListSection("Categories", rows),),
        header_text="📍 Location received",
    )


def deals_list(deals: list[dict[str, Any]], category: str) -> InteractiveList:
    rows = []
    for n, deal in enumerate(deals[:MAX_DEALS]):
        description = deal.get("formatted_address") or ""
        if deal.get("rating"):
            description = f"⭐ {deal['rating']} · {description}"
        rows.append(ListRow(f"deal_{n}", (deal.get("name") or "Deal")[:24], description[:72] or None))
    title = CATEGORIES.get(category, (category.title(), ""))[0]
    return InteractiveList(
        body=f"Here are {len(rows)} places I found. Tap one for details and directions.",
        button="View Deals",
        sections=(ListSection(title[:24], tuple(rows)),),
        header_text="🔥 Deals near you",
    )


def deal_detail(deal: dict[str, Any]) -> InteractiveButtons:
    lines = [f"*{deal.get('name')}*"]
    if deal.get("formatted_address"):
        lines.append(f"📍 {deal['formatted_address']}")
    if deal.get("rating"):
        lines.append(f"⭐ {deal['rating']}")
    if deal.get("phone"):
        lines.append(f"📞 {deal['phone']}")
    if deal.get("website"):
        lines.append(f"🌐 {deal['website']}")
    return InteractiveButtons(
        body="\n".join(lines),
        buttons=(
            ReplyButton("more_deals", "🔍 More Deals"),
            ReplyButton("set_alert", "🔔 Set Alert"),
            ReplyButton("change_category", "🔄 Change Category"),
        ),
    )


def alert_choices() -> InteractiveButtons:
    return InteractiveButtons(
        body="How often would you like to hear about new deals in this area?",
        buttons=(
            ReplyButton("alert_daily", "Daily"),
            ReplyButton("alert_weekly", "Weekly"),
        ),
        header_text="🔔 Deal Alerts",
    )


class DealsFlow:
    def __init__(self, llm_config: LLMConfig):
        self._llm_config = llm_config

    async def handle(self, ctx: TurnContext) -> None:
        inbound = ctx.inbound
        match inbound.kind:
            case InboundKind.LOCATION:
                await self._location_received(ctx, inbound.location or {})
            case InboundKind.INTERACTIVE:
                await self._handle_action(ctx, inbound.action_id or "")
            case InboundKind.TEXT:
                await self._handle_text(ctx, inbound.text.strip())
            case _:
                ctx.say(CLARIFICATION)

    async def _handle_action(self, ctx: TurnContext, action_id: str) -> None:
        if action_id == "share_location_prompt":
            self._restart_search(ctx)
            ctx.say(SHARE_LOCATION_PROMPT)
        elif action_id == "how_it_works":
            ctx.say(HOW_IT_WORKS)
        elif action_id == "about_lobanglah":
            ctx.say(ABOUT)
        elif action_id.startswith("category_"):
            await self._search(ctx, action_id.removeprefix("category_"))
        elif action_id.startswith("deal_"):
            self._show_deal(ctx, action_id.removeprefix("deal_"))
        elif action_id == "more_deals":
            await self._more_deals(ctx)
        elif action_id == "change_category":
            if self._move(ctx, DealsState.ASK_CATEGORY):
                ctx.reply(category_list(ctx.scratch.get("area", "")))
        elif action_id == "set_alert":
            if self._move(ctx, DealsState.ALERT_SETUP):
                ctx.reply(alert_choices())
        elif action_id in ("alert_daily", "alert_weekly"):
            self._save_alert(ctx, action_id.removeprefix("alert_"))
        else:
            logger.info("unknown_action", action_id=action_id)
            ctx.say(CLARIFICATION)

    async def _handle_text(self, ctx: TurnContext, text: str) -> None:
        state = ctx.record.state
        if text.lower() in GREETINGS or state == DealsState.START:
            self._welcome(ctx)
            return
        if state == DealsState.ASK_LOCATION:
            await self._lookup_place(ctx, text)
            return
        if state in (DealsState.SHOWING_DEALS, DealsState.DEAL_INTERACTION):
            ctx.llm_request = self.llm_request(ctx)
            return
        ctx.say(CLARIFICATION)

    @staticmethod
    def _move(ctx: TurnContext, target: DealsState) -> bool:
        if ctx.transition(target):
            return True
        ctx.say(CLARIFICATION)
        return False

    @staticmethod
    def _restart_search(ctx: TurnContext) -> None:
        """Back to asking for a location; results from an earlier search no longer apply."""
        ctx.reset()
        for key in SEARCH_KEYS:
            ctx.scratch.pop(key, None)
        ctx.transition(DealsState.ASK_LOCATION)

    def _welcome(self, ctx: TurnContext) -> None:
        self._restart_search(ctx)
        ctx.reply(welcome_message())

    async def _lookup_place(self, ctx: TurnContext, query: str) -> None:
        places = await ctx.services.places.search_by_name(query, ctx.tenant.google_maps_api_key, max_results=1)
        found = [p for p in places if p.latitude is not None and p.longitude is not None]
        if not found:
            ctx.say(f"I couldn't find '{query}'. Try another place name or share your location instead.")
            return
        place = found[0]
        await self._location_received(
            ctx, {"latitude": place.latitude, "longitude": place.longitude, "name": place.name}
        )

    async def _location_received(self, ctx: TurnContext, location: dict[str, Any]) -> None:
        latitude, longitude = location.get("latitude"), location.get("longitude")
        if latitude is None or longitude is None:
            ctx.say(SHARE_LOCATION_PROMPT)
            return
        if not self._move(ctx, DealsState.LOCATION_RECEIVED):
            return
        area = location.get("name") or location.get("address") or ""
        ctx.scratch["location"] = {"latitude": float(latitude), "longitude": float(longitude)}
        ctx.scratch["area"] = area
        ctx.scratch.pop("deals", None)
        ctx.reply(category_list(area))
        ctx.transition(DealsState.ASK_CATEGORY)

    async def _nearby(self, ctx: TurnContext, category: str, radius: float) -> list[Place]:
        location = ctx.scratch["location"]
        return await ctx.services.places.search_nearby(
            location["latitude"], location["longitude"], category,
            ctx.tenant.google_maps_api_key, radius=radius, max_results=MAX_DEALS,
        )

    async def _search(self, ctx: TurnContext, category: str) -> None:
        if category not in CATEGORIES:
            ctx.say(CLARIFICATION)
            return
        if "location" not in ctx.scratch:
            if self._move(ctx, DealsState.ASK_LOCATION):
                ctx.say(SHARE_LOCATION_PROMPT)
            return
        if not self._move(ctx, DealsState.SEARCHING_DEALS):
            return
        places = await self._nearby(ctx, category, SEARCH_RADIUS)
        logger.info("deals_search", category=category, results=len(places))
        if not places:
            ctx.say("No deals found nearby for that category. Try another one!")
            ctx.transition(DealsState.ASK_CATEGORY)
            return
        deals = [p.to_dict() for p in places]
        ctx.scratch["category"] = category
        ctx.scratch["deals"] = deals
        ctx.reply(deals_list(deals, category))
        ctx.transition(DealsState.SHOWING_DEALS)

    def _show_deal(self, ctx: TurnContext, index: str) -> None:
        deals = ctx.scratch.get("deals") or []
        try:
            deal = deals[int(index)]
        except (ValueError, IndexError):
            ctx.say("That deal is no longer available. Pick a category to search again.")
            return
        if not self._move(ctx, DealsState.DEAL_INTERACTION):
            return
        ctx.reply(deal_detail(deal))
        if deal.get("latitude") is not None and deal.get("longitude") is not None:
            ctx.reply(Location(
                latitude=deal["latitude"],
                longitude=deal["longitude"],
                name=deal.get("name"),
                address=deal.get("formatted_address"),
            ))

    async def _more_deals(self, ctx: TurnContext) -> None:
        category = ctx.scratch.get("category")
        if not category or "location" not in ctx.scratch:
            if self._move(ctx, DealsState.ASK_CATEGORY):
                ctx.reply(category_list(ctx.scratch.get("area", "")))
            return
        if not self._move(ctx, DealsState.SEARCHING_DEALS):
            return
        seen = {d.get("place_id") or d.get("name") for d in ctx.scratch.get("deals") or []}
        places = await self._nearby(ctx, category, WIDER_RADIUS)
        fresh = [p.to_dict() for p in places if (p.place_id or p.name) not in seen]
        if not fresh:
            ctx.say("That's all the deals I could find around here. Try another category!")
            ctx.reply(category_list(ctx.scratch.get("area", "")))
            ctx.transition(DealsState.ASK_CATEGORY)
            return
        ctx.scratch["deals"] = fresh
        ctx.reply(deals_list(fresh, category))
        ctx.transition(DealsState.SHOWING_DEALS)

    def _save_alert(self, ctx: TurnContext, frequency: str) -> None:
        if not self._move(ctx, DealsState.END):
            return
        ctx.scratch["alert"] = {
            "frequency": frequency,
            "category": ctx.scratch.get("category"),
            "location": ctx.scratch.get("location"),
        }
        ctx.say(f"🔔 Done! I'll send you {frequency} deal alerts for this area. Say 'hi' anytime to search again.")

    def llm_request(self, ctx: TurnContext) -> ToolLoopRequest:
        return ToolLoopRequest(
            system_prompt=build_deals_system_prompt(ctx.tenant, ctx.scratch.get("deals") or []),
            model=ctx.tenant.openai_model or self._llm_config.default_model,
            temperature=ctx.tenant.temperature,
            max_tokens=self._llm_config.max_tokens,
        )
