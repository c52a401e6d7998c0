"""Viral agency intake: guided collection of a restaurant deal, content approval, hand-off to the posting workflow."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from whatsbot.config import LLMConfig
from whatsbot.core.errors import ConfigError, ExternalServiceError
from whatsbot.core.types import InboundKind
from whatsbot.dialog.context import TurnContext
from whatsbot.dialog.states import AgencyState
from whatsbot.log import get_logger
from whatsbot.services.workflow import POSTING_PLATFORMS
from whatsbot.storage.models import ViralDeal
from whatsbot.transport.models import InteractiveButtons, ReplyButton

logger = get_logger(__name__)

GREETINGS = frozenset({"hi", "hello", "hey", "start", "menu", "restart"})
SKIP_WORDS = frozenset({"skip", "none", "no", "-"})

WELCOME_BODY = (
    "We turn your restaurant deals into viral posts across Facebook, Instagram, TikTok, "
    "Telegram and more, all from one WhatsApp chat.\n\n"
    "Tell us about your deal and we'll write the content, you approve it, and we post it."
)
VIEW_PERFORMANCE = (
    "📊 Success Stories\n\n"
    "Restaurants that post a clear deal with a good photo and a short validity window get "
    "the strongest response. Once your deal is live we'll message you here as each platform "
    "goes up."
)
COMMISSION_INFO = (
    "💰 How It Works\n\n"
    "1. Tell us your deal in a few quick steps\n"
    "2. Review the content we generate\n"
    "3. Approve and we post it everywhere\n\n"
    "You only pay a commission when the deal performs."
)
CLARIFICATION = "Sorry, I didn't get that. Say 'hi' to see the menu or use the buttons above."

# Per-step prompts, keyed by the state that is collecting the answer.
STEP_PROMPTS: dict[str, str] = {
    AgencyState.COLLECT_DESCRIPTION: (
        "🍽️ Step 2: What's the deal?\n\n"
        "Describe it in a sentence, e.g. \"1-for-1 laksa every weekday lunch\"."
    ),
    AgencyState.COLLECT_PRICING: (
        "💵 Step 3: Pricing\n\n"
        "What's the usual price and the deal price? e.g. \"Was $12, now $6\"."
    ),
    AgencyState.COLLECT_VALIDITY: (
        "📅 Step 4: How long is the deal valid?\n\n"
        "e.g. \"This weekend only\" or \"Until 30 June\"."
    ),
    AgencyState.COLLECT_PHOTO: (
        "📸 Step 5: Send a photo of the dish or deal.\n\n"
        "Good photos get far more engagement. Type \"skip\" if you don't have one."
    ),
    AgencyState.COLLECT_AUDIENCE: (
        "🎯 Step 6: Who is this deal for?\n\n"
        "e.g. \"Office workers in Raffles Place\" or \"Families on weekends\"."
    ),
    AgencyState.COLLECT_CONTACT: (
        "📞 Step 7: How should customers reach you?\n\n"
        "e.g. \"Call 6123 4567\", \"Walk-in only\" or \"DM our Instagram\"."
    ),
    AgencyState.COLLECT_SPECIAL_NOTES: (
        "📝 Step 8: Any special notes or conditions?\n\n"
        "e.g. \"Dine-in only\". Type \"none\" if there aren't any."
    ),
}

# State collecting each field, and the state that follows it.
TEXT_STEPS: dict[str, tuple[str, str]] = {
    AgencyState.COLLECT_DESCRIPTION: ("description", AgencyState.COLLECT_PRICING),
    AgencyState.COLLECT_PRICING: ("pricing", AgencyState.COLLECT_VALIDITY),
    AgencyState.COLLECT_VALIDITY: ("validity", AgencyState.COLLECT_PHOTO),
    AgencyState.COLLECT_AUDIENCE: ("target_audience", AgencyState.COLLECT_CONTACT),
    AgencyState.COLLECT_CONTACT: ("contact_method", AgencyState.COLLECT_SPECIAL_NOTES),
}


def welcome_message() -> InteractiveButtons:
    return InteractiveButtons(
        body=WELCOME_BODY,
        buttons=(
            ReplyButton("post_new_deal", "🚀 Make Me Viral!"),
            ReplyButton("view_performance", "📊 Success Stories"),
            ReplyButton("commission_info", "💰 How It Works"),
        ),
        header_text="🔥 VIRAL SINGAPORE AGENCY",
    )


def restaurant_confirmation(restaurant: dict[str, Any]) -> InteractiveButtons:
    lines = [f"*{restaurant.get('name')}*"]
    if restaurant.get("formatted_address"):
        lines.append(f"📍 {restaurant['formatted_address']}")
    if restaurant.get("rating"):
        lines.append(f"⭐ {restaurant['rating']}")
    lines.append("\nIs this your restaurant?")
    return InteractiveButtons(
        body="\n".join(lines),
        buttons=(
            ReplyButton("confirm_restaurant", "✅ Correct"),
            ReplyButton("change_restaurant", "🔄 Search Again"),
        ),
        header_text="🏪 Restaurant found",
    )


def approval_message(deal: dict[str, Any], content: dict[str, Any]) -> InteractiveButtons:
    restaurant = deal.get("restaurant") or {}
    hashtags = " ".join(content.get("hashtags", [])[:8])
    body = (
        f"🎨 Content for {restaurant.get('name', 'your restaurant')}\n\n"
        f"{content.get('caption', '')}\n\n"
        f"🏷️ {hashtags}\n\n"
        f"Will be posted to {len(POSTING_PLATFORMS)} platforms. Approve to go live?"
    )
    return InteractiveButtons(
        body=body,
        buttons=(
            ReplyButton("approve_content", "✅ Approve & Post"),
            ReplyButton("regenerate_content", "🔄 Regenerate"),
            ReplyButton("edit_deal_details", "✏️ Edit Deal Info"),
        ),
        header_text="📋 Content Preview",
        footer="Your approval is required before posting",
    )


def smart_hashtags(deal: dict[str, Any]) -> list[str]:
    tags = ["#SGDeals", "#SingaporeFood", "#FoodieSG", "#SGEats"]
    name = (deal.get("restaurant") or {}).get("name") or ""
    compact = re.sub(r"[^A-Za-z0-9]", "", name)
    if compact:
        tags.insert(0, f"#{compact}")
    text = f"{deal.get('description', '')} {deal.get('pricing', '')}".lower()
    if "1-for-1" in text or "1 for 1" in text:
        tags.append("#1for1")
    if "%" in text or "off" in text.split():
        tags.append("#Discount")
    if "lunch" in text:
        tags.append("#LunchDeals")
    if "dinner" in text:
        tags.append("#DinnerDeals")
    return tags


def template_caption(deal: dict[str, Any]) -> str:
    """Deterministic caption used when the LLM is unavailable."""
    restaurant = deal.get("restaurant") or {}
    lines = [f"🔥 {deal.get('description', 'Special deal')} at {restaurant.get('name', 'our restaurant')}!"]
    if deal.get("pricing"):
        lines.append(f"💰 {deal['pricing']}")
    if deal.get("validity"):
        lines.append(f"📅 {deal['validity']}")
    if restaurant.get("formatted_address"):
        lines.append(f"📍 {restaurant['formatted_address']}")
    if deal.get("contact_method"):
        lines.append(f"📞 {deal['contact_method']}")
    notes = deal.get("special_notes")
    if notes:
        lines.append(f"📝 {notes}")
    return "\n".join(lines)


def platform_content(deal: dict[str, Any], caption: str, hashtags: list[str]) -> dict[str, Any]:
    tags = " ".join(hashtags)
    photo = deal.get("photo_url")
    return {
        "facebook": {"text": f"{caption}\n\n{tags}", "image": photo},
        "instagram": {"caption": f"{caption}\n\n{tags}", "image": photo},
        "tiktok": {"caption": f"{caption.splitlines()[0]} {tags}"},
        "whatsapp": {"text": caption},
        "telegram": {"text": f"{caption}\n\n{tags}"},
        "twitter": {"text": f"{caption.splitlines()[0]} {' '.join(hashtags[:3])}"[:280]},
        "youtube": {"title": caption.splitlines()[0][:100], "description": f"{caption}\n\n{tags}"},
        "xiaohongshu": {"text": f"{caption}\n\n{tags}"},
    }


def _caption_prompt(deal: dict[str, Any]) -> str:
    restaurant = deal.get("restaurant") or {}
    return (
        f"Restaurant: {restaurant.get('name')}\n"
        f"Address: {restaurant.get('formatted_address') or 'Singapore'}\n"
        f"Deal: {deal.get('description')}\n"
        f"Pricing: {deal.get('pricing')}\n"
        f"Valid: {deal.get('validity')}\n"
        f"Audience: {deal.get('target_audience')}\n"
        f"Contact: {deal.get('contact_method')}\n"
        f"Notes: {deal.get('special_notes') or 'None'}"
    )


class AgencyFlow:
    """Step-by-step intake; every step persists into ``scratch["deal"]``."""

    def __init__(self, llm_config: LLMConfig):
        self._llm_config = llm_config

    async def handle(self, ctx: TurnContext) -> None:
        inbound = ctx.inbound
        match inbound.kind:
            case InboundKind.INTERACTIVE:
                await self._handle_action(ctx, inbound.action_id or "")
            case InboundKind.TEXT:
                await self._handle_text(ctx, inbound.text.strip())
            case InboundKind.IMAGE if ctx.record.state == AgencyState.COLLECT_PHOTO:
                self._store_photo(ctx, inbound.media_id, inbound.payload.get("mime_type"))
            case _:
                ctx.say(CLARIFICATION)

    # --- Interactive -----------------------------------------------------------

    async def _handle_action(self, ctx: TurnContext, action_id: str) -> None:
        match action_id:
            case "post_new_deal":
                self._start_intake(ctx)
            case "view_performance":
                ctx.say(VIEW_PERFORMANCE)
            case "commission_info":
                ctx.say(COMMISSION_INFO)
            case "confirm_restaurant":
                if not self._deal(ctx).get("restaurant"):
                    self._start_intake(ctx)
                    return
                self._ask(ctx, AgencyState.COLLECT_DESCRIPTION)
            case "change_restaurant":
                if not ctx.transition(AgencyState.COLLECT_RESTAURANT_NAME):
                    ctx.say(CLARIFICATION)
                    return
                self._deal(ctx).pop("restaurant", None)
                ctx.say("No problem. What's the name of your restaurant?")
            case "approve_content":
                await self._submit(ctx)
            case "regenerate_content" | "edit_deal_details" if ctx.record.state != AgencyState.AWAIT_APPROVAL:
                ctx.say("There's no deal waiting for approval. Say 'hi' to start a new one.")
            case "regenerate_content":
                await self._generate(ctx)
            case "edit_deal_details":
                self._ask(ctx, AgencyState.COLLECT_DESCRIPTION)
            case _:
                logger.info("unknown_action", action_id=action_id)
                ctx.say(CLARIFICATION)

    # --- Text ------------------------------------------------------------------

    async def _handle_text(self, ctx: TurnContext, text: str) -> None:
        state = ctx.record.state
        if text.lower() in GREETINGS or state in (AgencyState.WELCOME, AgencyState.SUBMITTED):
            ctx.reset()
            ctx.reply(welcome_message())
            return
        if state in (AgencyState.COLLECT_RESTAURANT_NAME, AgencyState.CONFIRM_RESTAURANT):
            await self._find_restaurant(ctx, text)
        elif state in TEXT_STEPS:
            field, following = TEXT_STEPS[state]
            self._deal(ctx)[field] = text
            self._ask(ctx, following)
        elif state == AgencyState.COLLECT_PHOTO:
            if text.lower() in SKIP_WORDS:
                self._ask(ctx, AgencyState.COLLECT_AUDIENCE)
            else:
                ctx.say("Please send a photo, or type \"skip\" to continue without one.")
        elif state == AgencyState.COLLECT_SPECIAL_NOTES:
            self._deal(ctx)["special_notes"] = "" if text.lower() in SKIP_WORDS else text
            ctx.transition(AgencyState.GENERATE_CONTENT)
            await self._generate(ctx)
        elif state == AgencyState.AWAIT_APPROVAL:
            ctx.say("Please use the buttons above to approve, regenerate or edit your deal.")
        else:
            ctx.say(CLARIFICATION)

    # --- Steps -----------------------------------------------------------------

    @staticmethod
    def _deal(ctx: TurnContext) -> dict[str, Any]:
        return ctx.scratch.setdefault("deal", {})

    def _start_intake(self, ctx: TurnContext) -> None:
        if ctx.record.state != AgencyState.WELCOME:
            ctx.reset()
        ctx.scratch["deal"] = {}
        ctx.say("🏪 Step 1: What's the name of your restaurant?")
        ctx.transition(AgencyState.COLLECT_RESTAURANT_NAME)

    def _ask(self, ctx: TurnContext, state: AgencyState) -> bool:
        """Prompt for the step collected in ``state``; a refused move only clarifies."""
        if not ctx.transition(state):
            ctx.say(CLARIFICATION)
            return False
        ctx.say(STEP_PROMPTS[state])
        return True

    async def _find_restaurant(self, ctx: TurnContext, name: str) -> None:
        places = await ctx.services.places.search_by_name(
            f"{name} Singapore", ctx.tenant.google_maps_api_key, max_results=1
        )
        if not places:
            ctx.say(f"I couldn't find \"{name}\". Try the full name as it appears on Google Maps.")
            return
        restaurant = places[0].to_dict()
        self._deal(ctx)["restaurant"] = restaurant
        ctx.reply(restaurant_confirmation(restaurant))
        ctx.transition(AgencyState.CONFIRM_RESTAURANT)

    def _store_photo(self, ctx: TurnContext, media_id: str | None, mime_type: str | None) -> None:
        if not media_id:
            ctx.say(STEP_PROMPTS[AgencyState.COLLECT_PHOTO])
            return
        deal = self._deal(ctx)
        deal["photo_media_id"] = media_id
        deal["photo_mime_type"] = mime_type or "image/jpeg"
        ctx.say("📸 Great photo!")
        self._ask(ctx, AgencyState.COLLECT_AUDIENCE)

    async def generate_content(self, ctx: TurnContext, deal: dict[str, Any]) -> dict[str, Any]:
        hashtags = smart_hashtags(deal)
        source = "llm"
        try:
            llm = ctx.services.llm.for_tenant(ctx.tenant)
            response = await llm.chat(
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You write short, punchy social media captions for Singapore restaurant "
                            "deals. Use a few emojis, keep it under 80 words, no hashtags."
                        ),
                    },
                    {"role": "user", "content": _caption_prompt(deal)},
                ],
                model=ctx.tenant.openai_model or self._llm_config.default_model,
                temperature=max(ctx.tenant.temperature, 0.8),
                max_tokens=self._llm_config.max_tokens,
            )
            caption = response.text.strip()
        except (ExternalServiceError, ConfigError) as e:
            logger.warning("caption_generation_failed", error=str(e))
            caption = ""
        if not caption:
            caption = template_caption(deal)
            source = "template"
        return {
            "caption": caption,
            "hashtags": hashtags,
            "platforms": platform_content(deal, caption, hashtags),
            "source": source,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def _generate(self, ctx: TurnContext) -> None:
        deal = self._deal(ctx)
        ctx.transition(AgencyState.GENERATE_CONTENT)
        content = await self.generate_content(ctx, deal)
        ctx.scratch["content"] = content
        logger.info("viral_content_generated", source=content["source"])
        ctx.reply(approval_message(deal, content))
        ctx.transition(AgencyState.AWAIT_APPROVAL)

    async def _rehost_photo(self, ctx: TurnContext, deal_id: str, deal: dict[str, Any]) -> None:
        services = ctx.services
        media_id = deal.get("photo_media_id")
        if not media_id or services.transport is None or services.object_store is None or not services.media_bucket:
            return
        try:
            data, mime = await services.transport.download_media(media_id, ctx.tenant)
            extension = mime.rsplit("/", 1)[-1] or "jpg"
            deal["photo_url"] = await services.object_store.put_bytes(
                services.media_bucket, f"viral-deals/{deal_id}/photo.{extension}", data, mime
            )
        except (ExternalServiceError, BotoCoreError, ClientError) as e:
            logger.warning("photo_rehost_failed", deal_id=deal_id, error=str(e))
            ctx.record.note(f"Photo for deal {deal_id} could not be stored: {e}")

    async def _submit(self, ctx: TurnContext) -> None:
        deal = self._deal(ctx)
        content = ctx.scratch.get("content")
        if ctx.record.state != AgencyState.AWAIT_APPROVAL or not content or not deal.get("restaurant"):
            ctx.say("There's no deal waiting for approval. Tap 'Make Me Viral!' to start a new one.")
            ctx.reset()
            ctx.reply(welcome_message())
            return

        deal_id = f"deal_{uuid.uuid4().hex[:12]}"
        await self._rehost_photo(ctx, deal_id, deal)
        if deal.get("photo_url"):
            content = {**content, "platforms": platform_content(deal, content["caption"], content["hashtags"])}
        record = ViralDeal(
            deal_id=deal_id,
            tenant_id=ctx.tenant.tenant_id,
            restaurant_owner=ctx.user,
            restaurant=dict(deal["restaurant"]),
            deal={k: v for k, v in deal.items() if k != "restaurant"},
            content=content,
            status="approved",
        )
        await ctx.services.deals.save(record)
        logger.info("viral_deal_saved", deal_id=deal_id)

        try:
            await ctx.services.workflow.trigger(record, webhook_url=ctx.tenant.n8n_webhook_url or None)
        except (ExternalServiceError, ConfigError) as e:
            logger.error("workflow_trigger_failed", deal_id=deal_id, error=str(e))
            record.status = "pipeline_failed"
            await ctx.services.deals.save(record)
            ctx.record.note(f"Posting workflow failed for deal {deal_id}: {e}")
            ctx.say(
                f"✅ Your deal is saved (ID: {deal_id}), but we couldn't start posting yet. "
                "Our team will retry shortly and update you here."
            )
        else:
            ctx.say(
                f"🚀 Approved! Your deal is going live (ID: {deal_id}).\n\n"
                "We're posting it across all platforms now and will message you here once it's up."
            )
        ctx.scratch.pop("content", None)
        ctx.scratch["deal"] = {}
        ctx.scratch["last_deal_id"] = deal_id
        ctx.transition(AgencyState.SUBMITTED)
