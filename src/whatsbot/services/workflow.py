"""One-way trigger of the n8n posting pipeline for approved viral deals."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from whatsbot.core.errors import MissingCredentials
from whatsbot.log import get_logger
from whatsbot.services.base import HttpService
from whatsbot.storage.models import ViralDeal

logger = get_logger(__name__)

POSTING_PLATFORMS = (
    "facebook", "instagram", "tiktok", "whatsapp", "telegram", "twitter", "youtube", "xiaohongshu",
)


def build_pipeline_payload(deal: ViralDeal, callback_base_url: str) -> dict[str, Any]:
    restaurant = deal.restaurant
    details = deal.deal
    callback = callback_base_url.rstrip("/")
    return {
        "trigger": "viral_deal_approved",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "dealId": deal.deal_id,
        "restaurantOwner": deal.restaurant_owner,
        "restaurant": {
            "name": restaurant.get("name") or "Restaurant",
            "address": restaurant.get("formatted_address") or "Singapore",
            "phone": restaurant.get("phone") or "",
            "rating": restaurant.get("rating") or 0,
            "placeId": restaurant.get("place_id") or "",
        },
        "deal": {
            "description": details.get("description"),
            "pricing": details.get("pricing"),
            "validity": details.get("validity"),
            "targetAudience": details.get("target_audience"),
            "contactMethod": details.get("contact_method"),
            "specialNotes": details.get("special_notes"),
            "photoUrl": details.get("photo_url"),
        },
        "content": deal.content,
        "platformContent": deal.content.get("platforms", {}),
        "posting": {
            "platforms": list(POSTING_PLATFORMS),
            "priority": "high",
            "schedule": "immediate",
        },
        "tracking": {
            "statusWebhookUrl": f"{callback}/api/n8n/status" if callback else "",
            "dealId": deal.deal_id,
            "restaurantOwner": deal.restaurant_owner,
        },
    }


class WorkflowClient(HttpService):
    def __init__(self, webhook_url: str = "", callback_base_url: str = "", timeout: float = 10.0,
                 client: httpx.AsyncClient | None = None):
        super().__init__(timeout=timeout, client=client)
        self._webhook_url = webhook_url
        self._callback_base_url = callback_base_url

    @property
    def service_name(self) -> str:
        return "workflow"

    async def trigger(self, deal: ViralDeal, webhook_url: str | None = None) -> None:
        url = webhook_url or self._webhook_url
        if not url:
            raise MissingCredentials("Workflow webhook URL is not configured")
        payload = build_pipeline_payload(deal, self._callback_base_url)
        await self._request("POST", url, json=payload)
        logger.info("workflow_triggered", deal_id=deal.deal_id)
