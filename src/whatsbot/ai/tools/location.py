"""Location sharing tool."""

from __future__ import annotations

from typing import Any

from whatsbot.ai.tools.base import Tool, ToolContext
from whatsbot.transport.models import Location


class SendLocationTool(Tool):
    @property
    def name(self) -> str:
        return "send_location_message"

    @property
    def description(self) -> str:
        return "Send the customer a map pin, e.g. the store location from the business information."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "latitude": {"type": "number"},
                "longitude": {"type": "number"},
                "name": {"type": "string", "description": "Place name"},
                "address": {"type": "string", "description": "Street address"},
            },
            "required": ["latitude", "longitude"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        try:
            latitude = float(kwargs["latitude"])
            longitude = float(kwargs["longitude"])
        except (KeyError, TypeError, ValueError):
            return "Error: latitude and longitude must be numbers."
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            return "Error: coordinates are out of range."
        name = kwargs.get("name") or None
        context.plan.add(Location(latitude=latitude, longitude=longitude, name=name,
                                  address=kwargs.get("address") or None))
        label = f" {name}" if name else ""
        return f"Sent location{label} ({latitude}, {longitude})."
