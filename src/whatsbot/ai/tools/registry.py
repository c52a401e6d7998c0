"""Tool registry for discovering and managing available tools."""

from __future__ import annotations

from whatsbot.ai.tools.base import Tool
from whatsbot.log import get_logger
from whatsbot.services.pos_client import PosClient

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self, pos: PosClient):
        self._tools: dict[str, Tool] = {}
        self._pos = pos

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def discover_and_register(self) -> None:
        """Register the built-in store tools."""
        from whatsbot.ai.tools.location import SendLocationTool
        from whatsbot.ai.tools.orders import GetInvoiceTool, GetOrderHistoryTool
        from whatsbot.ai.tools.products import (
            DisplayProductInfoTool,
            GetStoreProductsTool,
            InitiatePurchaseTool,
            SuggestViewAllProductsTool,
        )

        self.register(GetStoreProductsTool(self._pos))
        self.register(DisplayProductInfoTool(self._pos))
        self.register(GetOrderHistoryTool(self._pos))
        self.register(GetInvoiceTool(self._pos))
        self.register(SuggestViewAllProductsTool(self._pos))
        self.register(SendLocationTool())
        self.register(InitiatePurchaseTool(self._pos))
