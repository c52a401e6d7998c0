"""Catalog tools: listing, product cards and purchase start."""

from __future__ import annotations

import json
from typing import Any

from whatsbot.ai.tools.base import Tool, ToolContext
from whatsbot.dialog.catalog import match_products
from whatsbot.dialog.pos_messages import ambiguous_matches, product_card, product_list
from whatsbot.log import get_logger
from whatsbot.services.pos_client import PosClient

logger = get_logger(__name__)

MAX_LISTED = 20


class GetStoreProductsTool(Tool):
    def __init__(self, pos: PosClient):
        self._pos = pos

    @property
    def name(self) -> str:
        return "get_store_products"

    @property
    def description(self) -> str:
        return (
            "List the store's products with id, name, price and stock. "
            "Use it to answer questions about what is available. Nothing is shown to the customer."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "category": {"type": "string", "description": "Optional category filter"},
                "limit": {"type": "integer", "description": "Max products (1-20)", "default": 10},
            },
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        limit = max(1, min(int(kwargs.get("limit") or 10), MAX_LISTED))
        products = await self._pos.get_store_products(
            context.tenant, limit=limit, category=kwargs.get("category") or None
        )
        if not products:
            return "No products found."
        return json.dumps([
            {
                "id": p.id,
                "name": p.name,
                "price": p.price,
                "currency": p.currency or context.tenant.currency,
                "stock": p.stock,
            }
            for p in products
        ])


class DisplayProductInfoTool(Tool):
    def __init__(self, pos: PosClient):
        self._pos = pos

    @property
    def name(self) -> str:
        return "display_product_info"

    @property
    def description(self) -> str:
        return (
            "Send the customer a product card with image, price and a Buy Now button. "
            "Use when the customer asks about one specific product."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "product_id": {"type": "string", "description": "Product ID from the catalog"},
                "intro": {"type": "string", "description": "Optional short line shown above the card"},
            },
            "required": ["product_id"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        product_id = str(kwargs.get("product_id") or "").strip()
        if not product_id:
            return "Error: product_id is required."
        product = await self._pos.get_store_product(context.tenant, product_id)
        if product is None:
            return f"Product {product_id} was not found."
        context.plan.add(product_card(product, context.tenant, intro=kwargs.get("intro") or None))
        return f"Displayed product card for {product.name} (price {product.price})."


class SuggestViewAllProductsTool(Tool):
    def __init__(self, pos: PosClient):
        self._pos = pos

    @property
    def name(self) -> str:
        return "suggest_view_all_products"

    @property
    def description(self) -> str:
        return "Send the customer a selectable list of the store's products."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        products = await self._pos.get_store_products(context.tenant, limit=5)
        if not products:
            return "The store has no products listed right now."
        context.plan.add(product_list(products, context.tenant))
        return f"Displayed a product list with {len(products)} products."


class InitiatePurchaseTool(Tool):
    def __init__(self, pos: PosClient):
        self._pos = pos

    @property
    def name(self) -> str:
        return "initiate_purchase"

    @property
    def description(self) -> str:
        return (
            "Start buying a product by name. Shows the Buy Now card when exactly one product "
            "matches, or asks the customer to be more specific when several do."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "product_name": {"type": "string", "description": "Name of the product to buy"},
                "quantity": {"type": "integer", "description": "Requested quantity", "default": 1},
            },
            "required": ["product_name"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        name = str(kwargs.get("product_name") or "").strip()
        if not name:
            return "Error: product_name is required."
        quantity = int(kwargs.get("quantity") or 1)
        products = await self._pos.get_store_products(context.tenant, limit=100)
        matches = match_products(products, name)
        if not matches:
            return f"No product matches '{name}'."
        if len(matches) > 1:
            context.plan.text(ambiguous_matches([p.name for p in matches]))
            return "Asked the customer to choose between: " + ", ".join(p.name for p in matches[:3])
        product = matches[0]
        intro = None
        if quantity > 1:
            intro = f"You asked for {quantity}. Tap Buy Now, then use Change Quantity to adjust."
        context.plan.add(product_card(product, context.tenant, intro=intro))
        return f"Displayed the Buy Now card for {product.name}."
