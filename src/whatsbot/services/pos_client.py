"""HTTP client for the point-of-sale order microservice."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from whatsbot.core.errors import MissingCredentials, NotFound
from whatsbot.log import get_logger
from whatsbot.services.base import HttpService
from whatsbot.tenancy.models import TenantConfig

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Product:
    id: str
    name: str
    price: str
    currency: str = ""
    stock: Optional[int] = None
    image_url: Optional[str] = None
    description: str = ""
    category: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Product:
        stock = data.get("stock_quantity", data.get("stockQuantity", data.get("stock")))
        return cls(
            id=str(data.get("product_id") or data.get("productId") or data.get("id") or ""),
            name=str(data.get("name") or "Unnamed product"),
            price=str(data.get("price") if data.get("price") is not None else "0"),
            currency=str(data.get("currency") or ""),
            stock=_stock_level(stock),
            image_url=data.get("image_url") or data.get("imageUrl") or None,
            description=str(data.get("description") or ""),
            category=str(data.get("category") or data.get("category_name") or ""),
        )


def _stock_level(value: Any) -> Optional[int]:
    """Unknown or unparseable stock reads as None."""
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.warning("unparseable_stock", value=value)
        return None


def _unwrap_list(data: Any, *keys: str) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


class PosClient(HttpService):
    """createOrder, getOrderById, updateOrder, payments, history and product lookups.

    Every call is scoped to a store (tenant id) and uses the tenant's own
    base URL when it has one.
    """

    def __init__(self, base_url: str = "", timeout: float = 15.0,
                 client: httpx.AsyncClient | None = None):
        super().__init__(timeout=timeout, client=client)
        self._base_url = base_url.rstrip("/")

    @property
    def service_name(self) -> str:
        return "pos"

    def _store_url(self, tenant: TenantConfig, path: str = "") -> str:
        base = (tenant.pos_base_url or self._base_url).rstrip("/")
        if not base:
            raise MissingCredentials("POS service base URL is not configured")
        return f"{base}/stores/{tenant.tenant_id}{path}"

    # --- Products -------------------------------------------------------

    async def get_store_products(self, tenant: TenantConfig, limit: int = 20,
                                 category: str | None = None) -> list[Product]:
        params: dict[str, Any] = {"limit": limit}
        if category:
            params["category"] = category
        response = await self._request("GET", self._store_url(tenant, "/products"), params=params)
        products = [Product.from_api(p) for p in _unwrap_list(response.json(), "products", "items")]
        if category:
            wanted = category.lower()
            filtered = [p for p in products if not p.category or wanted in p.category.lower()]
            products = filtered or products
        return products[:limit]

    async def get_store_product(self, tenant: TenantConfig, product_id: str) -> Product | None:
        try:
            response = await self._request("GET", self._store_url(tenant, f"/products/{product_id}"))
        except NotFound:
            return None
        return Product.from_api(response.json())

    async def update_product_stock(self, tenant: TenantConfig, product_id: str, quantity_change: int) -> None:
        await self._request(
            "PATCH",
            self._store_url(tenant, f"/products/{product_id}/stock"),
            json={"quantity_change": quantity_change},
        )

    # --- Orders ---------------------------------------------------------

    async def create_order(self, tenant: TenantConfig, order: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", self._store_url(tenant, "/orders/"), json=order)
        logger.info("order_created", tenant_id=tenant.tenant_id, order_id=order.get("order_id"))
        return response.json() if response.content else order

    async def get_order(self, tenant: TenantConfig, order_id: str) -> dict[str, Any] | None:
        try:
            response = await self._request("GET", self._store_url(tenant, f"/orders/{order_id}"))
        except NotFound:
            return None
        return response.json()

    async def update_order(self, tenant: TenantConfig, order_id: str, order: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("PUT", self._store_url(tenant, f"/orders/{order_id}"), json=order)
        return response.json() if response.content else order

    async def update_order_status(self, tenant: TenantConfig, order_id: str, status: str) -> dict[str, Any]:
        response = await self._request(
            "PUT", self._store_url(tenant, f"/orders/{order_id}"), json={"status": status}
        )
        logger.info("order_status_updated", tenant_id=tenant.tenant_id, order_id=order_id, status=status)
        return response.json() if response.content else {"order_id": order_id, "status": status}

    async def initiate_payment(self, tenant: TenantConfig, order_id: str) -> dict[str, Any]:
        response = await self._request(
            "PUT", self._store_url(tenant, f"/orders/{order_id}/initiate-payment"), json={}
        )
        return response.json() if response.content else {}

    async def confirm_payment(self, tenant: TenantConfig, order_id: str) -> dict[str, Any]:
        """Confirm payment and generate the invoice; the response carries ``invoice_pdf_url``."""
        response = await self._request(
            "POST", self._store_url(tenant, f"/orders/{order_id}/confirm-payment"), json={}
        )
        return response.json() if response.content else {}

    async def get_order_history(self, tenant: TenantConfig, customer_id: str | None = None,
                                limit: int = 5) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if customer_id:
            params["customer_id"] = customer_id
        response = await self._request("GET", self._store_url(tenant, "/orders/"), params=params)
        return _unwrap_list(response.json(), "orders", "items")
