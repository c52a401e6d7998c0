"""Durable tenant sources: static YAML entries or DynamoDB tables."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from whatsbot.log import get_logger
from whatsbot.storage.dynamo import from_dynamo, is_conditional_failure, run_sync
from whatsbot.tenancy.models import TenantConfig

logger = get_logger(__name__)

# Attributes living in the store tokens table rather than the bot config table.
TOKEN_ATTRIBUTES = (
    "whatsappToken",
    "whatsappPhoneNumberId",
    "whatsappAppSecret",
    "verifyToken",
    "ownerNumber",
)


@dataclass(frozen=True, slots=True)
class TenantRef:
    tenant_id: str
    owner_number: str = ""


class TenantSource(ABC):
    @abstractmethod
    async def load(self, tenant_id: str) -> dict[str, Any] | None:
        """Raw tenant attributes (camelCase), or None if unknown."""
        ...

    @abstractmethod
    async def find_by_phone_id(self, phone_number_id: str) -> TenantRef | None:
        ...

    @abstractmethod
    async def verify_tokens(self) -> list[str]:
        ...

    @abstractmethod
    async def update_credentials(self, tenant_id: str, updates: dict[str, str]) -> None:
        """Overwrite credential attributes; raises KeyError for an unknown tenant."""


class StaticTenantSource(TenantSource):
    """Tenants declared in config.yaml; used for local runs and tests."""

    def __init__(self, tenants: list[TenantConfig]):
        self._tenants: dict[str, dict[str, Any]] = {
            t.tenant_id: t.model_dump(by_alias=True) for t in tenants
        }

    async def load(self, tenant_id: str) -> dict[str, Any] | None:
        data = self._tenants.get(tenant_id)
        return dict(data) if data else None

    async def find_by_phone_id(self, phone_number_id: str) -> TenantRef | None:
        for tenant_id, data in self._tenants.items():
            if str(data.get("whatsappPhoneNumberId")) == str(phone_number_id):
                return TenantRef(tenant_id=tenant_id, owner_number=data.get("ownerNumber") or "")
        return None

    async def verify_tokens(self) -> list[str]:
        return [d["verifyToken"] for d in self._tenants.values() if d.get("verifyToken")]

    async def update_credentials(self, tenant_id: str, updates: dict[str, str]) -> None:
        if tenant_id not in self._tenants:
            raise KeyError(tenant_id)
        self._tenants[tenant_id].update(updates)


class DynamoTenantSource(TenantSource):
    """Bot configs keyed by storeId plus the WhatsappStoreTokens table."""

    def __init__(self, config_table: Any, tokens_table: Any):
        self._config_table = config_table
        self._tokens_table = tokens_table

    async def load(self, tenant_id: str) -> dict[str, Any] | None:
        config = await run_sync(self._config_table.get_item, Key={"storeId": tenant_id})
        tokens = await run_sync(self._tokens_table.get_item, Key={"storeId": tenant_id})
        config_item = config.get("Item")
        tokens_item = tokens.get("Item")
        if not config_item and not tokens_item:
            return None
        data: dict[str, Any] = from_dynamo(config_item or {})
        for name in TOKEN_ATTRIBUTES:
            value = (tokens_item or {}).get(name)
            if value:
                data[name] = from_dynamo(value)
        data["storeId"] = tenant_id
        return data

    async def _scan(self, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            response = await run_sync(self._tokens_table.scan, **kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def find_by_phone_id(self, phone_number_id: str) -> TenantRef | None:
        items = await self._scan(
            FilterExpression=Attr("whatsappPhoneNumberId").eq(str(phone_number_id))
        )
        if not items:
            return None
        if len(items) > 1:
            logger.warning("duplicate_phone_mapping", phone_number_id=phone_number_id, count=len(items))
        item = items[0]
        return TenantRef(tenant_id=item["storeId"], owner_number=item.get("ownerNumber") or "")

    async def verify_tokens(self) -> list[str]:
        items = await self._scan(ProjectionExpression="verifyToken")
        return [i["verifyToken"] for i in items if i.get("verifyToken")]

    async def update_credentials(self, tenant_id: str, updates: dict[str, str]) -> None:
        names = {f"#a{i}": key for i, key in enumerate(updates)}
        values = {f":v{i}": value for i, value in enumerate(updates.values())}
        assignments = [f"#a{i} = :v{i}" for i in range(len(updates))]
        names["#updated"] = "updatedAt"
        values[":updated"] = datetime.now(timezone.utc).isoformat()
        assignments.append("#updated = :updated")
        try:
            await run_sync(
                self._tokens_table.update_item,
                Key={"storeId": tenant_id},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(storeId)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if is_conditional_failure(e):
                raise KeyError(tenant_id) from e
            raise
