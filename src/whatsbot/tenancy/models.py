"""Per-tenant configuration snapshot."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from whatsbot.core.errors import MissingCredentials
from whatsbot.core.types import TenantKind, normalize_contact

_KIND_ALIASES = {
    "": TenantKind.POS,
    "pos": TenantKind.POS,
    "store": TenantKind.POS,
    "deals": TenantKind.DEALS,
    "lobanglah": TenantKind.DEALS,
    "viral_agency": TenantKind.VIRAL_AGENCY,
    "viralagency": TenantKind.VIRAL_AGENCY,
    "socialagency": TenantKind.VIRAL_AGENCY,
}


class TenantConfig(BaseModel):
    """Read-only tenant snapshot.

    Field aliases follow the attribute names used in the tenant tables so a
    DynamoDB item can be validated directly with ``TenantConfig.model_validate``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    tenant_id: str = Field(alias="storeId")
    kind: TenantKind = Field(default=TenantKind.POS, alias="botType")

    # Transport
    whatsapp_token: str = Field(default="", alias="whatsappToken")
    phone_number_id: str = Field(default="", alias="whatsappPhoneNumberId")
    app_secret: str = Field(default="", alias="whatsappAppSecret")
    verify_token: str = Field(default="", alias="verifyToken")

    # LLM
    openai_api_key: str = Field(default="", alias="openAiApiKey")
    openai_model: str = Field(default="gpt-4o-mini", alias="openaiModel")
    temperature: float = 0.7

    # Optional collaborators
    google_maps_api_key: str = Field(default="", alias="googleMapsApiKey")
    replicate_api_key: str = Field(default="", alias="replicateApiKey")
    n8n_webhook_url: str = Field(default="", alias="n8nWebhookUrl")
    pos_base_url: str = Field(default="", alias="posFastapiBaseUrl")

    # Business
    owner_number: str = Field(default="", alias="ownerNumber")
    store_name: str = Field(default="", alias="storeName")
    business_context: str = Field(default="", alias="businessContext")
    s3_context_bucket: str = Field(default="", alias="s3ContextBucket")
    s3_context_key: str = Field(default="", alias="s3ContextKey")
    currency: str = "SGD"
    paynow_target: str = Field(default="", alias="paynowTarget")
    todays_offer_enabled: bool = Field(default=True, alias="todaysOfferEnabled")
    session_ttl_hours: Optional[float] = Field(default=None, alias="sessionTtlHours")

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> TenantKind:
        if isinstance(value, TenantKind):
            return value
        key = str(value or "").strip().lower().replace("-", "_")
        if key in _KIND_ALIASES:
            return _KIND_ALIASES[key]
        if key.replace("_", "") in _KIND_ALIASES:
            return _KIND_ALIASES[key.replace("_", "")]
        raise ValueError(f"Unknown tenant kind: {value}")

    @field_validator("temperature", mode="before")
    @classmethod
    def _coerce_temperature(cls, value: Any) -> float:
        if value in (None, ""):
            return 0.7
        return float(value)

    def require_transport(self) -> None:
        """Raise MissingCredentials unless outbound messaging is possible."""
        if not self.whatsapp_token or not self.phone_number_id:
            raise MissingCredentials(
                f"Tenant '{self.tenant_id}' has no WhatsApp token or phone number id"
            )

    def is_owner(self, contact: str) -> bool:
        owner = normalize_contact(self.owner_number)
        return bool(owner) and owner == normalize_contact(contact)

    @property
    def display_name(self) -> str:
        return self.store_name or "our store"
