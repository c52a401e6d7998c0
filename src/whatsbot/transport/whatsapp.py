"""WhatsApp Cloud API adapter: handshake, signature check, normalization and rendering."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Iterable

import httpx

from whatsbot.core.errors import (
    InvalidSignature,
    MalformedPayload,
    TransportError,
    UnauthorizedVerification,
)
from whatsbot.core.types import InboundKind, normalize_contact
from whatsbot.log import get_logger
from whatsbot.tenancy.models import TenantConfig
from whatsbot.transport.base import TransportAdapter
from whatsbot.transport.models import (
    Audio,
    Contacts,
    Document,
    Image,
    InteractiveButtons,
    InteractiveList,
    Location,
    NormalizedInbound,
    OutboundItem,
    Reaction,
    Sticker,
    Template,
    Text,
    Video,
)

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"

TEXT_LIMIT = 4096
CAPTION_LIMIT = 1024
BODY_LIMIT = 1024
HEADER_LIMIT = 60
FOOTER_LIMIT = 60
BUTTON_TITLE_LIMIT = 20
ROW_TITLE_LIMIT = 24
ROW_DESCRIPTION_LIMIT = 72
MAX_BUTTONS = 3
MAX_ROWS = 10


def verify_handshake(mode: str | None, challenge: str | None, token: str | None,
                     accepted_tokens: Iterable[str]) -> str:
    """Return the challenge for a valid subscription handshake."""
    if mode != "subscribe" or not token or challenge is None:
        raise UnauthorizedVerification("Invalid verification request")
    for candidate in accepted_tokens:
        if candidate and hmac.compare_digest(candidate, token):
            return challenge
    raise UnauthorizedVerification("Verify token mismatch")


def compute_signature(raw_body: bytes, app_secret: str) -> str:
    digest = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(raw_body: bytes, signature_header: str | None, app_secret: str,
                     bypass: bool = False) -> None:
    """HMAC-SHA256 over the exact bytes received, compared in constant time."""
    if bypass:
        logger.warning("signature_check_bypassed")
        return
    if not signature_header:
        raise InvalidSignature("Missing signature header")
    if not app_secret:
        raise InvalidSignature("Tenant has no app secret configured")
    expected = compute_signature(raw_body, app_secret)
    if not hmac.compare_digest(expected, signature_header.strip()):
        raise InvalidSignature("Signature mismatch")


def extract_phone_number_id(envelope: Any) -> str | None:
    """Business phone number id from entry[0].changes[0].value.metadata."""
    try:
        value = envelope["entry"][0]["changes"][0]["value"]
        phone_id = value["metadata"]["phone_number_id"]
    except (KeyError, IndexError, TypeError):
        return None
    return str(phone_id) if phone_id else None


def decode_body(raw_body: bytes) -> dict[str, Any]:
    try:
        envelope = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Body is not valid JSON: {e}") from e
    if not isinstance(envelope, dict):
        raise MalformedPayload("Envelope must be a JSON object")
    return envelope


def parse_envelope(envelope: dict[str, Any]) -> list[NormalizedInbound]:
    """Normalize every message carried by a webhook envelope.

    Status-only callbacks (delivery receipts) yield an empty list.
    """
    if envelope.get("object") != "whatsapp_business_account":
        raise MalformedPayload("Unexpected envelope object")
    entries = envelope.get("entry")
    if not isinstance(entries, list) or not entries:
        raise MalformedPayload("Envelope has no entries")

    events: list[NormalizedInbound] = []
    for entry in entries:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            phone_id = str((value.get("metadata") or {}).get("phone_number_id") or "")
            for message in value.get("messages") or []:
                events.append(_normalize_message(phone_id, message))
    return events


def _normalize_message(phone_id: str, message: dict[str, Any]) -> NormalizedInbound:
    try:
        sender = str(message["from"])
        message_id = str(message["id"])
    except KeyError as e:
        raise MalformedPayload(f"Message missing field {e}") from e

    raw_type = message.get("type", "unknown")
    try:
        kind = InboundKind(raw_type)
    except ValueError:
        kind = InboundKind.UNKNOWN
    # Quick-reply taps on template buttons arrive as type "button".
    if raw_type == "button":
        kind = InboundKind.INTERACTIVE

    payload: dict[str, Any] = {}
    text = ""
    action_id = None
    action_title = None
    match kind:
        case InboundKind.TEXT:
            payload = message.get("text") or {}
            text = str(payload.get("body", ""))
        case InboundKind.INTERACTIVE:
            payload = message.get("interactive") or message.get("button") or {}
            reply = payload.get("button_reply") or payload.get("list_reply")
            if reply:
                action_id = reply.get("id")
                action_title = reply.get("title")
            elif raw_type == "button":
                action_id = payload.get("payload")
                action_title = payload.get("text")
            if not action_id:
                raise MalformedPayload("Interactive message without a reply id")
        case InboundKind.UNKNOWN:
            payload = {"type": raw_type}
        case _:
            payload = message.get(raw_type) or {}
            text = str(payload.get("caption", "")) if isinstance(payload, dict) else ""

    return NormalizedInbound(
        tenant_phone_id=phone_id,
        sender=sender,
        message_id=message_id,
        timestamp=str(message.get("timestamp", "")),
        kind=kind,
        payload=payload,
        text=text,
        action_id=action_id,
        action_title=action_title,
    )


def validate_and_parse(raw_body: bytes, signature_header: str | None, app_secret: str,
                       bypass: bool = False) -> list[NormalizedInbound]:
    verify_signature(raw_body, signature_header, app_secret, bypass=bypass)
    return parse_envelope(decode_body(raw_body))


# --- Outbound rendering -------------------------------------------------------


def _clip(text: str | None, limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _media(link: str | None, media_id: str | None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"id": media_id} if media_id else {"link": link}
    body.update({k: v for k, v in extra.items() if v})
    return body


def build_payload(item: OutboundItem, recipient: str) -> dict[str, Any]:
    """Map an outbound variant to the Cloud API request body."""
    payload: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": normalize_contact(recipient),
    }
    match item:
        case Text(body=body, preview_url=preview):
            payload["type"] = "text"
            payload["text"] = {"body": _clip(body, TEXT_LIMIT), "preview_url": preview}
        case Image(link=link, media_id=media_id, caption=caption):
            payload["type"] = "image"
            payload["image"] = _media(link, media_id, caption=_clip(caption, CAPTION_LIMIT))
        case Document(link=link, media_id=media_id, caption=caption, filename=filename):
            payload["type"] = "document"
            payload["document"] = _media(
                link, media_id, caption=_clip(caption, CAPTION_LIMIT), filename=filename
            )
        case Video(link=link, media_id=media_id, caption=caption):
            payload["type"] = "video"
            payload["video"] = _media(link, media_id, caption=_clip(caption, CAPTION_LIMIT))
        case Audio(link=link, media_id=media_id):
            payload["type"] = "audio"
            payload["audio"] = _media(link, media_id)
        case Sticker(link=link, media_id=media_id):
            payload["type"] = "sticker"
            payload["sticker"] = _media(link, media_id)
        case Location(latitude=lat, longitude=lng, name=name, address=address):
            payload["type"] = "location"
            location: dict[str, Any] = {"latitude": lat, "longitude": lng}
            if name:
                location["name"] = name
            if address:
                location["address"] = address
            payload["location"] = location
        case InteractiveButtons():
            payload["type"] = "interactive"
            payload["interactive"] = _button_interactive(item)
        case InteractiveList():
            payload["type"] = "interactive"
            payload["interactive"] = _list_interactive(item)
        case Template(name=name, language=language, components=components):
            payload["type"] = "template"
            template: dict[str, Any] = {"name": name, "language": {"code": language}}
            if components:
                template["components"] = list(components)
            payload["template"] = template
        case Reaction(message_id=message_id, emoji=emoji):
            payload["type"] = "reaction"
            payload["reaction"] = {"message_id": message_id, "emoji": emoji}
        case Contacts(contacts=contacts):
            payload["type"] = "contacts"
            payload["contacts"] = list(contacts)
        case _:
            raise TypeError(f"Unsupported outbound item: {type(item).__name__}")
    return payload


def _button_interactive(item: InteractiveButtons) -> dict[str, Any]:
    interactive: dict[str, Any] = {
        "type": "button",
        "body": {"text": _clip(item.body, BODY_LIMIT)},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": b.id, "title": _clip(b.title, BUTTON_TITLE_LIMIT)}}
                for b in item.buttons[:MAX_BUTTONS]
            ]
        },
    }
    if item.header_image:
        interactive["header"] = {"type": "image", "image": {"link": item.header_image}}
    elif item.header_text:
        interactive["header"] = {"type": "text", "text": _clip(item.header_text, HEADER_LIMIT)}
    if item.footer:
        interactive["footer"] = {"text": _clip(item.footer, FOOTER_LIMIT)}
    return interactive


def _list_interactive(item: InteractiveList) -> dict[str, Any]:
    sections = []
    remaining = MAX_ROWS
    for section in item.sections:
        rows = []
        for row in section.rows[:remaining]:
            entry = {"id": row.id, "title": _clip(row.title, ROW_TITLE_LIMIT)}
            if row.description:
                entry["description"] = _clip(row.description, ROW_DESCRIPTION_LIMIT)
            rows.append(entry)
        remaining -= len(rows)
        sections.append({"title": _clip(section.title, ROW_TITLE_LIMIT), "rows": rows})
    interactive: dict[str, Any] = {
        "type": "list",
        "body": {"text": _clip(item.body, BODY_LIMIT)},
        "action": {"button": _clip(item.button, BUTTON_TITLE_LIMIT), "sections": sections},
    }
    if item.header_text:
        interactive["header"] = {"type": "text", "text": _clip(item.header_text, HEADER_LIMIT)}
    if item.footer:
        interactive["footer"] = {"text": _clip(item.footer, FOOTER_LIMIT)}
    return interactive


class WhatsAppTransport(TransportAdapter):
    """Delivers outbound items through the WhatsApp Cloud API messages endpoint."""

    def __init__(self, base_url: str, api_version: str, timeout: float,
                 client: httpx.AsyncClient | None = None):
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def platform_name(self) -> str:
        return "whatsapp"

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        logger.info("whatsapp_transport_started", api_version=self._api_version)

    async def stop(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("whatsapp_transport_stopped")

    def messages_url(self, phone_number_id: str) -> str:
        return f"{self._base_url}/{self._api_version}/{phone_number_id}/messages"

    async def render(self, item: OutboundItem, tenant: TenantConfig, recipient: str) -> str:
        tenant.require_transport()
        if self._client is None:
            await self.start()
        payload = build_payload(item, recipient)
        try:
            response = await self._client.post(
                self.messages_url(tenant.phone_number_id),
                json=payload,
                headers={"Authorization": f"Bearer {tenant.whatsapp_token}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Send timed out: {e}", transient=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Send failed: {e}", transient=True) from e

        if response.status_code >= 400:
            detail = response.text[:500]
            logger.warning(
                "whatsapp_send_rejected",
                status=response.status_code,
                message_type=payload["type"],
                detail=detail,
            )
            raise TransportError(
                f"WhatsApp API returned {response.status_code}: {detail}",
                status=response.status_code,
                transient=response.status_code >= 500 or response.status_code == 429,
            )

        data = response.json()
        messages = data.get("messages") or [{}]
        message_id = messages[0].get("id", "")
        logger.debug("whatsapp_message_sent", message_type=payload["type"], provider_id=message_id)
        return message_id

    async def download_media(self, media_id: str, tenant: TenantConfig) -> tuple[bytes, str]:
        """Fetch inbound media bytes and mime type by media id."""
        tenant.require_transport()
        if self._client is None:
            await self.start()
        headers = {"Authorization": f"Bearer {tenant.whatsapp_token}"}
        try:
            meta = await self._client.get(
                f"{self._base_url}/{self._api_version}/{media_id}", headers=headers
            )
            meta.raise_for_status()
            info = meta.json()
            content = await self._client.get(info["url"], headers=headers)
            content.raise_for_status()
        except (httpx.HTTPError, KeyError) as e:
            raise TransportError(f"Media download failed: {e}", transient=True) from e
        return content.content, info.get("mime_type", "application/octet-stream")
