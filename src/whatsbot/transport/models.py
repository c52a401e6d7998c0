"""Normalized inbound events and outbound plan item variants."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

from whatsbot.core.types import InboundKind


@dataclass(frozen=True, slots=True)
class NormalizedInbound:
    """One inbound WhatsApp message, independent of the envelope shape."""

    tenant_phone_id: str
    sender: str
    message_id: str
    timestamp: str
    kind: InboundKind
    payload: dict[str, Any] = field(default_factory=dict)
    text: str = ""
    action_id: Optional[str] = None
    action_title: Optional[str] = None

    @property
    def location(self) -> dict[str, Any] | None:
        if self.kind is InboundKind.LOCATION:
            return self.payload
        return None

    @property
    def media_id(self) -> str | None:
        if self.kind in (InboundKind.IMAGE, InboundKind.AUDIO, InboundKind.VIDEO, InboundKind.DOCUMENT):
            return self.payload.get("id")
        return None

    def describe(self) -> str:
        """Short textual form recorded as the user's transcript turn."""
        match self.kind:
            case InboundKind.TEXT:
                return self.text
            case InboundKind.INTERACTIVE:
                return f"[Selected: {self.action_id}]"
            case InboundKind.LOCATION:
                lat = self.payload.get("latitude")
                lng = self.payload.get("longitude")
                return f"[Shared location: {lat}, {lng}]"
            case InboundKind.IMAGE:
                caption = self.payload.get("caption") or ""
                return f"[Image] {caption}".strip()
            case _:
                return f"[{self.kind.value} message]"


# --- Outbound variants ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Text:
    body: str
    preview_url: bool = False


@dataclass(frozen=True, slots=True)
class Image:
    link: Optional[str] = None
    media_id: Optional[str] = None
    caption: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Document:
    link: Optional[str] = None
    media_id: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Video:
    link: Optional[str] = None
    media_id: Optional[str] = None
    caption: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Audio:
    link: Optional[str] = None
    media_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Sticker:
    link: Optional[str] = None
    media_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Location:
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ReplyButton:
    id: str
    title: str


@dataclass(frozen=True, slots=True)
class InteractiveButtons:
    body: str
    buttons: tuple[ReplyButton, ...]
    header_text: Optional[str] = None
    header_image: Optional[str] = None
    footer: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ListRow:
    id: str
    title: str
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ListSection:
    title: str
    rows: tuple[ListRow, ...]


@dataclass(frozen=True, slots=True)
class InteractiveList:
    body: str
    button: str
    sections: tuple[ListSection, ...]
    header_text: Optional[str] = None
    footer: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Template:
    name: str
    language: str = "en_US"
    components: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class Reaction:
    message_id: str
    emoji: str


@dataclass(frozen=True, slots=True)
class Contacts:
    contacts: tuple[dict[str, Any], ...]


OutboundItem = Union[
    Text, Image, Document, Video, Audio, Sticker, Location,
    InteractiveButtons, InteractiveList, Template, Reaction, Contacts,
]


def fallback_text(item: OutboundItem) -> str | None:
    """Plain-text rendition used when a rich message cannot be delivered."""
    match item:
        case Text():
            return None
        case InteractiveButtons(body=body, buttons=buttons, header_text=header):
            options = "\n".join(f"- {b.title}" for b in buttons)
            parts = [p for p in (header, body, options) if p]
            return "\n\n".join(parts)
        case InteractiveList(body=body, sections=sections, header_text=header):
            rows = "\n".join(
                f"- {row.title}" + (f" ({row.description})" if row.description else "")
                for section in sections
                for row in section.rows
            )
            parts = [p for p in (header, body, rows) if p]
            return "\n\n".join(parts)
        case Image(caption=caption, link=link) | Video(caption=caption, link=link):
            return "\n".join(p for p in (caption, link) if p) or None
        case Document(caption=caption, link=link, filename=filename):
            return "\n".join(p for p in (caption or filename, link) if p) or None
        case Location(latitude=lat, longitude=lng, name=name, address=address):
            label = " - ".join(p for p in (name, address) if p)
            return f"{label}\nhttps://maps.google.com/?q={lat},{lng}".strip()
        case _:
            return None


@dataclass(frozen=True, slots=True)
class PlannedMessage:
    item: OutboundItem
    recipient: Optional[str] = None  # None means the inbound sender


class OutboundPlan:
    """Ordered list of messages one turn wants delivered."""

    def __init__(self) -> None:
        self._messages: list[PlannedMessage] = []

    def add(self, item: OutboundItem, to: str | None = None) -> None:
        self._messages.append(PlannedMessage(item=item, recipient=to))

    def extend(self, other: OutboundPlan) -> None:
        self._messages.extend(other._messages)

    def text(self, body: str, to: str | None = None) -> None:
        self.add(Text(body=body), to=to)

    @property
    def messages(self) -> list[PlannedMessage]:
        return list(self._messages)

    def __iter__(self) -> Iterator[PlannedMessage]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __bool__(self) -> bool:
        return bool(self._messages)
