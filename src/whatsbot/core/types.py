"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class TenantKind(StrEnum):
    POS = "pos"
    DEALS = "deals"
    VIRAL_AGENCY = "viral_agency"


class InboundKind(StrEnum):
    TEXT = "text"
    INTERACTIVE = "interactive"
    LOCATION = "location"
    IMAGE = "image"
    AUDIO = "audio"
    DOCUMENT = "document"
    VIDEO = "video"
    UNKNOWN = "unknown"


class TurnRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


def normalize_contact(number: str | None) -> str:
    """Strip '+', spaces and dashes so phone numbers compare reliably."""
    if not number:
        return ""
    return "".join(ch for ch in str(number) if ch.isdigit())
