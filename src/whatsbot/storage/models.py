"""Data models for storage layer."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from whatsbot.core.types import TurnRole


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UserTurn:
    text: str
    raw_type: str = "text"


@dataclass(frozen=True, slots=True)
class AssistantTurn:
    text: Optional[str] = None
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolTurn:
    tool_call_id: str
    name: str
    result: str


@dataclass(frozen=True, slots=True)
class SystemNote:
    text: str


Turn = Union[UserTurn, AssistantTurn, ToolTurn, SystemNote]


def turn_to_dict(turn: Turn) -> dict[str, Any]:
    match turn:
        case UserTurn(text=text, raw_type=raw_type):
            return {"role": TurnRole.USER.value, "text": text, "raw_type": raw_type}
        case AssistantTurn(text=text, tool_calls=calls):
            data: dict[str, Any] = {"role": TurnRole.ASSISTANT.value, "text": text}
            if calls:
                data["tool_calls"] = [
                    {"id": c.id, "name": c.name, "arguments": c.arguments} for c in calls
                ]
            return data
        case ToolTurn(tool_call_id=call_id, name=name, result=result):
            return {"role": TurnRole.TOOL.value, "tool_call_id": call_id, "name": name, "result": result}
        case SystemNote(text=text):
            return {"role": TurnRole.SYSTEM.value, "text": text}
    raise TypeError(f"Not a turn: {turn!r}")


def turn_from_dict(data: dict[str, Any]) -> Turn:
    role = data.get("role")
    match role:
        case TurnRole.USER:
            return UserTurn(text=data.get("text", ""), raw_type=data.get("raw_type", "text"))
        case TurnRole.ASSISTANT:
            calls = tuple(
                ToolCall(id=c["id"], name=c["name"], arguments=c.get("arguments") or {})
                for c in data.get("tool_calls") or []
            )
            return AssistantTurn(text=data.get("text"), tool_calls=calls)
        case TurnRole.TOOL:
            return ToolTurn(
                tool_call_id=data["tool_call_id"], name=data.get("name", ""), result=data.get("result", "")
            )
        case TurnRole.SYSTEM:
            return SystemNote(text=data.get("text", ""))
    raise ValueError(f"Unknown turn role: {role}")


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def session_key(tenant_id: str, user: str) -> str:
    return f"{tenant_id}:{user}"


@dataclass
class ConversationRecord:
    """Per-(tenant, user) conversation state owned by the session store.

    ``version`` is the ``updated_at`` value observed at load time and is the
    compare-and-set token for the next commit (None for never-stored records).
    """

    tenant_id: str
    user: str
    state: str
    session_id: str = field(default_factory=new_session_id)
    last_message_type: str = ""
    turns: list[Turn] = field(default_factory=list)
    scratch: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: Optional[float] = None
    expires_at: Optional[float] = None
    version: Optional[float] = None

    @property
    def key(self) -> str:
        return session_key(self.tenant_id, self.user)

    def add_turn(self, turn: Turn) -> None:
        self.turns.append(turn)

    def note(self, text: str) -> None:
        self.turns.append(SystemNote(text=text))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionKey": self.key,
            "tenantId": self.tenant_id,
            "user": self.user,
            "sessionId": self.session_id,
            "state": self.state,
            "lastMessageType": self.last_message_type,
            "turns": [turn_to_dict(t) for t in self.turns],
            "scratch": self.scratch,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationRecord:
        updated_at = data.get("updatedAt")
        return cls(
            tenant_id=data["tenantId"],
            user=data["user"],
            state=data["state"],
            session_id=data.get("sessionId") or new_session_id(),
            last_message_type=data.get("lastMessageType", ""),
            turns=[turn_from_dict(t) for t in data.get("turns") or []],
            scratch=dict(data.get("scratch") or {}),
            created_at=float(data.get("createdAt") or time.time()),
            updated_at=float(updated_at) if updated_at is not None else None,
            expires_at=float(data["expiresAt"]) if data.get("expiresAt") is not None else None,
            version=float(updated_at) if updated_at is not None else None,
        )


@dataclass
class ViralDeal:
    deal_id: str
    tenant_id: str
    restaurant_owner: str
    restaurant: dict[str, Any] = field(default_factory=dict)
    deal: dict[str, Any] = field(default_factory=dict)
    content: dict[str, Any] = field(default_factory=dict)
    status: str = "submitted"
    posting_status: str = ""
    platforms_posted: list[str] = field(default_factory=list)
    platforms_failed: list[str] = field(default_factory=list)
    posted_at: Optional[str] = None
    pipeline_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dealId": self.deal_id,
            "tenantId": self.tenant_id,
            "restaurantOwner": self.restaurant_owner,
            "restaurant": self.restaurant,
            "deal": self.deal,
            "content": self.content,
            "status": self.status,
            "postingStatus": self.posting_status,
            "platformsPosted": self.platforms_posted,
            "platformsFailed": self.platforms_failed,
            "postedAt": self.posted_at,
            "pipelineId": self.pipeline_id,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ViralDeal:
        return cls(
            deal_id=data["dealId"],
            tenant_id=data.get("tenantId", ""),
            restaurant_owner=data.get("restaurantOwner", ""),
            restaurant=dict(data.get("restaurant") or {}),
            deal=dict(data.get("deal") or {}),
            content=dict(data.get("content") or {}),
            status=data.get("status", "submitted"),
            posting_status=data.get("postingStatus", ""),
            platforms_posted=list(data.get("platformsPosted") or []),
            platforms_failed=list(data.get("platformsFailed") or []),
            posted_at=data.get("postedAt"),
            pipeline_id=data.get("pipelineId"),
            created_at=float(data.get("createdAt") or time.time()),
        )
