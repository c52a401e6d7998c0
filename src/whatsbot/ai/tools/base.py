"""Abstract tool interface for OpenAI function calling."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from whatsbot.tenancy.models import TenantConfig
from whatsbot.transport.models import OutboundPlan


@dataclass(slots=True)
class ToolContext:
    """Per-call scope: who is asking, for which tenant, and where messages go."""

    tenant: TenantConfig
    user: str
    plan: OutboundPlan


class Tool(ABC):
    """Base class for all model-callable tools.

    ``execute`` returns a short text result for the model. Tools that show
    something to the user append to ``context.plan`` and say what they sent.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique function name sent to the chat API."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> str:
        ...

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the chat-completions ``tools`` entry format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }
