"""LLM client abstraction with an OpenAI chat-completions backend."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import openai

from whatsbot.core.errors import MissingCredentials, PermanentExternalError, TransientExternalError
from whatsbot.log import get_logger
from whatsbot.storage.models import ToolCall
from whatsbot.tenancy.models import TenantConfig

logger = get_logger(__name__)


@dataclass
class AIResponse:
    """Unified response from the chat backend."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = None


class LLMClient(ABC):
    """Abstract base class for chat backends."""

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        tools: list[dict[str, Any]] | None = None,
    ) -> AIResponse:
        """Send a conversation and return either text or tool calls.

        Raises TransientExternalError / PermanentExternalError.
        """
        ...


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("tool_arguments_unparseable", raw=raw[:200])
        return {}
    return value if isinstance(value, dict) else {}


class OpenAIClient(LLMClient):
    """chat.completions with function tools and ``tool_choice="auto"``."""

    def __init__(self, api_key: str, timeout: float = 30.0, max_retries: int = 1):
        if not api_key:
            raise MissingCredentials("OpenAI API key is not configured")
        self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=max_retries)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        tools: list[dict[str, Any]] | None = None,
    ) -> AIResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        logger.debug("api_request", model=model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError,
                openai.InternalServerError) as e:
            raise TransientExternalError(f"LLM request failed: {e}") from e
        except openai.APIStatusError as e:
            raise PermanentExternalError(
                f"LLM rejected the request ({e.status_code})", detail=str(e), status=e.status_code
            ) from e

        message = response.choices[0].message
        calls = [
            ToolCall(id=c.id, name=c.function.name, arguments=_parse_arguments(c.function.arguments))
            for c in message.tool_calls or []
        ]
        usage = response.usage
        logger.debug(
            "api_response",
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            tool_calls=len(calls),
        )
        return AIResponse(
            text=message.content or "",
            tool_calls=calls,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            raw=response,
        )


class LLMClientPool:
    """One client per tenant API key; tenants never share credentials."""

    def __init__(self, timeout: float = 30.0, max_retries: int = 1, client: LLMClient | None = None):
        self._timeout = timeout
        self._max_retries = max_retries
        self._shared = client
        self._clients: dict[str, LLMClient] = {}

    def for_tenant(self, tenant: TenantConfig) -> LLMClient:
        if self._shared is not None:
            return self._shared
        key = tenant.openai_api_key
        if not key:
            raise MissingCredentials(f"Tenant '{tenant.tenant_id}' has no OpenAI API key")
        client = self._clients.get(key)
        if client is None:
            client = OpenAIClient(key, timeout=self._timeout, max_retries=self._max_retries)
            self._clients[key] = client
        return client
