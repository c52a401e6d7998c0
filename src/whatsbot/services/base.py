"""Abstract service lifecycle interface and a shared httpx-backed base."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from whatsbot.core.errors import NotFound, PermanentExternalError, TransientExternalError
from whatsbot.log import get_logger

logger = get_logger(__name__)


class Service(ABC):
    """Base class for external collaborators with a start/stop lifecycle."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...


def error_detail(response: httpx.Response) -> str:
    """Best-effort extraction of a FastAPI-style ``detail`` from an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("message") or data.get("error")
        if detail:
            return detail if isinstance(detail, str) else str(detail)
    return response.text


class HttpService(Service):
    """Owns an httpx.AsyncClient and maps failures onto the error taxonomy.

    Transient failures (timeouts, transport errors, 5xx) are retried
    ``retries`` times before TransientExternalError is raised.
    """

    def __init__(self, timeout: float, client: httpx.AsyncClient | None = None, retries: int = 1):
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._retries = retries

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        logger.info("service_started", service=self.service_name)

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("service_stopped", service=self.service_name)

    async def health_check(self) -> bool:
        return self._client is not None and not self._client.is_closed

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            await self.start()
        attempts = max(self._retries, 0) + 1
        last_error: TransientExternalError | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, url, timeout=self._timeout, **kwargs)
            except httpx.TimeoutException as e:
                last_error = TransientExternalError(f"{self.service_name} timed out: {method} {url}")
                last_error.__cause__ = e
            except httpx.HTTPError as e:
                last_error = TransientExternalError(f"{self.service_name} request failed: {e}")
                last_error.__cause__ = e
            else:
                if response.status_code >= 500:
                    last_error = TransientExternalError(
                        f"{self.service_name} returned {response.status_code}: {error_detail(response)}"
                    )
                elif response.status_code == 404:
                    raise NotFound(f"{method} {url} not found", detail=error_detail(response), status=404)
                elif response.status_code >= 400:
                    raise PermanentExternalError(
                        f"{self.service_name} rejected {method} {url} ({response.status_code})",
                        detail=error_detail(response),
                        status=response.status_code,
                    )
                else:
                    return response
            logger.warning(
                "external_call_failed",
                service=self.service_name,
                method=method,
                attempt=attempt,
                error=str(last_error),
            )
        if last_error is None:
            raise TransientExternalError(f"{self.service_name} made no attempt: {method} {url}")
        raise last_error
