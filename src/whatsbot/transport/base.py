"""Abstract transport adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from whatsbot.transport.models import OutboundItem

if TYPE_CHECKING:
    from whatsbot.tenancy.models import TenantConfig


class TransportAdapter(ABC):
    """Base class for outbound messaging transports.

    To add a new provider, subclass this and implement all abstract methods.
    """

    @abstractmethod
    async def start(self) -> None:
        """Open network resources."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def render(self, item: OutboundItem, tenant: TenantConfig, recipient: str) -> str:
        """Deliver a single outbound item and return the provider message id.

        Raises TransportError on failure; ``transient`` tells the caller
        whether a retry may succeed.
        """
        ...

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...
