"""Exception taxonomy shared by every component."""

from __future__ import annotations

DETAIL_LIMIT = 1024


class WhatsbotError(Exception):
    """Base class for all whatsbot errors."""

    status_code: int = 500


# --- Ingress -----------------------------------------------------------------


class IngressError(WhatsbotError):
    status_code = 400


class InvalidSignature(IngressError):
    status_code = 403


class MalformedPayload(IngressError):
    status_code = 400


class UnknownTenant(IngressError):
    status_code = 404


class UnauthorizedVerification(IngressError):
    status_code = 403


# --- Configuration -----------------------------------------------------------


class ConfigError(WhatsbotError):
    status_code = 500


class TenantNotConfigured(ConfigError):
    pass


class MissingCredentials(ConfigError):
    pass


# --- External services -------------------------------------------------------


class ExternalServiceError(WhatsbotError):
    status_code = 502


class TransientExternalError(ExternalServiceError):
    """Timeout, network failure or 5xx from a collaborator. Safe to retry once."""


class PermanentExternalError(ExternalServiceError):
    """A 4xx rejection; carries the backend detail for the user-facing message."""

    def __init__(self, message: str, detail: str = "", status: int | None = None):
        super().__init__(message)
        self.detail = truncate_detail(detail or message)
        self.status = status


class NotFound(PermanentExternalError):
    pass


class TransportError(ExternalServiceError):
    """Outbound delivery failure reported by the WhatsApp Cloud API."""

    def __init__(self, message: str, status: int | None = None, transient: bool = False):
        super().__init__(message)
        self.status = status
        self.transient = transient


# --- Internal ----------------------------------------------------------------


class ConcurrentUpdateError(WhatsbotError):
    """Session commit lost a compare-and-set race."""


def truncate_detail(detail: str, limit: int = DETAIL_LIMIT) -> str:
    if len(detail) <= limit:
        return detail
    return detail[: limit - 3] + "..."
