from __future__ import annotations

from typing import Any


class CopilotError(Exception):
    """Base error for graphpilot; carries the HTTP status and client-facing code."""

    status_code = 500
    code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        # Additional envelope fields the client may branch on.
        self.extra = extra or {}


class AuthError(CopilotError):
    """Missing or invalid bearer token."""

    status_code = 401


class EntitlementError(CopilotError):
    """Plan, organization policy, or mode does not permit the request."""

    status_code = 403


class QuotaExceededError(CopilotError):
    """Monthly token quota is exhausted."""

    status_code = 402
    code = "QUOTA_EXCEEDED"


class ValidationError(CopilotError):
    """Malformed request body."""

    status_code = 400


class ModelError(CopilotError):
    """Provider call failed or returned unrepairable output."""

    status_code = 500


class ConfigurationError(CopilotError):
    """Missing server secrets or store configuration."""

    status_code = 500


class BackendNotConfiguredError(ConfigurationError):
    """The AI backend has no credentials configured."""

    status_code = 503
