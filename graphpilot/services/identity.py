from __future__ import annotations

from dataclasses import dataclass
import logging
import time

import httpx

from graphpilot.core.config import get_settings
from graphpilot.core.errors import AuthError, ConfigurationError
from graphpilot.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "identity"


@dataclass(frozen=True)
class VerifiedIdentity:
    user_id: str
    email: str | None = None


def parse_bearer_token(authorization: str | None) -> str:
    # Accept only the "Bearer <token>" form with a non-empty token.
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing Authorization Bearer token")
    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise AuthError("Missing Authorization Bearer token")
    return token


class IdentityVerifier:
    """Resolve bearer tokens to user ids via the identity provider's user endpoint."""

    def __init__(self, *, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    def ensure_configured(self) -> None:
        settings = get_settings()
        if not settings.identity_url or not settings.identity_service_key:
            raise ConfigurationError("Server configuration error")

    async def verify_token(self, token: str) -> VerifiedIdentity:
        self.ensure_configured()
        settings = get_settings()
        url = f"{settings.identity_url.rstrip('/')}/auth/v1/user"
        headers = {
            "Authorization": f"Bearer {token}",
            "apikey": settings.identity_service_key,
        }

        start = time.monotonic()
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers)
            else:
                timeout = settings.ext_call_timeout_ms / 1000
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("identity_request_failed error=%s", type(exc).__name__)
            raise AuthError("Authentication failed") from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        # A 4xx is a rejected token, not an outage; only 5xx counts against availability.
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=latency_ms,
            success=response.status_code < 500,
        )
        if response.status_code >= 400:
            logger.info("identity_token_rejected status=%s", response.status_code)
            raise AuthError("Authentication failed")

        try:
            body = response.json()
        except ValueError as exc:
            raise AuthError("Authentication failed") from exc
        user_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise AuthError("Authentication failed")
        email = body.get("email")
        return VerifiedIdentity(user_id=user_id, email=email if isinstance(email, str) else None)
