from __future__ import annotations

from graphpilot.core.errors import AuthError
from graphpilot.services.identity import VerifiedIdentity


class FakeIdentityVerifier:
    # Maps bearer tokens straight to user ids; unknown tokens fail like the real provider.
    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self._tokens = dict(tokens or {})
        self.verified: list[str] = []

    def add(self, token: str, user_id: str) -> None:
        self._tokens[token] = user_id

    def ensure_configured(self) -> None:
        return None

    async def verify_token(self, token: str) -> VerifiedIdentity:
        user_id = self._tokens.get(token)
        if user_id is None:
            raise AuthError("Authentication failed")
        self.verified.append(token)
        return VerifiedIdentity(user_id=user_id)
