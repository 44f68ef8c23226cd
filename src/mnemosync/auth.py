"""Bearer-token authentication for the MCP server.

Settings come from the environment: ``MCP_AUTH_KEY`` enables auth,
``MCP_AUTH_SCOPES`` (comma-separated) and ``MCP_AUTH_ROLE`` shape the
token granted to callers presenting that key.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field

from fastmcp.server.auth import AccessToken
from fastmcp.server.auth import TokenVerifier

logger = logging.getLogger(__name__)

WILDCARD_SCOPE = "mnemosync:all"
_CLIENT_ID = "mnemosync-client"


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    stripped = raw.strip()
    return stripped or None


@dataclass(frozen=True)
class AuthSettings:
    api_key: str | None = None
    scopes: list[str] = field(default_factory=lambda: [WILDCARD_SCOPE])
    role: str | None = None

    @property
    def enabled(self) -> bool:
        return self.api_key is not None

    @classmethod
    def from_env(cls) -> AuthSettings:
        raw_scopes = os.getenv("MCP_AUTH_SCOPES", "")
        scopes = [s.strip() for s in raw_scopes.split(",") if s.strip()]
        return cls(
            api_key=_env_str("MCP_AUTH_KEY"),
            scopes=scopes or [WILDCARD_SCOPE],
            role=_env_str("MCP_AUTH_ROLE"),
        )


class APIKeyVerifier(TokenVerifier):
    """Accepts one static bearer token and grants it fixed scopes and claims."""

    def __init__(
        self,
        api_key: str,
        *,
        scopes: list[str] | None = None,
        claims: Mapping[str, object] | None = None,
    ) -> None:
        normalized = api_key.strip()
        if not normalized:
            raise ValueError("api_key must be a non-empty, non-whitespace string")
        super().__init__()
        self._api_key = normalized
        self._scopes = list(scopes) if scopes else [WILDCARD_SCOPE]
        self._claims = dict(claims or {})

    async def verify_token(self, token: str) -> AccessToken | None:
        if hmac.compare_digest(token.encode("utf-8"), self._api_key.encode("utf-8")):
            return AccessToken(
                token=token,
                client_id=_CLIENT_ID,
                scopes=list(self._scopes),
                expires_at=None,
                claims=dict(self._claims),
            )
        fingerprint = hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
        logger.debug("Rejected MCP token (len=%d, fp=%s)", len(token), fingerprint)
        return None


def create_mcp_auth(settings: AuthSettings | None = None) -> APIKeyVerifier | None:
    """Build a verifier when an API key is configured, else None."""
    settings = settings or AuthSettings.from_env()
    if not settings.enabled:
        return None
    claims: dict[str, object] = {}
    if settings.role is not None:
        claims["role"] = settings.role
    return APIKeyVerifier(settings.api_key, scopes=settings.scopes, claims=claims)
