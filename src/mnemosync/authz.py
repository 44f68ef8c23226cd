"""Role and scope authorization for MCP tools.

Checks run only when ``MCP_AUTHZ_ENABLED`` is truthy. A token passes when
it holds the wildcard scope or any scope listed for the tool; roles in
the token claims expand into scopes via ``_ROLE_SCOPES``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from fastmcp.server.auth import AccessToken

from mnemosync.auth import WILDCARD_SCOPE

MEMORY_READ = "mnemosync:memory:read"
MEMORY_WRITE = "mnemosync:memory:write"
SHARING_WRITE = "mnemosync:sharing:write"
SHARING_ADMIN = "mnemosync:sharing:admin"
MAINTENANCE_ADMIN = "mnemosync:maintenance:admin"

_ROLE_SCOPES: dict[str, set[str]] = {
    "viewer": {MEMORY_READ},
    "editor": {MEMORY_READ, MEMORY_WRITE, SHARING_WRITE},
    "admin": {
        MEMORY_READ,
        MEMORY_WRITE,
        SHARING_WRITE,
        SHARING_ADMIN,
        MAINTENANCE_ADMIN,
    },
}

_TOOL_REQUIRED_SCOPES: dict[str, set[str]] = {
    "write_short_term_memory": {MEMORY_WRITE},
    "consolidate": {MEMORY_WRITE},
    "semantic_search": {MEMORY_READ},
    "find_similar": {MEMORY_READ},
    "get_shared_memories": {MEMORY_READ},
    "get_pool_memories": {MEMORY_READ},
    "share_memory": {SHARING_WRITE},
    "broadcast_memory": {SHARING_WRITE},
    "request_access": {SHARING_WRITE},
    "add_to_pool": {SHARING_WRITE},
    "sync_agent_knowledge": {SHARING_WRITE},
    "process_access_request": {SHARING_ADMIN},
    "create_pool": {SHARING_ADMIN},
    "run_maintenance": {MAINTENANCE_ADMIN},
}

_AUTHZ_ENV = "MCP_AUTHZ_ENABLED"


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    error_code: str | None = None
    message: str | None = None


def is_authorization_enabled() -> bool:
    raw = os.getenv(_AUTHZ_ENV, "").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _extract_roles(claims: dict[str, Any]) -> set[str]:
    roles: set[str] = set()
    role = claims.get("role")
    if isinstance(role, str) and role.strip():
        roles.add(role.strip())
    role_list = claims.get("roles")
    if isinstance(role_list, list):
        roles.update(r.strip() for r in role_list if isinstance(r, str) and r.strip())
    return roles


def effective_scopes(token: AccessToken | None) -> set[str]:
    """Scopes granted to *token*, including those implied by its roles."""
    if token is None:
        return set()
    scopes = {scope.strip() for scope in token.scopes if scope.strip()}
    if WILDCARD_SCOPE in scopes:
        return {WILDCARD_SCOPE}
    claims = token.claims if isinstance(token.claims, dict) else {}
    for role in _extract_roles(claims):
        scopes.update(_ROLE_SCOPES.get(role, set()))
    return scopes


def required_scopes(tool_name: str) -> set[str]:
    return set(_TOOL_REQUIRED_SCOPES.get(tool_name, set()))


def authorize_tool(
    tool_name: str,
    token: AccessToken | None,
) -> AuthorizationDecision:
    """Authorize a call to a top-level MCP tool."""
    if not is_authorization_enabled():
        return AuthorizationDecision(allowed=True)

    needed = required_scopes(tool_name)
    granted = effective_scopes(token)
    if not needed or WILDCARD_SCOPE in granted or granted.intersection(needed):
        return AuthorizationDecision(allowed=True)
    required = ", ".join(sorted(needed))
    return AuthorizationDecision(
        allowed=False,
        error_code="forbidden",
        message=f"Insufficient scope for {tool_name}. Required one of: {required}.",
    )
