"""Unit tests for MCP auth helpers."""

from __future__ import annotations

import pytest

from mnemosync.auth import APIKeyVerifier
from mnemosync.auth import AuthSettings
from mnemosync.auth import create_mcp_auth


class TestAPIKeyVerifier:
    def test_rejects_empty_api_key(self) -> None:
        with pytest.raises(ValueError, match="api_key must be a non-empty"):
            APIKeyVerifier("")

    def test_rejects_blank_api_key(self) -> None:
        with pytest.raises(ValueError, match="api_key must be a non-empty"):
            APIKeyVerifier("   ")

    async def test_verify_valid_token(self) -> None:
        verifier = APIKeyVerifier("my-secret-key")

        result = await verifier.verify_token("my-secret-key")

        assert result is not None
        assert result.token == "my-secret-key"
        assert result.client_id == "mnemosync-client"
        assert result.scopes == ["mnemosync:all"]
        assert result.expires_at is None

    async def test_grants_configured_scopes_and_claims(self) -> None:
        verifier = APIKeyVerifier(
            "my-secret-key",
            scopes=["mnemosync:memory:read"],
            claims={"role": "viewer"},
        )

        result = await verifier.verify_token("my-secret-key")

        assert result.scopes == ["mnemosync:memory:read"]
        assert result.claims == {"role": "viewer"}

    async def test_verify_invalid_token(self) -> None:
        verifier = APIKeyVerifier("my-secret-key")

        assert await verifier.verify_token("wrong-key") is None

    async def test_verify_empty_token(self) -> None:
        verifier = APIKeyVerifier("my-secret-key")

        assert await verifier.verify_token("") is None


class TestAuthSettings:
    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("MCP_AUTH_KEY", " env-auth-key ")
        monkeypatch.setenv("MCP_AUTH_SCOPES", "mnemosync:memory:read, ,x")
        monkeypatch.setenv("MCP_AUTH_ROLE", "editor")

        settings = AuthSettings.from_env()

        assert settings.api_key == "env-auth-key"
        assert settings.scopes == ["mnemosync:memory:read", "x"]
        assert settings.role == "editor"
        assert settings.enabled is True

    def test_defaults_when_missing(self, monkeypatch) -> None:
        for name in ("MCP_AUTH_KEY", "MCP_AUTH_SCOPES", "MCP_AUTH_ROLE"):
            monkeypatch.delenv(name, raising=False)

        settings = AuthSettings.from_env()

        assert settings.api_key is None
        assert settings.scopes == ["mnemosync:all"]
        assert settings.enabled is False

    def test_blank_key_disables_auth(self, monkeypatch) -> None:
        monkeypatch.setenv("MCP_AUTH_KEY", "   ")

        assert AuthSettings.from_env().enabled is False


class TestCreateMcpAuth:
    def test_returns_verifier_when_key_present(self, monkeypatch) -> None:
        monkeypatch.setenv("MCP_AUTH_KEY", "test-auth-key")

        verifier = create_mcp_auth()

        assert isinstance(verifier, APIKeyVerifier)

    def test_returns_none_when_key_missing(self, monkeypatch) -> None:
        monkeypatch.delenv("MCP_AUTH_KEY", raising=False)

        assert create_mcp_auth() is None

    async def test_role_becomes_claim(self) -> None:
        verifier = create_mcp_auth(AuthSettings(api_key="k", role="admin"))

        token = await verifier.verify_token("k")

        assert token.claims == {"role": "admin"}
