"""Unit tests for dynamic client registration and client authentication."""

import re

import pytest

from mcp_authz.core.auth.oauth2.clients import ClientRegistry
from mcp_authz.core.auth.oauth2.models import (
    ClientRegistrationRequest,
    FallbackIdentity,
    RegisteredIdentity,
)
from mcp_authz.core.auth.oauth2.storage import InMemoryOAuth2Store
from mcp_authz.core.database import StorageError


class TestRegister:
    """Test RFC 7591 registration defaults and identifiers."""

    async def test_defaults_applied(self, registry: ClientRegistry, clock) -> None:
        """Test an empty request gets the documented defaults."""
        client = await registry.register()

        assert re.fullmatch(r"client_[0-9a-f]{32}", client.client_id)
        assert re.fullmatch(r"[0-9a-f]{64}", client.client_secret)
        assert client.client_name == "Dynamic Client"
        assert client.redirect_uris == ["https://chatgpt.com/aip/g-*/oauth/callback"]
        assert client.grant_types == ["authorization_code"]
        assert client.response_types == ["code"]
        assert client.token_endpoint_auth_method == "client_secret_post"
        assert client.created_at == clock.now

    async def test_request_values_kept(self, registry: ClientRegistry) -> None:
        """Test supplied metadata overrides the defaults."""
        request = ClientRegistrationRequest(
            client_name="Agent",
            redirect_uris=["https://agent.example.com/cb"],
            grant_types=["authorization_code", "refresh_token"],
            token_endpoint_auth_method="client_secret_basic",
        )

        client = await registry.register(request)

        assert client.client_name == "Agent"
        assert client.redirect_uris == ["https://agent.example.com/cb"]
        assert client.grant_types == ["authorization_code", "refresh_token"]
        assert client.token_endpoint_auth_method == "client_secret_basic"

    async def test_ids_are_unique(self, registry: ClientRegistry) -> None:
        """Test two registrations never share an id or secret."""
        first = await registry.register()
        second = await registry.register()

        assert first.client_id != second.client_id
        assert first.client_secret != second.client_secret

    async def test_registered_client_is_persisted(self, registry: ClientRegistry) -> None:
        """Test get returns what register stored."""
        client = await registry.register()

        assert await registry.get(client.client_id) == client
        assert await registry.get("client_missing") is None

    def test_extra_metadata_ignored(self) -> None:
        """Test unknown RFC 7591 fields in the request are dropped."""
        request = ClientRegistrationRequest.model_validate(
            {"client_name": "Agent", "logo_uri": "https://x/logo.png", "contacts": []}
        )

        assert request.client_name == "Agent"

    async def test_storage_failure_propagates(self, settings, clock) -> None:
        """Test a store failure surfaces as StorageError."""

        class FailingStore(InMemoryOAuth2Store):
            async def save_client(self, client, *, upsert=False):
                raise StorageError("save_client", OSError("connection reset"))

        registry = ClientRegistry(FailingStore(), settings, clock)

        with pytest.raises(StorageError, match="save_client"):
            await registry.register()


class TestCredentials:
    """Test id and secret validation against registry and fallback."""

    async def test_registered_credentials(self, registry: ClientRegistry) -> None:
        """Test a registered id with its secret is accepted."""
        client = await registry.register()

        assert await registry.validate_credentials(client.client_id, client.client_secret)
        assert not await registry.validate_credentials(client.client_id, "wrong")

    async def test_fallback_credentials(self, registry: ClientRegistry) -> None:
        """Test the configured fallback pair works without registration."""
        assert await registry.validate_credentials(
            "test-fallback-client", "test-fallback-secret"
        )
        assert not await registry.validate_credentials("test-fallback-client", "wrong")

    async def test_unknown_client(self, registry: ClientRegistry) -> None:
        """Test an unknown id is rejected."""
        assert not await registry.validate_credentials("client_nope", "secret")
        assert not await registry.validate_id("client_nope")

    async def test_validate_id(self, registry: ClientRegistry) -> None:
        """Test registered and fallback ids are both known."""
        client = await registry.register()

        assert await registry.validate_id(client.client_id)
        assert await registry.validate_id("test-fallback-client")


class TestResolve:
    """Test the registered-or-fallback identity union."""

    async def test_registered_first(self, registry: ClientRegistry) -> None:
        """Test a seeded fallback client resolves as registered."""
        await registry.ensure_default_client()

        identity = await registry.resolve("test-fallback-client")

        assert isinstance(identity, RegisteredIdentity)
        assert identity.client_secret == "test-fallback-secret"

    async def test_fallback_when_not_registered(self, registry: ClientRegistry) -> None:
        """Test the fallback id resolves without a registry row."""
        identity = await registry.resolve("test-fallback-client")

        assert isinstance(identity, FallbackIdentity)
        assert identity.client_id == "test-fallback-client"
        assert "test-fallback-secret" not in repr(identity)

    async def test_unknown(self, registry: ClientRegistry) -> None:
        """Test an unknown id resolves to None."""
        assert await registry.resolve("client_nope") is None


class TestEnsureDefaultClient:
    """Test the startup upsert of the fallback client."""

    async def test_seeds_fallback_client(self, registry: ClientRegistry) -> None:
        """Test the fallback client is stored with its fixed metadata."""
        client = await registry.ensure_default_client()

        assert client.client_id == "test-fallback-client"
        assert client.client_name == "Default MCP Client"
        assert client.grant_types == [
            "authorization_code",
            "client_credentials",
            "refresh_token",
        ]
        assert "https://platform.openai.com/apps-manage/oauth" in client.redirect_uris

    async def test_idempotent(self, registry: ClientRegistry, clock) -> None:
        """Test repeated seeding keeps one row and its original creation time."""
        first = await registry.ensure_default_client()
        clock.advance(hours=1)
        second = await registry.ensure_default_client()

        assert second.created_at == first.created_at
        assert await registry.get("test-fallback-client") == second
