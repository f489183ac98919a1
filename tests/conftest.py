"""Test configuration and fixtures for the authorization server.

Component tests run against the in-memory store with a frozen clock that
tests advance explicitly, so expiry boundaries are exact.
"""

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timedelta, timezone

import pytest

from mcp_authz.core.auth.oauth2.clients import ClientRegistry
from mcp_authz.core.auth.oauth2.codes import AuthorizationCodeIssuer
from mcp_authz.core.auth.oauth2.server import OAuth2Server
from mcp_authz.core.auth.oauth2.storage import InMemoryOAuth2Store
from mcp_authz.core.auth.oauth2.sweeper import ExpirySweeper
from mcp_authz.core.auth.oauth2.tokens import TokenIssuer
from mcp_authz.core.config import Settings, clear_settings_cache

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]

EPOCH = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Never leak cached settings between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Development settings backed by the in-memory store."""
    return Settings(
        api_env="development",
        oauth_store_backend="memory",
        mcp_oauth_client_id="test-fallback-client",
        mcp_oauth_client_secret="test-fallback-secret",
        issuer_url="https://auth.example.com/",
        oauth_sweep_interval_seconds=0.05,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryOAuth2Store:
    return InMemoryOAuth2Store()


@pytest.fixture
def registry(
    store: InMemoryOAuth2Store, settings: Settings, clock: FrozenClock
) -> ClientRegistry:
    return ClientRegistry(store, settings, clock)


@pytest.fixture
def code_issuer(
    store: InMemoryOAuth2Store, settings: Settings, clock: FrozenClock
) -> AuthorizationCodeIssuer:
    return AuthorizationCodeIssuer(store, settings, clock)


@pytest.fixture
def sweeper(store: InMemoryOAuth2Store, clock: FrozenClock) -> ExpirySweeper:
    return ExpirySweeper(store, interval_seconds=0.05, clock=clock)


@pytest.fixture
def token_issuer(
    store: InMemoryOAuth2Store,
    settings: Settings,
    clock: FrozenClock,
    sweeper: ExpirySweeper,
) -> TokenIssuer:
    return TokenIssuer(store, settings, clock, sweeper=sweeper)


@pytest.fixture
async def server(
    settings: Settings, clock: FrozenClock
) -> AsyncGenerator[OAuth2Server, None]:
    """Started server over a fresh in-memory store."""
    async with OAuth2Server.create(settings, clock=clock) as started:
        yield started
