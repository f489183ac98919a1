"""Client registry: dynamic registration and client authentication."""

import hmac
import secrets

from beartype import beartype

from ...config import Settings
from ...logging_utils import get_logger, redact
from .models import (
    ClientIdentity,
    ClientRegistrationRequest,
    Clock,
    FallbackIdentity,
    RegisteredClient,
    RegisteredIdentity,
    utc_now,
)
from .storage import OAuth2Store

logger = get_logger(__name__)

DEFAULT_CLIENT_NAME = "Dynamic Client"
FALLBACK_CLIENT_NAME = "Default MCP Client"
DEFAULT_GRANT_TYPES = ["authorization_code"]
DEFAULT_RESPONSE_TYPES = ["code"]
DEFAULT_AUTH_METHOD = "client_secret_post"
FALLBACK_GRANT_TYPES = ["authorization_code", "client_credentials", "refresh_token"]


def secrets_match(presented: str, expected: str) -> bool:
    """Compare two secrets in constant time."""
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


class ClientRegistry:
    """Registered clients plus the statically configured fallback client."""

    def __init__(
        self, store: OAuth2Store, settings: Settings, clock: Clock = utc_now
    ) -> None:
        """Initialize registry over a store."""
        self._store = store
        self._settings = settings
        self._clock = clock

    @property
    def fallback_client_id(self) -> str:
        return self._settings.mcp_oauth_client_id

    @beartype
    async def register(
        self, request: ClientRegistrationRequest | None = None
    ) -> RegisteredClient:
        """Register a new client, filling RFC 7591 defaults.

        Raises:
            StorageError: If the client could not be persisted.
        """
        request = request or ClientRegistrationRequest()
        client = RegisteredClient(
            client_id=f"client_{secrets.token_hex(16)}",
            client_secret=secrets.token_hex(32),
            client_name=request.client_name or DEFAULT_CLIENT_NAME,
            redirect_uris=request.redirect_uris
            or list(self._settings.oauth_default_redirect_uris),
            grant_types=request.grant_types or list(DEFAULT_GRANT_TYPES),
            response_types=request.response_types or list(DEFAULT_RESPONSE_TYPES),
            token_endpoint_auth_method=request.token_endpoint_auth_method
            or DEFAULT_AUTH_METHOD,
            created_at=self._clock(),
        )
        saved = await self._store.save_client(client)
        logger.info("Registered OAuth client %s (%s)", saved.client_id, saved.client_name)
        return saved

    @beartype
    async def get(self, client_id: str) -> RegisteredClient | None:
        """Look up a registered client."""
        return await self._store.get_client(client_id)

    @beartype
    async def resolve(self, client_id: str) -> ClientIdentity | None:
        """Find a client in the registry, else match the fallback id."""
        client = await self._store.get_client(client_id)
        if client is not None:
            return RegisteredIdentity(client=client)
        if client_id == self.fallback_client_id:
            return FallbackIdentity(
                client_id=self.fallback_client_id,
                client_secret=self._settings.mcp_oauth_client_secret,
            )
        return None

    @beartype
    async def validate_credentials(self, client_id: str, client_secret: str) -> bool:
        """Check an id/secret pair against the registry, then the fallback pair."""
        client = await self._store.get_client(client_id)
        if client is not None and secrets_match(client_secret, client.client_secret):
            return True

        if client_id == self.fallback_client_id and secrets_match(
            client_secret, self._settings.mcp_oauth_client_secret
        ):
            return True

        logger.warning("Client authentication failed for %s", redact(client_id, keep=16))
        return False

    @beartype
    async def validate_id(self, client_id: str) -> bool:
        """Check that a client id is known, without a secret."""
        return await self.resolve(client_id) is not None

    @beartype
    async def ensure_default_client(self) -> RegisteredClient:
        """Upsert the fallback client so it is visible in the registry."""
        client = RegisteredClient(
            client_id=self.fallback_client_id,
            client_secret=self._settings.mcp_oauth_client_secret,
            client_name=FALLBACK_CLIENT_NAME,
            redirect_uris=list(self._settings.oauth_fallback_redirect_uris),
            grant_types=list(FALLBACK_GRANT_TYPES),
            response_types=list(DEFAULT_RESPONSE_TYPES),
            token_endpoint_auth_method=DEFAULT_AUTH_METHOD,
            created_at=self._clock(),
        )
        saved = await self._store.save_client(client, upsert=True)
        logger.info("Default OAuth client %s ensured", saved.client_id)
        return saved
