# MCP AuthZ - OAuth 2.1 Authorization Server
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""OAuth 2.1 authorization server facade.

Wires the client registry, code issuer, token issuer and expiry sweeper over
a single store and exposes the operations an HTTP layer maps its endpoints
onto. Routing itself lives outside this package.
"""

from types import TracebackType
from typing import Any

from beartype import beartype

from ...config import Settings, get_settings
from ...database import Database, StorageError
from ...logging_utils import get_logger, set_package_level
from ...result_types import Err, Ok, Result
from .clients import ClientRegistry
from .codes import AuthorizationCodeIssuer
from .errors import OAuth2Error, OAuth2ErrorKind
from .models import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    Clock,
    TokenPair,
    TokenResponse,
    utc_now,
)
from .pkce import SUPPORTED_METHODS
from .storage import OAuth2Store, create_store
from .sweeper import ExpirySweeper
from .tokens import TokenIssuer, extract_bearer_token

logger = get_logger(__name__)

AUTHORIZATION_CODE = "authorization_code"
REFRESH_TOKEN = "refresh_token"
CLIENT_CREDENTIALS = "client_credentials"
SUPPORTED_GRANT_TYPES = (AUTHORIZATION_CODE, REFRESH_TOKEN, CLIENT_CREDENTIALS)
SUPPORTED_RESPONSE_TYPES = ("code",)


def _invalid_request(description: str) -> Err[OAuth2Error]:
    return Err(OAuth2Error.of(OAuth2ErrorKind.INVALID_REQUEST, description))


class OAuth2Server:
    """OAuth 2.1 authorization server over one store."""

    def __init__(
        self, store: OAuth2Store, settings: Settings, clock: Clock = utc_now
    ) -> None:
        """Initialize OAuth2 server.

        Args:
            store: Persistence for clients, codes and tokens
            settings: Application settings
            clock: Source of the current UTC time
        """
        self._settings = settings
        self._store = store
        self.sweeper = ExpirySweeper(
            store, interval_seconds=settings.oauth_sweep_interval_seconds, clock=clock
        )
        self.clients = ClientRegistry(store, settings, clock)
        self.codes = AuthorizationCodeIssuer(store, settings, clock)
        self.tokens = TokenIssuer(store, settings, clock, sweeper=self.sweeper)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        database: Database | None = None,
        clock: Clock = utc_now,
    ) -> "OAuth2Server":
        """Build a server with the store selected by configuration."""
        settings = settings or get_settings()
        return cls(create_store(settings, database), settings, clock)

    @property
    def store(self) -> OAuth2Store:
        return self._store

    async def start(self) -> None:
        """Open the store, seed the fallback client and start sweeping."""
        set_package_level(self._settings.log_level)
        await self._store.open()
        try:
            await self.clients.ensure_default_client()
        except StorageError:
            logger.error("Seeding the fallback client failed; closing the store")
            await self._store.close()
            raise
        await self.sweeper.start()
        logger.info(
            "OAuth2 server started (backend=%s, env=%s)",
            self._settings.oauth_store_backend,
            self._settings.api_env,
        )

    async def stop(self) -> None:
        """Stop sweeping and release the store."""
        await self.sweeper.stop()
        await self._store.close()
        logger.info("OAuth2 server stopped")

    async def __aenter__(self) -> "OAuth2Server":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    @beartype
    async def register_client(
        self, request: ClientRegistrationRequest | dict[str, Any] | None = None
    ) -> ClientRegistrationResponse:
        """Dynamic client registration (RFC 7591)."""
        if isinstance(request, dict):
            request = ClientRegistrationRequest.model_validate(request)
        client = await self.clients.register(request)
        return ClientRegistrationResponse.from_client(client)

    @beartype
    async def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        scope: str | None = None,
        resource: str | None = None,
        response_type: str = "code",
    ) -> Result[str, OAuth2Error]:
        """Handle authorization request.

        Args:
            client_id: Client identifier
            redirect_uri: Where the code will be delivered
            code_challenge: PKCE code challenge
            code_challenge_method: PKCE challenge method ("S256" or "plain")
            scope: Requested scope, stored verbatim
            resource: Audience the tokens are meant for
            response_type: Must be "code"

        Returns:
            Result containing the authorization code or OAuth2Error
        """
        if response_type not in SUPPORTED_RESPONSE_TYPES:
            return _invalid_request(f"Unsupported response_type: {response_type}")
        if not redirect_uri:
            return _invalid_request("redirect_uri is required")
        if code_challenge_method and code_challenge_method not in SUPPORTED_METHODS:
            return _invalid_request(
                f"Unsupported code_challenge_method: {code_challenge_method}"
            )
        if code_challenge_method and not code_challenge:
            return _invalid_request("code_challenge_method given without code_challenge")

        if not await self.clients.validate_id(client_id):
            return Err(OAuth2Error.of(OAuth2ErrorKind.INVALID_CLIENT, "Unknown client"))

        code = await self.codes.issue(
            client_id,
            redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            scope=scope,
            resource=resource,
        )
        return Ok(code)

    @beartype
    async def token(
        self,
        grant_type: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        refresh_token: str | None = None,
        scope: str | None = None,
        resource: str | None = None,
    ) -> Result[TokenResponse, OAuth2Error]:
        """Handle token request.

        The client secret is checked whenever it is presented; public
        clients may omit it except for the client_credentials grant.
        """
        if grant_type not in SUPPORTED_GRANT_TYPES:
            return Err(
                OAuth2Error.of(
                    OAuth2ErrorKind.UNSUPPORTED_GRANT_TYPE,
                    f"Unsupported grant_type: {grant_type}",
                )
            )
        if not client_id:
            return _invalid_request("client_id is required")

        authenticated = await self._authenticate_client(
            client_id, client_secret, secret_required=grant_type == CLIENT_CREDENTIALS
        )
        if authenticated.is_err():
            return Err(authenticated.unwrap_err())

        if grant_type == AUTHORIZATION_CODE:
            if not code:
                return _invalid_request("code is required")
            if not redirect_uri:
                return _invalid_request("redirect_uri is required")
            redeemed = await self.codes.redeem(code, client_id, redirect_uri, code_verifier)
            if redeemed.is_err():
                return Err(redeemed.unwrap_err())
            grant = redeemed.unwrap()
            pair = await self.tokens.mint_pair(client_id, grant.scope, grant.resource)
            return Ok(self._token_response(pair))

        if grant_type == REFRESH_TOKEN:
            if not refresh_token:
                return _invalid_request("refresh_token is required")
            rotated = await self.tokens.rotate(refresh_token, client_id)
            if rotated.is_err():
                return Err(rotated.unwrap_err())
            pair = rotated.unwrap()
            return Ok(self._token_response(pair))

        pair = await self.tokens.mint_pair(client_id, scope, resource)
        return Ok(self._token_response(pair))

    @beartype
    async def revoke(self, refresh_token: str) -> None:
        """Revoke a refresh token and its paired access token (RFC 7009)."""
        await self.tokens.revoke(refresh_token)

    @beartype
    async def validate_bearer(self, authorization: str | None) -> bool:
        """Check an ``Authorization`` header carrying an access token."""
        token = extract_bearer_token(authorization)
        if token is None:
            return False
        return await self.tokens.validate_access(token)

    @beartype
    def metadata(self) -> dict[str, Any]:
        """Authorization server metadata (RFC 8414)."""
        issuer = self._settings.issuer_url.rstrip("/")
        return {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/authorize",
            "token_endpoint": f"{issuer}/token",
            "registration_endpoint": f"{issuer}/register",
            "revocation_endpoint": f"{issuer}/revoke",
            "response_types_supported": list(SUPPORTED_RESPONSE_TYPES),
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "code_challenge_methods_supported": list(SUPPORTED_METHODS),
            "token_endpoint_auth_methods_supported": ["client_secret_post"],
        }

    async def _authenticate_client(
        self, client_id: str, client_secret: str | None, *, secret_required: bool
    ) -> Result[bool, OAuth2Error]:
        if client_secret is None:
            if secret_required:
                return Err(
                    OAuth2Error.of(OAuth2ErrorKind.INVALID_CLIENT, "client_secret is required")
                )
            known = await self.clients.validate_id(client_id)
        else:
            known = await self.clients.validate_credentials(client_id, client_secret)

        if not known:
            return Err(OAuth2Error.of(OAuth2ErrorKind.INVALID_CLIENT))
        return Ok(True)

    def _token_response(self, pair: TokenPair) -> TokenResponse:
        return self.tokens.build_token_response(
            pair.access_token, pair.refresh_token, pair.scope
        )
