# MCP AuthZ - OAuth 2.1 Authorization Server
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Access/refresh token pairs: minting, validation, rotation and revocation."""

import secrets

from beartype import beartype

from ...config import Settings
from ...logging_utils import get_logger, redact
from ...result_types import Err, Ok, Result
from .errors import OAuth2Error, OAuth2ErrorKind
from .models import (
    BEARER,
    AccessToken,
    Clock,
    RefreshGrant,
    RefreshToken,
    TokenPair,
    TokenResponse,
    utc_now,
)
from .storage import OAuth2Store, RefreshCheck, TokenStatus
from .sweeper import ExpirySweeper

logger = get_logger(__name__)

_BEARER_PREFIX = f"{BEARER} "


@beartype
def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the credential from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :]
    return token or None


def _owner_check(client_id: str) -> RefreshCheck:
    def check(record: RefreshToken) -> OAuth2Error | None:
        if record.client_id != client_id:
            return OAuth2Error.of(OAuth2ErrorKind.CLIENT_MISMATCH)
        return None

    return check


class TokenIssuer:
    """Mints and tracks access/refresh token pairs."""

    def __init__(
        self,
        store: OAuth2Store,
        settings: Settings,
        clock: Clock = utc_now,
        sweeper: ExpirySweeper | None = None,
    ) -> None:
        """Initialize issuer; ``sweeper`` runs after every mint when given."""
        self._store = store
        self._access_ttl = settings.access_token_ttl
        self._refresh_ttl = settings.refresh_token_ttl
        self._clock = clock
        self._sweeper = sweeper

    @property
    def access_token_lifetime(self) -> int:
        """Access token lifetime in whole seconds."""
        return int(self._access_ttl.total_seconds())

    @beartype
    async def mint_pair(
        self,
        client_id: str,
        scope: str | None = None,
        resource: str | None = None,
    ) -> TokenPair:
        """Persist a new pair with mutual back-references.

        Raises:
            StorageError: If the pair could not be persisted.
        """
        now = self._clock()
        pair = TokenPair(
            access_token=secrets.token_hex(32),
            refresh_token=secrets.token_hex(32),
            scope=scope,
            resource=resource,
        )
        await self._store.save_token_pair(
            AccessToken(
                token=pair.access_token,
                client_id=client_id,
                scope=scope,
                resource=resource,
                refresh_token=pair.refresh_token,
                expires_at=now + self._access_ttl,
            ),
            RefreshToken(
                token=pair.refresh_token,
                client_id=client_id,
                scope=scope,
                resource=resource,
                access_token=pair.access_token,
                expires_at=now + self._refresh_ttl,
            ),
        )
        logger.info(
            "Minted token pair for %s (access %s)", client_id, redact(pair.access_token)
        )

        if self._sweeper is not None:
            await self._sweeper.sweep()
        return pair

    @beartype
    async def validate_access(self, token: str) -> bool:
        """Check that an access token exists and has not expired."""
        status = await self._store.check_access_token(token, self._clock())
        if status is TokenStatus.EXPIRED:
            logger.debug("Access token %s expired and was removed", redact(token))
        return status is TokenStatus.ACTIVE

    @beartype
    async def validate_refresh(self, token: str) -> Result[RefreshGrant, OAuth2Error]:
        """Look up a refresh token without consuming it."""
        result = await self._store.load_refresh_token(token, self._clock())
        return result.map(
            lambda record: RefreshGrant(
                client_id=record.client_id,
                scope=record.scope,
                resource=record.resource,
            )
        )

    @beartype
    async def rotate(
        self, refresh_token: str, client_id: str
    ) -> Result[TokenPair, OAuth2Error]:
        """Retire a refresh token and its access token, then mint a replacement pair.

        Consumption commits before the new pair is saved. If that save raises
        ``StorageError`` the old pair stays retired and the client has to
        start a new authorization; the refresh token is never reusable.

        Raises:
            StorageError: If the replacement pair could not be persisted.
        """
        result = await self._store.consume_refresh_token(
            refresh_token, self._clock(), _owner_check(client_id)
        )
        if result.is_err():
            error = result.unwrap_err()
            logger.info(
                "Refresh token %s rejected for %s: %s",
                redact(refresh_token),
                client_id,
                error.kind.value,
            )
            return Err(error)

        record = result.unwrap()
        pair = await self.mint_pair(record.client_id, record.scope, record.resource)
        return Ok(pair)

    @beartype
    async def revoke(self, refresh_token: str) -> None:
        """Revoke a refresh token and the access token paired with it."""
        if await self._store.revoke_refresh_token(refresh_token):
            logger.info("Revoked token pair for refresh token %s", redact(refresh_token))

    @beartype
    def build_token_response(
        self, access_token: str, refresh_token: str, scope: str | None = None
    ) -> TokenResponse:
        """Shape a pair into the token endpoint response."""
        return TokenResponse(
            access_token=access_token,
            token_type=BEARER,
            expires_in=self.access_token_lifetime,
            refresh_token=refresh_token,
            scope=scope,
        )
