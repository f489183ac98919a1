"""Persistence for OAuth2 clients, authorization codes and token pairs.

Every check-then-delete on a single-use credential happens inside one atomic
region of the store: a row-locking transaction for PostgreSQL, one
``asyncio.Lock`` section for the in-memory store. Two concurrent redemptions
of the same code therefore cannot both see it.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from beartype import beartype

from ...config import Settings
from ...database import Database, StorageError
from ...logging_utils import get_logger
from ...result_types import Err, Ok, Result
from .errors import OAuth2Error, OAuth2ErrorKind
from .models import (
    AccessToken,
    AuthorizationCode,
    RefreshToken,
    RegisteredClient,
    SweepResult,
)

logger = get_logger(__name__)

# Returns None when the credential may be consumed, otherwise the failure.
CodeCheck = Callable[[AuthorizationCode], OAuth2Error | None]
RefreshCheck = Callable[[RefreshToken], OAuth2Error | None]


class TokenStatus(str, Enum):
    """Outcome of an access-token lookup."""

    ACTIVE = "active"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


def _unknown_code() -> Err[OAuth2Error]:
    # Consumed and never-issued codes must look identical to the caller.
    return Err(OAuth2Error.of(OAuth2ErrorKind.INVALID_GRANT, "Invalid authorization code"))


def _expired_code() -> Err[OAuth2Error]:
    return Err(OAuth2Error.of(OAuth2ErrorKind.EXPIRED_GRANT, "Authorization code expired"))


def _unknown_refresh_token() -> Err[OAuth2Error]:
    return Err(OAuth2Error.of(OAuth2ErrorKind.INVALID_GRANT, "Invalid refresh token"))


def _expired_refresh_token() -> Err[OAuth2Error]:
    return Err(OAuth2Error.of(OAuth2ErrorKind.EXPIRED_GRANT, "Refresh token expired"))


@runtime_checkable
class OAuth2Store(Protocol):
    """Storage contract shared by the registry and both issuers."""

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def save_client(
        self, client: RegisteredClient, *, upsert: bool = False
    ) -> RegisteredClient: ...

    async def get_client(self, client_id: str) -> RegisteredClient | None: ...

    async def save_authorization_code(self, code: AuthorizationCode) -> None: ...

    async def redeem_authorization_code(
        self, code: str, now: datetime, check: CodeCheck
    ) -> Result[AuthorizationCode, OAuth2Error]: ...

    async def save_token_pair(self, access: AccessToken, refresh: RefreshToken) -> None: ...

    async def check_access_token(self, token: str, now: datetime) -> TokenStatus: ...

    async def load_refresh_token(
        self, token: str, now: datetime
    ) -> Result[RefreshToken, OAuth2Error]: ...

    async def consume_refresh_token(
        self, token: str, now: datetime, check: RefreshCheck
    ) -> Result[RefreshToken, OAuth2Error]: ...

    async def revoke_refresh_token(self, token: str) -> bool: ...

    async def delete_expired(self, now: datetime) -> SweepResult: ...


class InMemoryOAuth2Store:
    """Process-local store for development and tests.

    Not shared between processes; every method runs under a single lock so
    the atomicity matches the PostgreSQL store.
    """

    def __init__(self) -> None:
        """Initialize empty collections."""
        self._clients: dict[str, RegisteredClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, AccessToken] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}
        self._lock = asyncio.Lock()

    @beartype
    async def open(self) -> None:
        """Nothing to connect."""

    @beartype
    async def close(self) -> None:
        """Nothing to release."""

    @beartype
    async def save_client(
        self, client: RegisteredClient, *, upsert: bool = False
    ) -> RegisteredClient:
        """Insert a client, or replace it keeping its creation time."""
        async with self._lock:
            existing = self._clients.get(client.client_id)
            if existing is not None:
                if not upsert:
                    raise StorageError(
                        "save_client",
                        ValueError(f"duplicate client_id {client.client_id}"),
                    )
                client = client.model_copy(update={"created_at": existing.created_at})
            self._clients[client.client_id] = client
            return client

    @beartype
    async def get_client(self, client_id: str) -> RegisteredClient | None:
        """Look up a client by id."""
        return self._clients.get(client_id)

    @beartype
    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        """Persist a freshly issued code."""
        async with self._lock:
            self._codes[code.code] = code

    @beartype
    async def redeem_authorization_code(
        self, code: str, now: datetime, check: CodeCheck
    ) -> Result[AuthorizationCode, OAuth2Error]:
        """Validate and delete a code in one locked section."""
        async with self._lock:
            record = self._codes.get(code)
            if record is None:
                return _unknown_code()
            if record.is_expired(now):
                del self._codes[code]
                return _expired_code()
            failure = check(record)
            if failure is not None:
                return Err(failure)
            del self._codes[code]
            return Ok(record)

    @beartype
    async def save_token_pair(self, access: AccessToken, refresh: RefreshToken) -> None:
        """Persist both halves of a pair together."""
        async with self._lock:
            self._access_tokens[access.token] = access
            self._refresh_tokens[refresh.token] = refresh

    @beartype
    async def check_access_token(self, token: str, now: datetime) -> TokenStatus:
        """Report token liveness, dropping it if expired."""
        async with self._lock:
            record = self._access_tokens.get(token)
            if record is None:
                return TokenStatus.UNKNOWN
            if record.is_expired(now):
                del self._access_tokens[token]
                return TokenStatus.EXPIRED
            return TokenStatus.ACTIVE

    @beartype
    async def load_refresh_token(
        self, token: str, now: datetime
    ) -> Result[RefreshToken, OAuth2Error]:
        """Fetch a live refresh token, dropping it if expired."""
        async with self._lock:
            record = self._refresh_tokens.get(token)
            if record is None:
                return _unknown_refresh_token()
            if record.is_expired(now):
                del self._refresh_tokens[token]
                return _expired_refresh_token()
            return Ok(record)

    @beartype
    async def consume_refresh_token(
        self, token: str, now: datetime, check: RefreshCheck
    ) -> Result[RefreshToken, OAuth2Error]:
        """Validate and retire a refresh token together with its access token."""
        async with self._lock:
            record = self._refresh_tokens.get(token)
            if record is None:
                return _unknown_refresh_token()
            if record.is_expired(now):
                del self._refresh_tokens[token]
                return _expired_refresh_token()
            failure = check(record)
            if failure is not None:
                return Err(failure)
            del self._refresh_tokens[token]
            if record.access_token:
                self._access_tokens.pop(record.access_token, None)
            return Ok(record)

    @beartype
    async def revoke_refresh_token(self, token: str) -> bool:
        """Delete a refresh token and its linked access token."""
        async with self._lock:
            record = self._refresh_tokens.pop(token, None)
            if record is None:
                return False
            if record.access_token:
                self._access_tokens.pop(record.access_token, None)
            return True

    @beartype
    async def delete_expired(self, now: datetime) -> SweepResult:
        """Drop every code and token whose expiry has passed."""
        async with self._lock:
            removed = []
            for collection in (self._codes, self._access_tokens, self._refresh_tokens):
                expired = [key for key, value in collection.items() if value.is_expired(now)]
                for key in expired:
                    del collection[key]
                removed.append(len(expired))
        return SweepResult(
            authorization_codes=removed[0],
            access_tokens=removed[1],
            refresh_tokens=removed[2],
        )


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS mcp_oauth_clients (
    client_id TEXT PRIMARY KEY,
    client_secret TEXT NOT NULL,
    client_name TEXT,
    redirect_uris TEXT[] NOT NULL DEFAULT '{}',
    grant_types TEXT[] NOT NULL DEFAULT '{authorization_code}',
    response_types TEXT[] NOT NULL DEFAULT '{code}',
    token_endpoint_auth_method TEXT NOT NULL DEFAULT 'client_secret_post',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS mcp_auth_codes (
    code TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    code_challenge TEXT,
    code_challenge_method TEXT,
    scope TEXT,
    resource TEXT,
    expires_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_mcp_auth_codes_expires_at
    ON mcp_auth_codes (expires_at);

CREATE TABLE IF NOT EXISTS mcp_access_tokens (
    token TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    scope TEXT,
    resource TEXT,
    refresh_token TEXT,
    expires_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_mcp_access_tokens_expires_at
    ON mcp_access_tokens (expires_at);

CREATE TABLE IF NOT EXISTS mcp_refresh_tokens (
    token TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    scope TEXT,
    resource TEXT,
    access_token TEXT,
    expires_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_mcp_refresh_tokens_expires_at
    ON mcp_refresh_tokens (expires_at);
"""

_CLIENT_COLUMNS = """
    client_id, client_secret, client_name, redirect_uris, grant_types,
    response_types, token_endpoint_auth_method, created_at
"""

_CODE_COLUMNS = """
    code, client_id, redirect_uri, code_challenge, code_challenge_method,
    scope, resource, expires_at
"""

_REFRESH_COLUMNS = "token, client_id, scope, resource, access_token, expires_at"


def _deleted_count(status: str | None) -> int:
    """Parse asyncpg's ``DELETE <n>`` status tag."""
    if not status:
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class PostgresOAuth2Store:
    """asyncpg-backed store over the four ``mcp_*`` tables."""

    def __init__(self, db: Database) -> None:
        """Initialize with an owned database handle."""
        self._db = db

    @beartype
    async def open(self) -> None:
        """Connect the pool and make sure the tables exist."""
        await self._db.connect()
        await self.create_schema()

    @beartype
    async def close(self) -> None:
        """Release the pool."""
        await self._db.disconnect()

    @beartype
    async def create_schema(self) -> None:
        """Create the OAuth2 tables and expiry indexes if missing."""
        await self._db.execute(SCHEMA_SQL)

    @beartype
    async def save_client(
        self, client: RegisteredClient, *, upsert: bool = False
    ) -> RegisteredClient:
        """Insert a client; with ``upsert`` replace its mutable fields."""
        conflict = (
            """
            ON CONFLICT (client_id) DO UPDATE SET
                client_secret = EXCLUDED.client_secret,
                client_name = EXCLUDED.client_name,
                redirect_uris = EXCLUDED.redirect_uris,
                grant_types = EXCLUDED.grant_types,
                response_types = EXCLUDED.response_types,
                token_endpoint_auth_method = EXCLUDED.token_endpoint_auth_method
            """
            if upsert
            else ""
        )
        created_at = await self._db.fetchval(
            f"""
            INSERT INTO mcp_oauth_clients ({_CLIENT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            {conflict}
            RETURNING created_at
            """,
            client.client_id,
            client.client_secret,
            client.client_name,
            client.redirect_uris,
            client.grant_types,
            client.response_types,
            client.token_endpoint_auth_method,
            client.created_at,
        )
        if created_at is None or created_at == client.created_at:
            return client
        return client.model_copy(update={"created_at": created_at})

    @beartype
    async def get_client(self, client_id: str) -> RegisteredClient | None:
        """Look up a client by id."""
        row = await self._db.fetchrow(
            f"SELECT {_CLIENT_COLUMNS} FROM mcp_oauth_clients WHERE client_id = $1",
            client_id,
        )
        if row is None:
            return None
        return RegisteredClient(**dict(row))

    @beartype
    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        """Persist a freshly issued code."""
        await self._db.execute(
            f"""
            INSERT INTO mcp_auth_codes ({_CODE_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            code.code,
            code.client_id,
            code.redirect_uri,
            code.code_challenge,
            code.code_challenge_method,
            code.scope,
            code.resource,
            code.expires_at,
        )

    @beartype
    async def redeem_authorization_code(
        self, code: str, now: datetime, check: CodeCheck
    ) -> Result[AuthorizationCode, OAuth2Error]:
        """Lock the code row, validate it and delete it in one transaction.

        A concurrent redeemer blocks on ``FOR UPDATE`` and then finds no row.
        """
        async with self._db.transaction() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CODE_COLUMNS} FROM mcp_auth_codes WHERE code = $1 FOR UPDATE",
                code,
            )
            if row is None:
                return _unknown_code()

            record = AuthorizationCode(**dict(row))
            if record.is_expired(now):
                await conn.execute("DELETE FROM mcp_auth_codes WHERE code = $1", code)
                return _expired_code()

            failure = check(record)
            if failure is not None:
                return Err(failure)

            await conn.execute("DELETE FROM mcp_auth_codes WHERE code = $1", code)
            return Ok(record)

    @beartype
    async def save_token_pair(self, access: AccessToken, refresh: RefreshToken) -> None:
        """Insert both rows of a pair in one transaction."""
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO mcp_access_tokens (
                    token, client_id, scope, resource, refresh_token, expires_at
                ) VALUES ($1, $2, $3, $4, $5, $6)
                """,
                access.token,
                access.client_id,
                access.scope,
                access.resource,
                access.refresh_token,
                access.expires_at,
            )
            await conn.execute(
                f"""
                INSERT INTO mcp_refresh_tokens ({_REFRESH_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                refresh.token,
                refresh.client_id,
                refresh.scope,
                refresh.resource,
                refresh.access_token,
                refresh.expires_at,
            )

    @beartype
    async def check_access_token(self, token: str, now: datetime) -> TokenStatus:
        """Report token liveness; an expired row is deleted by the same statement."""
        row = await self._db.fetchrow(
            """
            WITH expired AS (
                DELETE FROM mcp_access_tokens
                WHERE token = $1 AND expires_at <= $2
                RETURNING token
            )
            SELECT
                EXISTS (SELECT 1 FROM expired) AS expired,
                EXISTS (
                    SELECT 1 FROM mcp_access_tokens
                    WHERE token = $1 AND expires_at > $2
                ) AS active
            """,
            token,
            now,
        )
        if row is None:
            return TokenStatus.UNKNOWN
        if row["expired"]:
            return TokenStatus.EXPIRED
        if row["active"]:
            return TokenStatus.ACTIVE
        return TokenStatus.UNKNOWN

    @beartype
    async def load_refresh_token(
        self, token: str, now: datetime
    ) -> Result[RefreshToken, OAuth2Error]:
        """Fetch a live refresh token, deleting it if expired."""
        async with self._db.transaction() as conn:
            record = await self._lock_refresh_token(conn, token)
            if record is None:
                return _unknown_refresh_token()
            if record.is_expired(now):
                await conn.execute("DELETE FROM mcp_refresh_tokens WHERE token = $1", token)
                return _expired_refresh_token()
            return Ok(record)

    @beartype
    async def consume_refresh_token(
        self, token: str, now: datetime, check: RefreshCheck
    ) -> Result[RefreshToken, OAuth2Error]:
        """Lock, validate and retire a refresh token and its access token."""
        async with self._db.transaction() as conn:
            record = await self._lock_refresh_token(conn, token)
            if record is None:
                return _unknown_refresh_token()
            if record.is_expired(now):
                await conn.execute("DELETE FROM mcp_refresh_tokens WHERE token = $1", token)
                return _expired_refresh_token()

            failure = check(record)
            if failure is not None:
                return Err(failure)

            await conn.execute("DELETE FROM mcp_refresh_tokens WHERE token = $1", token)
            if record.access_token:
                await conn.execute(
                    "DELETE FROM mcp_access_tokens WHERE token = $1", record.access_token
                )
            return Ok(record)

    @beartype
    async def revoke_refresh_token(self, token: str) -> bool:
        """Delete a refresh token and its linked access token."""
        async with self._db.transaction() as conn:
            row = await conn.fetchrow(
                "DELETE FROM mcp_refresh_tokens WHERE token = $1 RETURNING access_token",
                token,
            )
            if row is None:
                return False
            if row["access_token"]:
                await conn.execute(
                    "DELETE FROM mcp_access_tokens WHERE token = $1", row["access_token"]
                )
            return True

    @beartype
    async def delete_expired(self, now: datetime) -> SweepResult:
        """Drop every code and token whose expiry has passed."""
        async with self._db.acquire() as conn:
            codes = await conn.execute(
                "DELETE FROM mcp_auth_codes WHERE expires_at <= $1", now
            )
            access = await conn.execute(
                "DELETE FROM mcp_access_tokens WHERE expires_at <= $1", now
            )
            refresh = await conn.execute(
                "DELETE FROM mcp_refresh_tokens WHERE expires_at <= $1", now
            )
        return SweepResult(
            authorization_codes=_deleted_count(codes),
            access_tokens=_deleted_count(access),
            refresh_tokens=_deleted_count(refresh),
        )

    async def _lock_refresh_token(self, conn: Any, token: str) -> RefreshToken | None:
        row = await conn.fetchrow(
            f"SELECT {_REFRESH_COLUMNS} FROM mcp_refresh_tokens WHERE token = $1 FOR UPDATE",
            token,
        )
        return RefreshToken(**dict(row)) if row is not None else None


@beartype
def create_store(settings: Settings, database: Database | None = None) -> OAuth2Store:
    """Build the store selected by ``OAUTH_STORE_BACKEND``."""
    if settings.oauth_store_backend == "memory":
        logger.warning("Using in-memory OAuth2 store; state is lost on restart")
        return InMemoryOAuth2Store()
    return PostgresOAuth2Store(database or Database(settings))
