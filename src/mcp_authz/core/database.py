"""Database connection management with asyncpg and connection pooling."""

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator
from typing import Any

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .config import Settings
from .logging_utils import get_logger
from .result_types import Err, Ok, Result

logger = get_logger(__name__)

# Failures that mean "the store could not answer", as opposed to bugs.
_STORAGE_FAILURES = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class StorageError(Exception):
    """The persistence layer failed (connection, timeout, constraint)."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        """Initialize storage error."""
        self.operation = operation
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause else "unknown failure"
        super().__init__(f"Storage operation '{operation}' failed ({detail})")


@frozen
class PoolConfig:
    """Immutable pool configuration."""

    min_connections: int = field()
    max_connections: int = field()
    connection_timeout: float = field(default=2.0)
    command_timeout: float = field(default=10.0)
    max_inactive_connection_lifetime: float = field(default=30.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PoolConfig":
        """Build pool configuration from application settings."""
        return cls(
            min_connections=settings.database_pool_min,
            max_connections=settings.database_pool_max,
            connection_timeout=settings.database_pool_timeout,
            command_timeout=settings.database_command_timeout,
            max_inactive_connection_lifetime=settings.database_max_inactive_connection_lifetime,
        )


class Database:
    """Owned asyncpg pool.

    The pool is created by ``connect()`` and released by ``disconnect()``;
    callers construct one instance per process and pass it to whatever needs
    it. Every asyncpg, socket or timeout failure surfaces as ``StorageError``.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize database manager."""
        self._settings = settings
        self._pool_config = PoolConfig.from_settings(settings)
        self._pool: asyncpg.Pool | None = None

    @beartype
    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        config = self._pool_config
        try:
            self._pool = await asyncpg.create_pool(
                self._settings.database_url,
                min_size=config.min_connections,
                max_size=config.max_connections,
                timeout=config.connection_timeout,
                command_timeout=config.command_timeout,
                max_inactive_connection_lifetime=config.max_inactive_connection_lifetime,
            )
        except _STORAGE_FAILURES as exc:
            logger.error("Failed to create PostgreSQL pool: %s", exc)
            raise StorageError("connect", exc) from exc

        logger.info(
            "PostgreSQL pool initialized (min=%d, max=%d)",
            config.min_connections,
            config.max_connections,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("PostgreSQL pool closed")

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._pool is not None

    @contextlib.asynccontextmanager
    @beartype
    async def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection, mapping failures to StorageError."""
        if self._pool is None:
            raise StorageError("acquire", RuntimeError("Database not connected"))

        timeout = timeout or self._pool_config.connection_timeout
        start_time = time.perf_counter()
        try:
            async with self._pool.acquire(timeout=timeout) as conn:
                yield conn
        except _STORAGE_FAILURES as exc:
            logger.error("Database operation failed: %s", exc)
            raise StorageError("acquire", exc) from exc
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms > 1000:
                logger.warning("Slow database operation: %.1fms", duration_ms)

    @contextlib.asynccontextmanager
    @beartype
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Run the enclosed statements in one transaction."""
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    @beartype
    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query without returning rows; returns the status tag."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @beartype
    async def fetch(self, query: str, *args: Any) -> list[Any]:
        """Execute a query and fetch all rows."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @beartype
    async def fetchrow(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single row (or None)."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @beartype
    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    @beartype
    async def health_check(self) -> Result[bool, str]:
        """Run a trivial query against the pool."""
        try:
            result = await self.fetchval("SELECT 1")
        except StorageError as e:
            return Err(f"Health check failed: {e}")
        if result != 1:
            return Err("Health check query failed")
        return Ok(True)
