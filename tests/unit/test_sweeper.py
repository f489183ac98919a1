"""Unit tests for the expiry sweeper."""

import asyncio
from unittest.mock import AsyncMock

from mcp_authz.core.auth.oauth2.codes import AuthorizationCodeIssuer
from mcp_authz.core.auth.oauth2.models import SweepResult
from mcp_authz.core.auth.oauth2.storage import InMemoryOAuth2Store
from mcp_authz.core.auth.oauth2.sweeper import ExpirySweeper
from mcp_authz.core.auth.oauth2.tokens import TokenIssuer
from mcp_authz.core.database import StorageError

CLIENT = "client_abc"
REDIRECT = "https://agent.example.com/callback"


class TestSweep:
    """Test a single sweep pass."""

    async def test_only_expired_code_removed(
        self,
        code_issuer: AuthorizationCodeIssuer,
        sweeper: ExpirySweeper,
        store: InMemoryOAuth2Store,
        clock,
    ) -> None:
        """Test a code expired one second ago goes while a live one stays usable."""
        expired = await code_issuer.issue(CLIENT, REDIRECT)
        clock.advance(seconds=601)
        live = await code_issuer.issue(CLIENT, REDIRECT)

        result = await sweeper.sweep()

        assert result == SweepResult(authorization_codes=1)
        assert expired not in store._codes
        assert (await code_issuer.redeem(live, CLIENT, REDIRECT)).is_ok()

    async def test_removes_expired_tokens(
        self,
        token_issuer: TokenIssuer,
        sweeper: ExpirySweeper,
        store: InMemoryOAuth2Store,
        clock,
    ) -> None:
        """Test access and refresh tokens are swept once each expires."""
        pair = await token_issuer.mint_pair(CLIENT)

        clock.advance(hours=1)
        assert (await sweeper.sweep()) == SweepResult(access_tokens=1)
        assert pair.refresh_token in store._refresh_tokens

        clock.advance(days=30)
        result = await sweeper.sweep()
        assert result == SweepResult(refresh_tokens=1)
        assert result.total == 1

    async def test_idempotent(self, sweeper: ExpirySweeper) -> None:
        """Test sweeping an empty store is a no-op."""
        assert await sweeper.sweep() == SweepResult()
        assert await sweeper.sweep() == SweepResult()

    async def test_concurrent_sweeps(
        self,
        code_issuer: AuthorizationCodeIssuer,
        sweeper: ExpirySweeper,
        clock,
    ) -> None:
        """Test overlapping sweeps remove each row once in total."""
        for _ in range(5):
            await code_issuer.issue(CLIENT, REDIRECT)
        clock.advance(minutes=11)

        results = await asyncio.gather(*(sweeper.sweep() for _ in range(3)))

        assert sum(result.authorization_codes for result in results) == 5

    async def test_storage_failure_suppressed(self, clock) -> None:
        """Test a failing store is logged and yields None."""
        store = AsyncMock()
        store.delete_expired.side_effect = StorageError("delete_expired", OSError("down"))
        sweeper = ExpirySweeper(store, clock=clock)

        assert await sweeper.sweep() is None
        store.delete_expired.assert_awaited_once_with(clock.now)


class TestPeriodicSweep:
    """Test the background sweep task."""

    async def test_start_and_stop(
        self,
        code_issuer: AuthorizationCodeIssuer,
        sweeper: ExpirySweeper,
        store: InMemoryOAuth2Store,
        clock,
    ) -> None:
        """Test the task sweeps without traffic and stops on request."""
        code = await code_issuer.issue(CLIENT, REDIRECT)
        clock.advance(minutes=11)

        await sweeper.start()
        assert sweeper.is_running
        await asyncio.sleep(0.2)
        await sweeper.stop()

        assert not sweeper.is_running
        assert code not in store._codes

    async def test_start_twice_keeps_one_task(self, sweeper: ExpirySweeper) -> None:
        """Test a second start does not spawn another task."""
        await sweeper.start()
        task = sweeper._task
        await sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()

    async def test_stop_without_start(self, sweeper: ExpirySweeper) -> None:
        """Test stopping an idle sweeper is harmless."""
        await sweeper.stop()
        assert not sweeper.is_running

    async def test_loop_survives_failures(self, clock) -> None:
        """Test a failing sweep does not end the periodic task."""
        store = AsyncMock()
        store.delete_expired.side_effect = StorageError("delete_expired", OSError("down"))
        sweeper = ExpirySweeper(store, interval_seconds=0.01, clock=clock)

        await sweeper.start()
        await asyncio.sleep(0.1)
        assert sweeper.is_running
        await sweeper.stop()

        assert store.delete_expired.await_count >= 2
