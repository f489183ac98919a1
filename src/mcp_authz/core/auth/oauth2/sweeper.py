"""Background removal of expired codes and tokens."""

import asyncio

from beartype import beartype

from ...database import StorageError
from ...logging_utils import get_logger
from .models import Clock, SweepResult, utc_now
from .storage import OAuth2Store

logger = get_logger(__name__)


class ExpirySweeper:
    """Deletes expired rows after each mint and on a fixed interval."""

    def __init__(
        self,
        store: OAuth2Store,
        interval_seconds: float = 60.0,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize sweeper; ``start()`` launches the periodic task."""
        self._store = store
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @beartype
    async def sweep(self) -> SweepResult | None:
        """Delete everything expired at this instant.

        Storage failures are logged and swallowed; the next sweep retries.
        """
        try:
            result = await self._store.delete_expired(self._clock())
        except StorageError as e:
            logger.warning("Expiry sweep failed: %s", e)
            return None

        if result.total:
            logger.info(
                "Expiry sweep removed %d codes, %d access tokens, %d refresh tokens",
                result.authorization_codes,
                result.access_tokens,
                result.refresh_tokens,
            )
        return result

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep task and wait for it to finish."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Unexpected error in expiry sweep loop: %s", e)
