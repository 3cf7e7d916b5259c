"""Background purge of spent and expired tokens."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from sqlalchemy.exc import SQLAlchemyError

from cloak_courier.core.settings import settings
from cloak_courier.services.token_store import TokenStore

logger = logging.getLogger(__name__)


class TokenSweepWorker:
    """Periodically deletes token rows past the retention window.

    Purging is hygiene only; validity checks never depend on it having run.
    """

    def __init__(self, token_store: TokenStore, interval_seconds: float | None = None) -> None:
        self.token_store = token_store
        self.interval = max(
            0.1,
            float(
                interval_seconds
                if interval_seconds is not None
                else settings.token_sweep_interval_seconds
            ),
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background sweep loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def sweep_once(self) -> int:
        return await asyncio.to_thread(self.token_store.purge)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except SQLAlchemyError as e:
                logger.warning("TokenSweepWorker purge failed: %s", e)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
