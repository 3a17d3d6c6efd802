"""Periodic playback-state polling."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .contracts import StateCallback
from .models import PlaybackState

logger = logging.getLogger("zonn_bridge.polling")


class PollingScheduler:
    """Fetches playback state on a fixed cadence and hands it to a callback.

    Failed fetches are delivered as the disconnected state; errors never reach
    the callback. Only one polling task exists at a time.
    """

    def __init__(self, fetch: Callable[[], Awaitable[PlaybackState]]):
        """
        Args:
            fetch: Coroutine function returning the current playback state
        """
        self.fetch = fetch
        self._task: Optional[asyncio.Task] = None
        self._on_update: Optional[StateCallback] = None
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float, on_update: StateCallback) -> None:
        """
        Start polling. Must be called from a running event loop.

        Args:
            interval: Seconds between fetches
            on_update: Receives every fetched state
        """
        if self.is_running:
            logger.debug("Polling already running, ignoring start")
            return

        self._cancel_task()
        self._generation += 1
        self._on_update = on_update
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation, interval),
            name=f"playback-poll-{self._generation}",
        )
        logger.info(f"Polling started, interval {interval}s")

    def stop(self) -> None:
        """Stop polling and drop the callback. Safe to call repeatedly."""
        if self._task is None and self._on_update is None:
            return
        self._generation += 1
        self._on_update = None
        self._cancel_task()
        logger.info("Polling stopped")

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, generation: int, interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while generation == self._generation:
            await self._tick(generation)
            next_tick += interval
            now = loop.time()
            if next_tick < now:
                # Missed ticks after a slow fetch collapse into one
                next_tick = now + interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    async def _tick(self, generation: int) -> None:
        try:
            state = await self.fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Poll failed, reporting disconnected: {e}")
            state = PlaybackState.disconnected()

        # stop() may have run while the fetch was in flight
        handler = self._on_update
        if generation != self._generation or handler is None:
            logger.debug("Discarding poll result delivered after stop")
            return

        try:
            handler(state)
        except Exception:
            logger.exception("Error in polling callback")
