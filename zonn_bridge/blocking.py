"""Run blocking calls from asyncio code with exactly-once settlement.

A blocking round-trip runs on a worker thread while the caller awaits it on
the event loop. The worker finishing and the caller being cancelled (or timing
out) race each other; whichever arrives first settles the caller's future and
every later attempt is dropped.
"""

import asyncio
import logging
import threading
from concurrent.futures import Executor
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger("zonn_bridge.blocking")

T = TypeVar("T")


class SettleOnce:
    """Thread-safe flag that can be claimed exactly once."""

    def __init__(self):
        self._lock = threading.Lock()
        self._settled = False

    @property
    def settled(self) -> bool:
        with self._lock:
            return self._settled

    def try_settle(self) -> bool:
        """
        Claim the flag.

        Returns:
            True for the first caller, False for every later one
        """
        with self._lock:
            if self._settled:
                return False
            self._settled = True
            return True


async def run_blocking(
    func: Callable[..., T],
    *args: Any,
    executor: Optional[Executor] = None,
    timeout: Optional[float] = None,
) -> T:
    """
    Run a blocking callable on a worker thread and await its result.

    Args:
        func: Blocking callable
        *args: Positional arguments for func
        executor: Executor to run on (the loop's default if None)
        timeout: Seconds to wait before giving up (no bound if None)

    Returns:
        Whatever func returns

    Raises:
        Whatever func raises, asyncio.TimeoutError when the wait is exceeded,
        asyncio.CancelledError when the caller is cancelled
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()
    guard = SettleOnce()
    name = getattr(func, "__qualname__", repr(func))

    def resolve(result: Any, error: Optional[BaseException]) -> None:
        # Runs on the loop thread.
        if not guard.try_settle() or future.cancelled():
            logger.debug(f"Dropping late result from {name}")
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def deliver(result: Any, error: Optional[BaseException]) -> None:
        try:
            loop.call_soon_threadsafe(resolve, result, error)
        except RuntimeError:
            logger.debug(f"Event loop closed before {name} settled")

    def work() -> None:
        if guard.settled:
            logger.debug(f"Skipping {name}, caller already gone")
            return
        try:
            result = func(*args)
        except Exception as e:
            deliver(None, e)
        else:
            deliver(result, None)

    loop.run_in_executor(executor, work)

    try:
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout)
    except (asyncio.CancelledError, asyncio.TimeoutError):
        guard.try_settle()
        raise
