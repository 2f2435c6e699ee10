"""Countdown timer of an attempt."""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

logger = logging.getLogger(__name__)

ExpiredCallback = Callable[[], Union[None, Awaitable[Any]]]


class CountdownTimer:
    """
    Ticks once per ``interval`` from ``total_seconds`` down to zero.

    Reaching zero fires the ``expired`` event exactly once; subscribers may be
    plain functions or coroutine functions. Coroutine subscribers run as
    separate tasks so a slow submit never holds up the ticking. There is no
    pause and nothing survives a restart.
    """

    def __init__(self, total_seconds: int, interval: float = 1.0):
        if total_seconds < 0:
            raise ValueError("total_seconds must be non-negative")
        self.total_seconds = total_seconds
        self.interval = interval
        self._remaining = total_seconds
        self._expired = False
        self._subscribers: List[ExpiredCallback] = []
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Future] = set()

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, callback: ExpiredCallback) -> None:
        """Register a listener for the expired event."""
        self._subscribers.append(callback)

    def tick(self) -> int:
        """Advance by one second. Returns the remaining seconds."""
        if self._expired:
            return 0

        self._remaining = max(self._remaining - 1, 0)
        if self._remaining == 0:
            self._fire_expired()
        return self._remaining

    def _fire_expired(self) -> None:
        self._expired = True
        logger.info("Timer expired after %d seconds", self.total_seconds)
        for callback in list(self._subscribers):
            result = callback()
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._pending.discard)

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self.running or self._expired:
            return
        if self.total_seconds == 0:
            self._fire_expired()
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self._expired:
            await asyncio.sleep(self.interval)
            self.tick()

    def cancel(self) -> None:
        """Stop ticking (attempt teardown). Already-fired subscribers keep running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def format_remaining(self) -> str:
        """``m:ss`` like the sidebar clock."""
        minutes, seconds = divmod(self._remaining, 60)
        return f"{minutes}:{seconds:02d}"
