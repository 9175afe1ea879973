"""Per-connection keepalive task."""

import asyncio
import logging
import time
from typing import Callable

from ..errors import SendError
from .messages import ping_message
from .registry import Connection

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 2.0


class LivenessPinger:
    """Background task that pings one connection on a fixed interval.

    Purely diagnostic: clients are not expected to answer.
    """

    def __init__(
        self,
        connection: Connection,
        interval_seconds: float = DEFAULT_PING_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self._connection = connection
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.pings_sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start pinging in the background. Calling twice is a no-op."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())

    def cancel(self) -> None:
        """Cancel the ping task without waiting for it."""
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            self._task = None

    async def stop(self) -> None:
        """Cancel the ping task and wait for it to finish."""
        task = self._task
        self.cancel()
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break  # Stop event was set
            except asyncio.TimeoutError:
                pass

            if not self._connection.is_open:
                continue

            try:
                await self._connection.send(ping_message(self._clock()))
                self.pings_sent += 1
            except SendError as e:
                logger.debug(f"Ping failed: {e}")
