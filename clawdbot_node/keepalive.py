"""Periodic liveness probe at the interval the gateway dictates."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class KeepaliveScheduler:
    """Runs *probe* every *interval* seconds until stopped.

    A failed probe is only logged; losing the connection is detected by the
    receive loop, not here.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[None]],
        interval: float,
        sleep: Sleep = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("keepalive interval must be positive")
        self.interval = interval
        self._probe = probe
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    def start(self) -> None:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Keepalive started (every %.1fs)", self.interval)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            self.ticks += 1
            try:
                await self._probe()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Keepalive ping failed: %s", exc)
