"""Helpers shared by capability implementations."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Generator


class OneShot:
    """Single-resolution bridge from callback-style APIs to ``await``.

    Platform layers sometimes report completion more than once (an error
    callback racing a success callback).  Only the first report counts;
    later ones are ignored.  Safe to complete from any thread.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._lock = threading.Lock()
        self._claimed = False

    def _claim(self) -> bool:
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def resolve(self, value: Any = None) -> bool:
        if not self._claim():
            return False
        self._loop.call_soon_threadsafe(self._set, value, None)
        return True

    def reject(self, exc: BaseException) -> bool:
        if not self._claim():
            return False
        self._loop.call_soon_threadsafe(self._set, None, exc)
        return True

    def _set(self, value: Any, exc: BaseException | None) -> None:
        if self._future.done():
            return
        if exc is not None:
            self._future.set_exception(exc)
        else:
            self._future.set_result(value)

    @property
    def done(self) -> bool:
        return self._claimed

    def __await__(self) -> Generator[Any, None, Any]:
        return self._future.__await__()
