"""Matches outbound requests to inbound responses by id."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from .errors import GatewayRequestError
from .protocol import Response

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    id: str
    method: str
    future: asyncio.Future
    issued_at: float = field(default_factory=time.monotonic)


class RequestCorrelator:
    """Owns the id → awaiting-caller map.

    Every entry leaves the map exactly once: resolved, rejected, discarded by
    its caller, or failed together with all others on disconnect.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingRequest] = {}

    def register(self, method: str, request_id: str | None = None) -> PendingRequest:
        request_id = request_id or str(uuid.uuid4())
        if request_id in self._pending:
            raise ValueError(f"duplicate request id {request_id}")
        future = asyncio.get_running_loop().create_future()
        entry = PendingRequest(id=request_id, method=method, future=future)
        self._pending[request_id] = entry
        return entry

    def resolve(self, response: Response) -> bool:
        """Complete the caller waiting on *response.id*.

        Returns ``False`` when nobody is waiting for that id.
        """
        entry = self._pending.pop(response.id, None)
        if entry is None:
            logger.debug("Dropping response for unknown request id %s", response.id)
            return False
        if entry.future.done():
            return True
        if response.ok:
            entry.future.set_result(response.payload or {})
        else:
            error = response.error
            entry.future.set_exception(GatewayRequestError(
                error.code if error else "UNKNOWN",
                error.message if error else "Unknown error",
                error.details if error else None,
            ))
        return True

    def discard(self, request_id: str) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is not None and not entry.future.done():
            entry.future.cancel()

    def fail_all(self, exc: BaseException) -> int:
        """Reject every outstanding request with *exc*; returns how many."""
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(exc)
                # Callers that already gave up must not trigger
                # "exception was never retrieved" warnings.
                entry.future.add_done_callback(_consume_exception)
        if pending:
            logger.info("Rejected %d pending request(s): %s", len(pending), exc)
        return len(pending)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._pending

    @property
    def pending(self) -> int:
        return len(self._pending)


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
