"""Exception types shared across the node.

Two families:
  protocol-level -- malformed frames, transport loss, handshake rejection.
      Handled by the gateway client through state transitions.
  command-level  -- :class:`NodeError`, always surfaced to the gateway as a
      ``res`` frame with ``ok: false``.
"""

from __future__ import annotations

from typing import Any


class NodeError(Exception):
    """A command failed for a reason the wire taxonomy can express."""

    def __init__(self, code, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"NodeError({self.code!s}, {self.message!r})"


class FrameDecodeError(ValueError):
    """An inbound frame is not valid JSON or lacks required envelope fields."""


class TransportClosed(ConnectionError):
    """The underlying connection went away."""


class ConnectionLostError(ConnectionError):
    """A pending request was abandoned because the gateway connection ended."""

    def __init__(self, message: str = "Connection lost") -> None:
        super().__init__(message)


class GatewayRequestError(Exception):
    """The gateway answered a request with ``ok: false``."""

    def __init__(self, code: str, message: str, details: Any = None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.details = details
