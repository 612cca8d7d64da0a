"""Gateway client: connection lifecycle for the node.

States: DISCONNECTED → CONNECTING → CONNECTED
                          ↘            ↘
                           ERROR(reason) ← transport loss / rejected connect
                             ↘
                              CONNECTING  (backoff retry, at most 10 times)

  connect.challenge event  → sign nonce, send ``connect`` request
  hello-ok response        → CONNECTED, persist token, start keepalive
  node.invoke request      → CommandDispatcher, one ``res`` per request
  any other response       → RequestCorrelator

All state lives on the event loop that calls :meth:`GatewayClient.connect`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .activity import ActivityLog
from .config import NodeConfig
from .correlator import RequestCorrelator
from .dispatcher import CommandDispatcher
from .errors import (
    ConnectionLostError,
    FrameDecodeError,
    GatewayRequestError,
    TransportClosed,
)
from .identity import DeviceIdentity, TokenStore, build_auth_payload
from .keepalive import KeepaliveScheduler
from .protocol import (
    EVENT_CONNECT_CHALLENGE,
    METHOD_CONNECT,
    METHOD_NODE_INVOKE,
    PROTOCOL_VERSION,
    ClientInfo,
    ConnectChallenge,
    DeviceProof,
    ErrorCode,
    Event,
    HelloOk,
    NodeInvoke,
    Request,
    Response,
    build_connect_params,
    decode_frame,
    encode_frame,
)
from .transport import Transport, TransportFactory, WebSocketTransport

logger = logging.getLogger(__name__)

CLIENT_MODE = "node"
ROLE = "node"

MAX_RECONNECT_ATTEMPTS = 10
_BACKOFF_BASE = 1
_BACKOFF_MAX = 30
MAX_ATTEMPTS_REASON = "max reconnection attempts reached"


def backoff_delay(attempt: int) -> float:
    """Delay in seconds before reconnect attempt *attempt* (0-based)."""
    return min(_BACKOFF_BASE * 2 ** attempt, _BACKOFF_MAX)


class ConnectionStatus(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    status: ConnectionStatus
    reason: str = ""

    @classmethod
    def error(cls, reason: str) -> ConnectionState:
        return cls(ConnectionStatus.ERROR, reason)

    def __str__(self) -> str:
        if self.status is ConnectionStatus.ERROR:
            return f"error({self.reason})"
        return self.status.value


DISCONNECTED = ConnectionState(ConnectionStatus.DISCONNECTED)
CONNECTING = ConnectionState(ConnectionStatus.CONNECTING)
CONNECTED = ConnectionState(ConnectionStatus.CONNECTED)

EventHandler = Callable[[Event], Awaitable[None]]
StateListener = Callable[[ConnectionState], None]


class GatewayClient:
    """Owns the transport, the connection state and the pending-request map."""

    def __init__(
        self,
        config: NodeConfig,
        identity: DeviceIdentity,
        token_store: TokenStore,
        dispatcher: CommandDispatcher,
        transport_factory: TransportFactory = WebSocketTransport.open,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.identity = identity
        self.token_store = token_store
        self.dispatcher = dispatcher
        self.activity: ActivityLog = dispatcher.activity
        self.hello: Optional[HelloOk] = None

        self._transport_factory = transport_factory
        self._sleep = sleep
        self._clock = clock

        self._state = DISCONNECTED
        self._transport: Optional[Transport] = None
        self._correlator = RequestCorrelator()
        self._keepalive: Optional[KeepaliveScheduler] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._handshake_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._reconnect_attempts = 0
        self._user_disconnected = False
        # Bumped by every dial and every disconnect(); a dial that returns
        # under an older number is stale.
        self._generation = 0

        self._event_handlers: dict[str, EventHandler] = {}
        self._state_listeners: list[StateListener] = []

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state.status is ConnectionStatus.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def pending_requests(self) -> int:
        return self._correlator.pending

    @property
    def keepalive(self) -> Optional[KeepaliveScheduler]:
        return self._keepalive

    def on_event(self, name: str, handler: EventHandler) -> None:
        """Register a handler for a gateway event."""
        self._event_handlers[name] = handler

    def on_state_change(self, listener: StateListener) -> None:
        """Register a callback invoked after every state transition."""
        self._state_listeners.append(listener)

    async def connect(self) -> None:
        """Open a session unless one is already connecting or connected."""
        if self._state.status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return
        self._user_disconnected = False
        self._reconnect_attempts = 0
        self._cancel_reconnect()
        await self._open()

    async def disconnect(self) -> None:
        """Close the session on purpose. Never schedules a reconnect."""
        self._user_disconnected = True
        self._generation += 1
        self._cancel_reconnect()
        transport = self._detach(ConnectionLostError("Disconnected"))
        self._transition(DISCONNECTED)
        await self._close_transport(transport)
        logger.info("Disconnected from gateway")

    async def request(self, method: str, params: dict | None = None, timeout: float | None = None) -> dict:
        """Send a request and wait for its response payload.

        Raises :class:`GatewayRequestError` on ``ok: false``,
        :class:`ConnectionLostError` if the session ends first, and
        :class:`asyncio.TimeoutError` when *timeout* elapses.
        """
        transport = self._transport
        if transport is None:
            raise ConnectionLostError("Not connected")

        entry = self._correlator.register(method)
        request = Request(id=entry.id, method=method, params=params or {})
        try:
            await transport.send(encode_frame(request))
        except TransportClosed as exc:
            self._correlator.discard(entry.id)
            raise ConnectionLostError(str(exc)) from exc

        try:
            if timeout is None:
                return await entry.future
            return await asyncio.wait_for(entry.future, timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            self._correlator.discard(entry.id)
            raise

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old, self._state = self._state, new_state
        logger.info("Gateway state: %s → %s", old, new_state)
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Error in state-change listener")

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    async def _open(self) -> None:
        url = self.config.gateway_url
        if not self.config.gateway_url_valid:
            logger.error("Invalid gateway URL: %r", url)
            self._transition(ConnectionState.error("Invalid gateway URL"))
            return

        self._generation += 1
        generation = self._generation
        self._transition(CONNECTING)
        logger.info("Connecting to gateway: %s", url)
        try:
            transport = await self._transport_factory(url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._generation:
                return
            logger.warning("Failed to connect to %s: %s", url, exc)
            await self._handle_disconnection(str(exc) or type(exc).__name__)
            return

        if generation != self._generation or self._state != CONNECTING:
            logger.debug("Closing stale connection from superseded dial")
            await self._close_transport(transport)
            return

        self._transport = transport
        self._receive_task = asyncio.get_running_loop().create_task(self._receive_loop(transport))

    async def _receive_loop(self, transport: Transport) -> None:
        """Process frames in arrival order until the transport fails."""
        try:
            while True:
                raw = await transport.recv()
                self._handle_frame(raw, transport)
        except asyncio.CancelledError:
            raise
        except TransportClosed as exc:
            logger.info("Gateway connection closed: %s", exc)
            reason = str(exc) or "Connection closed"
        except Exception as exc:
            logger.exception("Gateway receive error")
            reason = str(exc) or type(exc).__name__

        if transport is self._transport:
            await self._handle_disconnection(reason)

    def _detach(self, exc: BaseException) -> Optional[Transport]:
        """Drop everything tied to the current session; return its transport."""
        transport, self._transport = self._transport, None
        if self._keepalive is not None:
            self._keepalive.stop()
            self._keepalive = None
        current = asyncio.current_task()
        for task in (self._receive_task, self._handshake_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._receive_task = None
        self._handshake_task = None
        self._correlator.fail_all(exc)
        return transport

    async def _close_transport(self, transport: Optional[Transport]) -> None:
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as exc:
            logger.debug("Error closing transport: %s", exc)

    async def _handle_disconnection(self, reason: str) -> None:
        """Unexpected loss of a connecting/connected session."""
        if self._user_disconnected:
            return
        if self._state.status not in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return

        transport = self._detach(ConnectionLostError(reason))
        if self._reconnect_attempts >= MAX_RECONNECT_ATTEMPTS:
            logger.error("Giving up after %d reconnection attempts", self._reconnect_attempts)
            self._transition(ConnectionState.error(MAX_ATTEMPTS_REASON))
        else:
            self._transition(ConnectionState.error(reason))
            delay = backoff_delay(self._reconnect_attempts)
            logger.info("Reconnecting in %ss...", delay)
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_after(delay))
        await self._close_transport(transport)

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_attempts += 1
        self._reconnect_task = None
        await self._open()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ------------------------------------------------------------------ #
    # Inbound frames
    # ------------------------------------------------------------------ #

    def _handle_frame(self, raw: str | bytes, transport: Transport) -> None:
        try:
            envelope = decode_frame(raw)
        except FrameDecodeError as exc:
            logger.warning("Discarding malformed frame: %s", exc)
            return

        if isinstance(envelope, Event):
            self._handle_event(envelope)
        elif isinstance(envelope, Request):
            self._handle_request(envelope, transport)
        else:
            self._correlator.resolve(envelope)

    def _handle_event(self, event: Event) -> None:
        if event.event == EVENT_CONNECT_CHALLENGE:
            try:
                challenge = ConnectChallenge.from_payload(event.payload)
            except FrameDecodeError as exc:
                logger.warning("Ignoring challenge: %s", exc)
                return
            if self._handshake_task is not None and not self._handshake_task.done():
                self._handshake_task.cancel()
            self._handshake_task = asyncio.get_running_loop().create_task(self._handshake(challenge.nonce))
            return

        handler = self._event_handlers.get(event.event)
        if handler is None:
            logger.debug("Unhandled event: %s", event.event)
            return
        self._spawn(self._run_event_handler(handler, event))

    async def _run_event_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception("Handler error for %s", event.event)

    def _handle_request(self, request: Request, transport: Transport) -> None:
        if request.method != METHOD_NODE_INVOKE:
            logger.warning("Unknown request method: %s", request.method)
            response = Response.failure(request.id, ErrorCode.UNKNOWN_COMMAND, f"Unknown method: {request.method}")
            self._spawn(self._send_response(response, transport))
            return
        try:
            invoke = NodeInvoke.from_params(request.params)
        except FrameDecodeError as exc:
            response = Response.failure(request.id, ErrorCode.INVALID_PARAMS, str(exc))
            self._spawn(self._send_response(response, transport))
            return
        # Commands run concurrently; each owns its own side effects.
        self._spawn(self._run_invoke(request.id, invoke, transport))

    async def _run_invoke(self, request_id: str, invoke: NodeInvoke, transport: Transport) -> None:
        try:
            response = await self.dispatcher.dispatch(request_id, invoke.command, invoke.params)
        except Exception as exc:
            logger.exception("Dispatcher failed for %s", invoke.command)
            response = Response.failure(request_id, ErrorCode.UNKNOWN_COMMAND, str(exc))
        await self._send_response(response, transport)

    async def _send_response(self, response: Response, transport: Transport) -> None:
        """Reply on the connection the request came in on, or drop it."""
        if transport is not self._transport:
            logger.warning("Dropping response %s: connection is gone", response.id)
            return
        try:
            await transport.send(encode_frame(response))
        except TransportClosed as exc:
            logger.warning("Dropping response %s: %s", response.id, exc)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------ #
    # Handshake
    # ------------------------------------------------------------------ #

    def _build_connect_params(self, nonce: str) -> dict:
        signed_at = int(self._clock() * 1000)
        token = self.token_store.token
        scopes: list[str] = []
        payload = build_auth_payload(
            device_id=self.identity.device_id,
            client_id=self.config.client_id,
            client_mode=CLIENT_MODE,
            role=ROLE,
            scopes=scopes,
            signed_at_ms=signed_at,
            token=token,
            nonce=nonce,
        )
        return build_connect_params(
            client=ClientInfo(
                id=self.config.client_id,
                version=self.config.client_version,
                platform=self.config.platform,
                mode=CLIENT_MODE,
            ),
            device=DeviceProof(
                id=self.identity.device_id,
                public_key=self.identity.public_key_b64,
                signature=self.identity.sign(payload),
                signed_at=signed_at,
                nonce=nonce,
            ),
            caps=self.dispatcher.caps,
            commands=self.dispatcher.commands,
            permissions=self.config.current_permissions,
            locale=self.config.locale,
            token=token,
            role=ROLE,
            scopes=scopes,
        )

    async def _handshake(self, nonce: str) -> None:
        try:
            result = await self.request(METHOD_CONNECT, self._build_connect_params(nonce))
        except GatewayRequestError as exc:
            logger.error("Gateway error: %s - %s", exc.code, exc.message)
            await self._handle_disconnection(exc.message)
            return
        except ConnectionLostError:
            return

        try:
            hello = HelloOk.from_payload(result)
        except FrameDecodeError as exc:
            logger.error("Unexpected connect response: %s", exc)
            await self._handle_disconnection(str(exc))
            return
        self._on_hello_ok(hello)

    def _on_hello_ok(self, hello: HelloOk) -> None:
        self.hello = hello
        if hello.protocol and hello.protocol != PROTOCOL_VERSION:
            logger.warning("Gateway speaks protocol %d, node uses %d", hello.protocol, PROTOCOL_VERSION)

        self._transition(CONNECTED)
        self._reconnect_attempts = 0

        if hello.device_token:
            self.token_store.token = hello.device_token
            logger.info("Device token saved")

        if self._keepalive is not None:
            self._keepalive.stop()
            self._keepalive = None
        if hello.tick_interval_ms and self._transport is not None:
            self._keepalive = KeepaliveScheduler(
                self._transport.ping, hello.tick_interval_ms / 1000, sleep=self._sleep
            )
            self._keepalive.start()

        logger.info("Connected to gateway successfully")
        self.activity.record("Connected", True, "connection")
