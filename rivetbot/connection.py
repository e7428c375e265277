# =============================================================================
# rivetbot -- Gateway Session
# =============================================================================
#
# One GatewaySession per bot. connect() performs a single attempt:
#
#   open transport -> HELLO -> heartbeat task -> IDENTIFY | RESUME
#     -> READY | RESUMED
#
# run() supervises: reconnects with backoff after failures and resumes the
# session after drops whenever a session id and sequence are known.
#
# The receive loop is the only task that reads the transport. Application
# events are handed to the dispatcher from it, so a full handler queue
# slows frame acceptance instead of losing events.
# =============================================================================

from __future__ import annotations

import asyncio
import random
import sys
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, WebSocketException

from ._logging import logger
from .compression import ZlibStreamInflater
from .constants import (
    API_VERSION,
    CONNECTION_TIMEOUT,
    DEFAULT_GATEWAY_URL,
    DEFAULT_INTENTS,
    FATAL_CLOSE_CODES,
    GATEWAY_BUCKET,
    GATEWAY_SEND_LIMIT,
    GATEWAY_SEND_WINDOW,
    HANDSHAKE_TIMEOUT,
    INVALID_SESSION_MAX_DELAY,
    INVALID_SESSION_MIN_DELAY,
    MAX_MESSAGE_SIZE,
    RECONNECT_ABSOLUTE_CAP,
    RECONNECT_JITTER,
    SESSION_RESET_CLOSE_CODES,
    SHUTDOWN_TIMEOUT,
    WS_CLOSE_NORMAL,
    WS_CLOSE_RESUMABLE,
)
from .errors import AuthError, ClientClosedError, ProtocolError, TransportError
from .event_sequencer import SequenceTracker
from .protocol import FrameCodec, frame_to_event
from .rate_limiter import RateLimiter
from .types import (
    GatewayFrame,
    OpCode,
    ReconnectConfig,
    ReconnectMode,
    SessionState,
    SessionStats,
)

if TYPE_CHECKING:
    from .dispatcher import EventDispatcher

# Opcodes the session sends on its own; never through send_command()
_SESSION_OPCODES = frozenset({OpCode.HEARTBEAT, OpCode.IDENTIFY, OpCode.RESUME})

# Errors raised by a transport whose connection is gone
_TRANSPORT_ERRORS = (ConnectionClosed, WebSocketException, OSError)


class GatewayTransport(Protocol):
    """The subset of ``websockets`` ``ClientConnection`` the session uses."""

    async def recv(self) -> str | bytes: ...

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[GatewayTransport]]


async def websocket_connector(url: str) -> GatewayTransport:
    """Open a gateway WebSocket with ``websockets``."""
    return await websockets.asyncio.client.connect(
        url,
        max_size=MAX_MESSAGE_SIZE,
        open_timeout=None,  # asyncio.wait_for handles timeout
        compression=None,
    )


class GatewaySession:
    """Long-lived gateway session.

    Args:
        token: Bot token.
        dispatcher: Receives every application (DISPATCH) event.
        intents: Gateway intents bitfield.
        gateway_url: Base gateway URL, usually from ``GET /gateway/bot``.
        rate_limiter: Limiter holding the ``gateway`` send bucket.
        reconnect: Backoff settings for failed attempts.
        handshake_timeout: Max seconds from transport open to READY/RESUMED.
        compression: ``None``, ``"payload"`` (IDENTIFY compress flag) or
            ``"zlib-stream"`` (transport compression).
        connector: Coroutine opening a transport for a URL.
    """

    def __init__(
        self,
        token: str,
        *,
        dispatcher: EventDispatcher | None = None,
        intents: int = DEFAULT_INTENTS,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        rate_limiter: RateLimiter | None = None,
        reconnect: ReconnectConfig | None = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        compression: str | None = None,
        connector: Connector = websocket_connector,
    ) -> None:
        if compression not in (None, "payload", "zlib-stream"):
            raise ValueError(f"Unsupported compression mode: {compression!r}")

        self._token = token
        self._dispatcher = dispatcher
        self._intents = intents
        self._gateway_url = gateway_url
        self._limiter = rate_limiter or RateLimiter()
        self._limiter.configure(GATEWAY_BUCKET, GATEWAY_SEND_LIMIT, GATEWAY_SEND_WINDOW)
        self._reconnect_cfg = reconnect or ReconnectConfig()
        self.handshake_timeout = handshake_timeout
        self._compression = compression
        self._connector = connector
        self._codec = FrameCodec()
        self._tracker = SequenceTracker()

        # Randomized wait before re-identifying after INVALID_SESSION(false)
        self.invalid_session_delay = (INVALID_SESSION_MIN_DELAY, INVALID_SESSION_MAX_DELAY)

        # Session
        self._state = SessionState.DISCONNECTED
        self._session_id: str | None = None
        self._resume_url: str | None = None
        self._user: dict[str, Any] | None = None
        self._fatal: AuthError | None = None

        # Connection
        self._transport: GatewayTransport | None = None
        self._inflater: ZlibStreamInflater | None = None
        self._heartbeat_interval: float | None = None
        self._ack_pending = False
        self._last_beat_sent: float | None = None
        self._last_ack: float | None = None
        self._latency: float | None = None
        self._closing_as: str | None = None  # "resume" | "reset" | "shutdown"
        # Set while the receive loop waits on a full handler queue; unread
        # ACKs are then not a sign of a dead connection
        self._dispatching = False
        self._dispatch_stalled = False
        self._next_delay: float | None = None

        # Tasks
        self._recv_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._handshake: asyncio.Future[None] | None = None
        self._disconnected: asyncio.Future[int | None] | None = None
        self._shutdown = asyncio.Event()

        self._stats = SessionStats()

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def sequence(self) -> int | None:
        """Last sequence number received in this session."""
        return self._tracker.last

    @property
    def gateway_url(self) -> str:
        return self._gateway_url

    @gateway_url.setter
    def gateway_url(self, url: str) -> None:
        self._gateway_url = url

    @property
    def resume_url(self) -> str | None:
        return self._resume_url

    @property
    def user(self) -> dict[str, Any] | None:
        """The bot's own user object from READY."""
        return self._user

    @property
    def latency(self) -> float | None:
        """Last heartbeat round trip in seconds."""
        return self._latency

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.READY and self._transport is not None

    @property
    def can_resume(self) -> bool:
        return self._session_id is not None and self._tracker.last is not None

    # -- Connect ----------------------------------------------------------------

    async def connect(self) -> None:
        """Open the transport and complete IDENTIFY or RESUME.

        Raises:
            AuthError: Credentials rejected; the session is FATAL.
            TransportError: Network failure or handshake timeout.
            ClientClosedError: :meth:`close` was already called.
        """
        if self._shutdown.is_set():
            raise ClientClosedError("Session is closed")
        if self._fatal is not None:
            raise self._fatal
        await self._finish_tasks()

        resuming = self.can_resume
        base = self._resume_url if resuming and self._resume_url else self._gateway_url
        url = self._build_url(base)

        self._set_state(SessionState.CONNECTING)
        logger.info("Connecting to %s (%s)", url, "resume" if resuming else "identify")
        try:
            transport = await asyncio.wait_for(self._connector(url), timeout=CONNECTION_TIMEOUT)
        except asyncio.TimeoutError:
            self._set_state(SessionState.DISCONNECTED)
            raise TransportError(f"Connection timed out after {CONNECTION_TIMEOUT}s") from None
        except _TRANSPORT_ERRORS as exc:
            self._set_state(SessionState.DISCONNECTED)
            raise TransportError(f"Failed to connect: {exc}") from exc

        loop = asyncio.get_running_loop()
        self._transport = transport
        self._inflater = ZlibStreamInflater() if self._compression == "zlib-stream" else None
        self._closing_as = None
        self._handshake = loop.create_future()
        self._disconnected = loop.create_future()
        self._set_state(SessionState.HANDSHAKING)
        self._recv_task = asyncio.create_task(
            self._recv_loop(transport), name="rivetbot-gateway-recv"
        )

        try:
            await asyncio.wait_for(self._handshake, timeout=self.handshake_timeout)
        except asyncio.TimeoutError:
            logger.warning("Handshake timed out after %.1fs", self.handshake_timeout)
            await self._drop(WS_CLOSE_RESUMABLE, "Handshake timeout")
            await self._finish_tasks()
            raise TransportError(
                f"Handshake timed out after {self.handshake_timeout}s"
            ) from None
        except (AuthError, TransportError):
            await self._finish_tasks()
            raise

        self._stats.connected_since = time.monotonic()
        logger.info("Gateway session %s ready", self._session_id)

    # -- Supervisor -------------------------------------------------------------

    async def run(self) -> None:
        """Keep the session connected until :meth:`close`.

        Raises:
            AuthError: Credentials rejected.
            TransportError: ``max_attempts`` consecutive attempts failed.
        """
        cfg = self._reconnect_cfg
        failures = 0
        while not self._shutdown.is_set():
            delay = self._next_delay
            self._next_delay = None
            if delay:
                logger.info("Reconnecting in %.1fs", delay)
                await self._sleep_or_shutdown(delay)
                if self._shutdown.is_set():
                    break

            try:
                await self.connect()
            except AuthError:
                logger.error("Gateway rejected the credentials, giving up")
                raise
            except ClientClosedError:
                break
            except TransportError as exc:
                if self._shutdown.is_set():
                    break
                failures += 1
                if cfg.max_attempts >= 0 and failures >= cfg.max_attempts:
                    logger.error("Max reconnect attempts (%d) reached", cfg.max_attempts)
                    raise
                if self._next_delay is None:
                    self._next_delay = self._calculate_delay(failures - 1)
                logger.warning(
                    "Connect failed: %s (attempt %d/%s)",
                    exc,
                    failures,
                    cfg.max_attempts if cfg.max_attempts >= 0 else "inf",
                )
                continue

            failures = 0
            await self._wait_disconnect()
            if self._shutdown.is_set():
                break
            if self._fatal is not None:
                logger.error("Session terminated: %s", self._fatal)
                raise self._fatal
            self._stats.reconnects += 1

        await self._finish_tasks()

    async def _wait_disconnect(self) -> None:
        if self._disconnected is None:
            return
        shutdown = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait(
                {self._disconnected, shutdown}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            shutdown.cancel()

    async def _sleep_or_shutdown(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    # -- Close --------------------------------------------------------------------

    async def close(self) -> None:
        """Stop heartbeating and receiving, close the transport with 1000."""
        if self._shutdown.is_set() and self._transport is None:
            return
        logger.info("Closing gateway session")
        self._shutdown.set()
        self._cancel_heartbeat()

        transport = self._transport
        if transport is not None:
            self._closing_as = "shutdown"
            try:
                await asyncio.wait_for(
                    transport.close(WS_CLOSE_NORMAL, "Shutdown"), timeout=SHUTDOWN_TIMEOUT
                )
            except asyncio.TimeoutError:
                logger.warning("Transport close timed out")
            except _TRANSPORT_ERRORS as exc:
                logger.debug("Transport close failed: %s", exc)

        await self._finish_tasks()
        self._transport = None
        if self._state != SessionState.FATAL:
            self._set_state(SessionState.DISCONNECTED)

    # -- Send -------------------------------------------------------------------

    async def send_command(self, op: int, data: Any, *, timeout: float | None = None) -> None:
        """Send an application-level gateway command (presence, member requests).

        Gated by the ``gateway`` rate limit bucket.

        Raises:
            ValueError: *op* is managed by the session itself.
            TransportError: Not connected.
            RateLimitTimeout: No send slot within *timeout*.
        """
        if op in _SESSION_OPCODES:
            raise ValueError(f"Opcode {op} is managed by the session")
        if self._transport is None:
            raise TransportError("Not connected")
        await self._limiter.acquire(GATEWAY_BUCKET, timeout=timeout)
        await self._send(op, data)

    async def _send(self, op: int, data: Any) -> None:
        transport = self._transport
        if transport is None:
            raise TransportError("Not connected")
        try:
            await transport.send(self._codec.encode(op, data))
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"Send failed: {exc}") from exc
        self._stats.frames_sent += 1
        logger.debug("Sent op %s", _op_name(op))

    # -- Receive loop -------------------------------------------------------------

    async def _recv_loop(self, transport: GatewayTransport) -> None:
        code: int | None = None
        reason = ""
        try:
            while True:
                raw = await transport.recv()
                self._stats.frames_received += 1
                frame = self._decode(raw)
                if frame is not None:
                    await self._handle_frame(frame)
                elif self._inflater is not None and self._inflater.broken:
                    await self._drop(WS_CLOSE_RESUMABLE, "Corrupt zlib stream")
        except ConnectionClosed as exc:
            if exc.rcvd is not None:
                code, reason = exc.rcvd.code, exc.rcvd.reason
        except TransportError as exc:
            logger.warning("Gateway send failed: %s", exc)
        except (WebSocketException, OSError) as exc:
            logger.warning("Gateway receive failed: %s", exc)
        except Exception:
            logger.exception("Receive loop crashed, closing the connection")
            await self._close_transport(transport, WS_CLOSE_RESUMABLE, "Internal error")
            raise
        finally:
            self._on_disconnect(code, reason)

    def _decode(self, raw: str | bytes) -> GatewayFrame | None:
        try:
            if isinstance(raw, bytes) and self._inflater is not None:
                text = self._inflater.feed(raw)
                if text is None:
                    return None
                return self._codec.decode(text)
            return self._codec.decode(raw)
        except ProtocolError as exc:
            self._stats.frames_dropped += 1
            logger.warning("Dropping malformed frame: %s", exc)
            return None

    async def _handle_frame(self, frame: GatewayFrame) -> None:
        op = frame.op
        if op == OpCode.DISPATCH:
            await self._handle_dispatch(frame)
        elif op == OpCode.HELLO:
            await self._handle_hello(frame)
        elif op == OpCode.HEARTBEAT:
            await self._send_heartbeat()
        elif op == OpCode.HEARTBEAT_ACK:
            self._handle_heartbeat_ack()
        elif op == OpCode.RECONNECT:
            logger.info("Gateway requested reconnect")
            await self._drop(WS_CLOSE_RESUMABLE, "Reconnect requested")
        elif op == OpCode.INVALID_SESSION:
            await self._handle_invalid_session(frame)
        else:
            logger.debug("Ignoring op %s", _op_name(op))

    async def _handle_dispatch(self, frame: GatewayFrame) -> None:
        if frame.s is not None and not self._tracker.observe(frame.s):
            self._stats.replays_skipped += 1
            logger.debug("Skipping replayed event %s (seq %d)", frame.t, frame.s)
            return

        event = frame_to_event(frame)
        if event.type == "READY":
            self._session_id = event.payload.get("session_id")
            self._resume_url = event.payload.get("resume_gateway_url")
            self._user = event.payload.get("user")
            self._complete_handshake()
        elif event.type == "RESUMED":
            self._stats.resumes += 1
            logger.info("Resumed session %s at seq %s", self._session_id, self._tracker.last)
            self._complete_handshake()

        self._stats.events_dispatched += 1
        if self._dispatcher is not None:
            if self._dispatcher.congested:
                self._dispatch_stalled = True
            self._dispatching = True
            try:
                await self._dispatcher.dispatch(event)
            finally:
                self._dispatching = False

    async def _handle_hello(self, frame: GatewayFrame) -> None:
        d = frame.d if isinstance(frame.d, dict) else {}
        interval_ms = d.get("heartbeat_interval")
        if not isinstance(interval_ms, (int, float)) or interval_ms <= 0:
            logger.warning("HELLO without a valid heartbeat interval: %r", frame.d)
            await self._drop(WS_CLOSE_RESUMABLE, "Bad HELLO")
            return

        self._heartbeat_interval = interval_ms / 1000.0
        self._start_heartbeat(self._heartbeat_interval)

        if self.can_resume:
            self._set_state(SessionState.RESUMING)
            await self._send(
                OpCode.RESUME,
                {
                    "token": self._token,
                    "session_id": self._session_id,
                    "seq": self._tracker.last,
                },
            )
        else:
            self._tracker.reset()
            self._session_id = None
            self._resume_url = None
            await self._send(OpCode.IDENTIFY, self._identify_payload())
            self._stats.identifies += 1
            self._set_state(SessionState.IDENTIFIED)

    async def _handle_invalid_session(self, frame: GatewayFrame) -> None:
        if frame.d is True and self.can_resume:
            logger.info("Session invalidated (resumable), reconnecting")
            await self._drop(WS_CLOSE_RESUMABLE, "Invalid session")
            return

        low, high = self.invalid_session_delay
        self._next_delay = random.uniform(low, high)
        logger.warning(
            "Session invalidated, identifying again in %.1fs", self._next_delay
        )
        await self._drop(WS_CLOSE_RESUMABLE, "Invalid session", reset=True)

    def _complete_handshake(self) -> None:
        self._set_state(SessionState.READY)
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)

    def _identify_payload(self) -> dict[str, Any]:
        return {
            "token": self._token,
            "intents": self._intents,
            "properties": {
                "os": sys.platform,
                "browser": "rivetbot",
                "device": "rivetbot",
            },
            "compress": self._compression == "payload",
        }

    # -- Heartbeat ----------------------------------------------------------------

    def _start_heartbeat(self, interval: float) -> None:
        self._cancel_heartbeat()
        self._ack_pending = False
        self._dispatch_stalled = False
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(interval), name="rivetbot-gateway-heartbeat"
        )

    def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self, interval: float) -> None:
        """First beat after ``interval * random()``, then every ``interval``."""
        delay = interval * random.random()
        while True:
            await asyncio.sleep(delay)
            delay = interval

            if self._ack_pending:
                if self._dispatching or self._dispatch_stalled:
                    logger.debug("Receive loop backed up on dispatch, ACK may be unread")
                else:
                    logger.warning("No heartbeat ACK since last beat, connection is a zombie")
                    await self._drop(WS_CLOSE_RESUMABLE, "Zombie connection")
                    return
            self._dispatch_stalled = self._dispatching
            try:
                await self._send_heartbeat()
            except TransportError as exc:
                logger.debug("Heartbeat failed: %s", exc)
                return

    async def _send_heartbeat(self) -> None:
        self._ack_pending = True
        self._last_beat_sent = time.monotonic()
        await self._send(OpCode.HEARTBEAT, self._tracker.last)
        self._stats.heartbeats_sent += 1

    def _handle_heartbeat_ack(self) -> None:
        self._ack_pending = False
        self._last_ack = time.monotonic()
        self._stats.heartbeat_acks += 1
        if self._last_beat_sent is not None:
            self._latency = self._last_ack - self._last_beat_sent
            self._stats.last_latency_ms = round(self._latency * 1000, 2)

    # -- Disconnect ---------------------------------------------------------------

    async def _drop(self, code: int, reason: str, *, reset: bool = False) -> None:
        """Close the transport ourselves. Any non-1000 code keeps the session resumable."""
        transport = self._transport
        if transport is None:
            return
        if self._closing_as is None:
            self._closing_as = "reset" if reset else "resume"
        if reset:
            self._clear_session()
        logger.info("Closing gateway connection: %s (%d)", reason, code)
        await self._close_transport(transport, code, reason)

    async def _close_transport(
        self, transport: GatewayTransport, code: int, reason: str
    ) -> None:
        try:
            await transport.close(code, reason)
        except _TRANSPORT_ERRORS as exc:
            logger.debug("Transport close failed: %s", exc)

    def _on_disconnect(self, code: int | None, reason: str) -> None:
        """Runs once at the end of every receive loop."""
        self._cancel_heartbeat()
        self._transport = None
        self._inflater = None
        closing_as = self._closing_as
        error: AuthError | None = None

        if closing_as is None:
            logger.warning("Gateway connection lost: code=%s reason=%s", code, reason)
            if code in FATAL_CLOSE_CODES:
                self._fatal = AuthError(f"Gateway closed with {code}: {reason}")
                error = self._fatal
            elif code in SESSION_RESET_CLOSE_CODES:
                logger.info("Close code %s invalidates the session", code)
                self._clear_session()
        else:
            logger.debug("Gateway connection closed (%s)", closing_as)

        if self._fatal is not None:
            self._set_state(SessionState.FATAL)
        else:
            self._set_state(SessionState.DISCONNECTED)

        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(
                error or TransportError(f"Connection closed during handshake (code={code})")
            )
        if self._disconnected is not None and not self._disconnected.done():
            self._disconnected.set_result(code)

    def _clear_session(self) -> None:
        self._session_id = None
        self._resume_url = None
        self._tracker.reset()

    async def _finish_tasks(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Wait for the receive loop of the previous connection to end."""
        self._cancel_heartbeat()
        task = self._recv_task
        self._recv_task = None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Receive loop did not stop, cancelling")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        elif not task.cancelled() and task.exception() is not None:
            logger.error("Receive loop crashed: %s", task.exception())

    # -- Helpers ------------------------------------------------------------------

    def _calculate_delay(self, attempt: int) -> float:
        """Compute reconnect delay based on strategy."""
        cfg = self._reconnect_cfg

        if cfg.mode == ReconnectMode.LINEAR:
            delay = cfg.base_delay + attempt * 1.0
        elif cfg.mode == ReconnectMode.FIBONACCI:
            delay = cfg.base_delay * _fib(min(attempt + 1, 10))
        else:
            delay = cfg.base_delay * (cfg.factor**attempt)

        delay = min(delay, cfg.max_delay, RECONNECT_ABSOLUTE_CAP)

        if cfg.jitter:
            jitter_amount = delay * RECONNECT_JITTER * (random.random() - 0.5)
            delay = max(0.0, delay + jitter_amount)

        return delay

    def _set_state(self, new_state: SessionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)

    def _build_url(self, base: str) -> str:
        """Append version, encoding and compression query params."""
        sep = "&" if "?" in base else ("?" if base.endswith("/") else "/?")
        params = [f"v={API_VERSION}", "encoding=json"]
        if self._compression == "zlib-stream":
            params.append("compress=zlib-stream")
        return base + sep + "&".join(params)

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "session_id": self._session_id,
            "sequence": self._tracker.last,
            "latency_ms": self._stats.last_latency_ms,
            "heartbeat_interval": self._heartbeat_interval,
            "sequencer": self._tracker.get_stats(),
            "frames_received": self._stats.frames_received,
            "frames_sent": self._stats.frames_sent,
            "frames_dropped": self._stats.frames_dropped,
            "events_dispatched": self._stats.events_dispatched,
            "reconnects": self._stats.reconnects,
            "resumes": self._stats.resumes,
            "identifies": self._stats.identifies,
        }


def _op_name(op: int) -> str:
    try:
        return OpCode(op).name
    except ValueError:
        return str(op)


def _fib(n: int) -> int:
    """Fibonacci number for reconnect delay calculation."""
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a
