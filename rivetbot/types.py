# =============================================================================
# rivetbot -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

from .constants import (
    RECONNECT_BASE_DELAY,
    RECONNECT_FACTOR,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
)


class OpCode(IntEnum):
    """Gateway opcodes."""

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE_UPDATE = 3
    VOICE_STATE_UPDATE = 4
    RESUME = 6
    RECONNECT = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class SessionState(str, Enum):
    """Gateway session lifecycle state.

    Typical flow: DISCONNECTED -> CONNECTING -> HANDSHAKING -> IDENTIFIED
    -> READY. After a drop: RESUMING -> READY. FATAL is terminal.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    IDENTIFIED = "identified"
    READY = "ready"
    RESUMING = "resuming"
    FATAL = "fatal"


class PermissionLevel(IntEnum):
    """Who may run a command. Higher levels include the lower ones."""

    EVERYONE = 0
    ADMIN = 1
    OWNER = 2


class ReconnectMode(str, Enum):
    """Backoff strategy for reconnecting after a drop."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIBONACCI = "fibonacci"


@dataclass(frozen=True, slots=True)
class GatewayFrame:
    """One decoded wire frame.

    Attributes:
        op: Opcode (see :class:`OpCode`). Unknown opcodes are kept as ints.
        d: Frame payload, any JSON value.
        s: Sequence number, only on DISPATCH frames.
        t: Event name, only on DISPATCH frames.
    """

    op: int
    d: Any = None
    s: int | None = None
    t: str | None = None


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    """An application event forwarded by the session to the dispatcher.

    Attributes:
        type: Event name, e.g. ``"MESSAGE_CREATE"``.
        payload: Event body as a dict.
        sequence: Gateway sequence number, if any.
    """

    type: str
    payload: dict[str, Any]
    sequence: int | None = None


@dataclass(frozen=True, slots=True)
class CommandInvocation:
    """A parsed command call, consumed by exactly one command handler.

    Attributes:
        name: Lower-cased canonical command name. Never empty.
        args: Argument tokens in order; a ``rest`` argument holds the tail verbatim.
        raw: Full message text including the prefix.
        author_id: Invoking user id.
        channel_id: Originating channel id.
        guild_id: Originating guild id, ``None`` in direct messages.
        message_id: Id of the invoking message.
        permission: Resolved permission level of the invoker.
    """

    name: str
    args: tuple[str, ...]
    raw: str
    author_id: str
    channel_id: str
    guild_id: str | None = None
    message_id: str | None = None
    permission: PermissionLevel = PermissionLevel.EVERYONE

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("CommandInvocation requires a non-empty command name")


@dataclass
class SessionStats:
    """Counters for a gateway session."""

    frames_received: int = 0
    frames_sent: int = 0
    frames_dropped: int = 0
    events_dispatched: int = 0
    replays_skipped: int = 0
    heartbeats_sent: int = 0
    heartbeat_acks: int = 0
    reconnects: int = 0
    resumes: int = 0
    identifies: int = 0
    last_latency_ms: float | None = None
    connected_since: float | None = None


@dataclass
class ReconnectConfig:
    """Configuration for automatic reconnection.

    Attributes:
        mode: Backoff strategy (default: exponential).
        base_delay: Initial delay in seconds before the first retry.
        max_delay: Maximum delay cap in seconds.
        max_attempts: Max consecutive failed attempts before giving up.
        factor: Multiplier per attempt for exponential backoff.
        jitter: Randomize delays to avoid thundering herd.
    """

    mode: ReconnectMode = ReconnectMode.EXPONENTIAL
    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    factor: float = RECONNECT_FACTOR
    jitter: bool = True
