"""
Side-effect command definitions for the session reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the manager.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from orchestrator.events import EventType
from session.connection_status import ConnectionStatus
from session.errors import ErrorKind

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging, replay,
    and manager dispatch.
    """

    # Channel
    OPEN_CHANNEL = "OPEN_CHANNEL"
    CLOSE_CHANNEL = "CLOSE_CHANNEL"
    SCHEDULE_RECONNECT = "SCHEDULE_RECONNECT"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Caller settlement
    RESOLVE_INITIALIZE = "RESOLVE_INITIALIZE"
    FAIL_INITIALIZE = "FAIL_INITIALIZE"
    FAIL_PENDING = "FAIL_PENDING"

    # Callbacks
    NOTIFY_STATUS = "NOTIFY_STATUS"
    NOTIFY_CONNECTED = "NOTIFY_CONNECTED"
    NOTIFY_DISCONNECTED = "NOTIFY_DISCONNECTED"
    SURFACE_ERROR = "SURFACE_ERROR"

    # Session
    TEARDOWN = "TEARDOWN"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Channel Commands
# =============================================================================

@dataclass(frozen=True)
class OpenChannel(Command):
    """
    Open a new channel and send the initiation handshake.

    The manager must report back exactly one of HandshakeAcknowledged,
    ChannelOpenFailed or ChannelClosed for this generation.
    """
    generation: int
    attempt: int
    command_type: CommandType = CommandType.OPEN_CHANNEL


@dataclass(frozen=True)
class CloseChannel(Command):
    """
    Close the channel of `generation` with `code`.

    If no such channel is open the manager reports ChannelClosed itself.
    """
    generation: int
    code: int
    command_type: CommandType = CommandType.CLOSE_CHANNEL


@dataclass(frozen=True)
class ScheduleReconnect(Command):
    """
    Request that the manager wait delay_ms and emit ReconnectReady(attempt).

    Reducer remains pure: it decides *that* a reconnect should happen,
    the manager performs the waiting.
    """
    attempt: int
    delay_ms: int
    command_type: CommandType = CommandType.SCHEDULE_RECONNECT


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named timer.

    On expiration, the manager must inject the specified timeout event
    stamped with `generation`.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    generation: int
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Caller Settlement Commands
# =============================================================================

@dataclass(frozen=True)
class ResolveInitialize(Command):
    """Complete the awaiting initialize() call successfully."""
    conversation_id: str
    command_type: CommandType = CommandType.RESOLVE_INITIALIZE


@dataclass(frozen=True)
class FailInitialize(Command):
    """Fail the awaiting initialize() call."""
    kind: ErrorKind
    reason: str
    command_type: CommandType = CommandType.FAIL_INITIALIZE


@dataclass(frozen=True)
class FailPending(Command):
    """Reject the in-flight send_message, if any."""
    kind: ErrorKind
    reason: str
    command_type: CommandType = CommandType.FAIL_PENDING


# =============================================================================
# Callback Commands
# =============================================================================

@dataclass(frozen=True)
class NotifyStatus(Command):
    """Fire on_status_change."""
    status: ConnectionStatus
    command_type: CommandType = CommandType.NOTIFY_STATUS


@dataclass(frozen=True)
class NotifyConnected(Command):
    """Fire on_connect and record the new remote conversation id."""
    conversation_id: str
    reconnected: bool = False
    command_type: CommandType = CommandType.NOTIFY_CONNECTED


@dataclass(frozen=True)
class NotifyDisconnected(Command):
    """Fire on_disconnect."""
    reason: str
    command_type: CommandType = CommandType.NOTIFY_DISCONNECTED


@dataclass(frozen=True)
class SurfaceError(Command):
    """Fire on_error."""
    kind: ErrorKind
    reason: str
    command_type: CommandType = CommandType.SURFACE_ERROR


# =============================================================================
# Session Commands
# =============================================================================

@dataclass(frozen=True)
class Teardown(Command):
    """
    Session reached CLOSED.

    The manager cancels timers, stops the buffer loop and releases the
    capture device.
    """
    reason: str
    command_type: CommandType = CommandType.TEARDOWN


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
