"""
Lifecycle event definitions for the session reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Channel-scoped events carry the generation of the channel that produced
them. The reducer ignores events from a generation other than the live one,
so a late close from an abandoned socket cannot disturb a reconnect.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Caller requests
    # ------------------------------------------------------------------
    INITIALIZE_REQUESTED = "INITIALIZE_REQUESTED"
    END_REQUESTED = "END_REQUESTED"

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------
    HANDSHAKE_ACKNOWLEDGED = "HANDSHAKE_ACKNOWLEDGED"
    CHANNEL_OPEN_FAILED = "CHANNEL_OPEN_FAILED"
    CHANNEL_CLOSED = "CHANNEL_CLOSED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    HANDSHAKE_TIMEOUT = "HANDSHAKE_TIMEOUT"
    RECONNECT_READY = "RECONNECT_READY"

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------
    REMOTE_FAILURE = "REMOTE_FAILURE"
    FATAL_ERROR = "FATAL_ERROR"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class ChannelEvent(Event):
    """
    Base class for events produced by one channel instance.

    The reducer MUST ignore events whose generation does not match the
    live channel generation.
    """

    generation: int


# =============================================================================
# Caller Requests
# =============================================================================

@dataclass(frozen=True)
class InitializeRequested(Event):
    """Caller asked to open the session."""


@dataclass(frozen=True)
class EndRequested(Event):
    """Caller asked to end the conversation gracefully."""


# =============================================================================
# Channel Events
# =============================================================================

@dataclass(frozen=True)
class HandshakeAcknowledged(ChannelEvent):
    """Remote side sent conversation_initiation_metadata."""
    conversation_id: str


@dataclass(frozen=True)
class ChannelOpenFailed(ChannelEvent):
    """The websocket could not be opened."""
    reason: str


@dataclass(frozen=True)
class ChannelClosed(ChannelEvent):
    """The websocket closed, by either side."""
    code: int
    reason: str | None = None


# =============================================================================
# Timer Events
# =============================================================================

@dataclass(frozen=True)
class HandshakeTimeout(ChannelEvent):
    """Handshake was not acknowledged within the configured window."""


@dataclass(frozen=True)
class ReconnectReady(Event):
    """Emitted by the manager after the backoff delay for `attempt` expires."""
    attempt: int


# =============================================================================
# Errors
# =============================================================================

@dataclass(frozen=True)
class RemoteFailure(ChannelEvent):
    """The remote service sent an error message."""
    message: str
    fatal: bool


@dataclass(frozen=True)
class FatalError(Event):
    """Non-recoverable local error forcing immediate teardown."""
    reason: str
