"""
Pure session lifecycle reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).

State machine:
    idle -[initialize]-> connecting -[handshake ack]-> active
    active -[abnormal close]-> reconnecting -[handshake ack]-> active
    connecting | reconnecting -[budget exhausted]-> closed
    any open state -[end]-> ending -[channel closed]-> closed
    active -[normal remote close | fatal error]-> closed
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from orchestrator.commands import (
    CancelTimer,
    CloseChannel,
    Command,
    FailInitialize,
    FailPending,
    LogEvent,
    NotifyConnected,
    NotifyDisconnected,
    NotifyStatus,
    OpenChannel,
    ResolveInitialize,
    ScheduleReconnect,
    StartTimer,
    SurfaceError,
    Teardown,
)
from orchestrator.enums.state import OPEN_STATES, SessionState
from orchestrator.events import (
    ChannelClosed,
    ChannelEvent,
    ChannelOpenFailed,
    EndRequested,
    Event,
    EventType,
    FatalError,
    HandshakeAcknowledged,
    HandshakeTimeout,
    InitializeRequested,
    ReconnectReady,
    RemoteFailure,
)
from orchestrator.retry import (
    FailureType,
    classify_close,
    next_attempt,
    reset_attempt,
)
from orchestrator.state_dataclass import LifecycleState
from session.connection_status import ConnectionStatus
from session.errors import ErrorKind
from spec import WS_CLOSE_INTERNAL_ERROR, WS_CLOSE_NORMAL


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_HANDSHAKE = "handshake_timeout"
TIMER_RECONNECT = "reconnect_backoff"


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: LifecycleState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": state.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "channel_generation": state.channel_generation,
            "reconnect_attempt": state.reconnect_attempt.attempt,
            "conversation_id": state.conversation_id,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: LifecycleState, event: Event, reason: str
) -> tuple[LifecycleState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: LifecycleState,
    new: LifecycleState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _is_stale(state: LifecycleState, event: Event) -> bool:
    if not isinstance(event, ChannelEvent):
        return False
    return event.generation != state.channel_generation or not state.channel_live


# =============================================================================
# Transition builders
# =============================================================================

def _open_next(
    state: LifecycleState, event: Event
) -> tuple[LifecycleState, tuple[Command, ...]]:
    """Open a fresh channel generation and arm the handshake timer."""
    generation = state.channel_generation + 1
    new_state = replace(
        state,
        channel_generation=generation,
        channel_live=True,
        conversation_id=None,
    )
    return new_state, (
        OpenChannel(generation=generation, attempt=state.reconnect_attempt.attempt),
        StartTimer(
            timer_id=TIMER_HANDSHAKE,
            duration_ms=state.handshake_timeout_ms,
            timeout_event_type=EventType.HANDSHAKE_TIMEOUT,
            generation=generation,
        ),
        _log(new_state, event, "open_channel", {"generation": generation}),
    )


def _closed(
    state: LifecycleState,
    event: Event,
    *,
    source: str,
    reason: str,
    init_kind: ErrorKind = ErrorKind.CONNECTION,
    pending_kind: ErrorKind = ErrorKind.SESSION_CLOSED,
    surface_kind: ErrorKind | None = None,
    close_code: int | None = None,
) -> tuple[LifecycleState, tuple[Command, ...]]:
    """
    Terminal transition into CLOSED.

    Settles every awaiting caller, fires the disconnect hooks and asks the
    manager to tear down.
    """
    new_state = replace(
        state,
        state=SessionState.CLOSED,
        channel_live=False,
        last_error=reason,
    )

    commands: list[Command] = [
        CancelTimer(timer_id=TIMER_HANDSHAKE),
        CancelTimer(timer_id=TIMER_RECONNECT),
    ]
    if close_code is not None and state.channel_live:
        commands.append(CloseChannel(generation=state.channel_generation, code=close_code))
    if state.state is SessionState.CONNECTING:
        commands.append(FailInitialize(kind=init_kind, reason=reason))
    commands.append(FailPending(kind=pending_kind, reason=reason))
    if surface_kind is not None:
        commands.append(SurfaceError(kind=surface_kind, reason=reason))
    commands.append(NotifyStatus(status=ConnectionStatus.DISCONNECTED))
    if state.established:
        commands.append(NotifyDisconnected(reason=reason))
    commands.append(Teardown(reason=reason))
    commands.append(_state_changed(state, new_state, event, source))

    return new_state, _logs_last(tuple(commands))


def _attempt_failed(
    state: LifecycleState,
    event: Event,
    failure: FailureType,
    reason: str,
) -> tuple[LifecycleState, tuple[Command, ...]]:
    """
    A connect or reconnect attempt failed.

    Schedules the next attempt while the policy allows it, otherwise closes
    the session with RECONNECT_EXHAUSTED.
    """
    if failure is FailureType.NORMAL_CLOSE:
        return _closed(
            state,
            event,
            source="closed_during_handshake",
            reason=reason,
            surface_kind=ErrorKind.CONNECTION,
        )

    attempt = next_attempt(state.reconnect_attempt)
    if not state.policy.should_retry(attempt):
        return _closed(
            state,
            event,
            source="reconnect_exhausted",
            reason=f"reconnect budget exhausted after {attempt.attempt - 1} attempts: {reason}",
            init_kind=ErrorKind.RECONNECT_EXHAUSTED,
            pending_kind=ErrorKind.RECONNECT_EXHAUSTED,
            surface_kind=ErrorKind.RECONNECT_EXHAUSTED,
        )

    delay_ms = state.policy.delay_ms(attempt)
    new_state = replace(
        state,
        channel_live=False,
        reconnect_attempt=attempt,
        last_error=reason,
    )
    return new_state, _logs_last((
        CancelTimer(timer_id=TIMER_HANDSHAKE),
        ScheduleReconnect(attempt=attempt.attempt, delay_ms=delay_ms),
        _log(
            new_state,
            event,
            "reconnect_scheduled",
            {
                "failure": failure.value,
                "reason": reason,
                "attempt": attempt.attempt,
                "delay_ms": delay_ms,
            },
        ),
    ))


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: LifecycleState, event: Event
) -> tuple[LifecycleState, tuple[Command, ...]]:
    """
    Pure reducer for the session lifecycle.

    Given the current lifecycle state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Generation-safe: ignores events from abandoned channels
    """
    if state.state is SessionState.CLOSED:
        return _ignore(state, event, "session_closed")

    if _is_stale(state, event):
        return _ignore(state, event, "stale_generation")

    # ------------------------------------------------------------------
    # Fatal errors (any non-closed state)
    # ------------------------------------------------------------------
    if isinstance(event, FatalError):
        return _closed(
            state,
            event,
            source="fatal_error",
            reason=f"fatal:{event.reason}",
            pending_kind=ErrorKind.REMOTE_FATAL,
            surface_kind=ErrorKind.REMOTE_FATAL,
            close_code=WS_CLOSE_INTERNAL_ERROR,
        )

    if isinstance(event, RemoteFailure):
        if event.fatal:
            return _closed(
                state,
                event,
                source="remote_fatal_error",
                reason=event.message,
                init_kind=ErrorKind.REMOTE_FATAL,
                pending_kind=ErrorKind.REMOTE_FATAL,
                surface_kind=ErrorKind.REMOTE_FATAL,
                close_code=WS_CLOSE_NORMAL,
            )
        return state, _logs_last((
            FailPending(kind=ErrorKind.REMOTE, reason=event.message),
            SurfaceError(kind=ErrorKind.REMOTE, reason=event.message),
            _log(state, event, "remote_error", {"message": event.message}),
        ))

    # ------------------------------------------------------------------
    # Caller requests
    # ------------------------------------------------------------------
    if isinstance(event, InitializeRequested):
        if state.state is not SessionState.IDLE:
            return _ignore(state, event, "already_initialized")

        connecting = replace(
            state,
            state=SessionState.CONNECTING,
            reconnect_attempt=reset_attempt(),
        )
        opened, open_cmds = _open_next(connecting, event)
        return opened, _logs_last((
            NotifyStatus(status=ConnectionStatus.CONNECTING),
            *open_cmds,
            _state_changed(state, opened, event, "initialize"),
        ))

    if isinstance(event, EndRequested):
        if state.state is SessionState.IDLE:
            return _closed(state, event, source="end_before_initialize", reason="ended")

        if state.state is SessionState.ENDING:
            return _ignore(state, event, "already_ending")

        if not state.channel_live:
            # Waiting on backoff: nothing to close
            return _closed(
                state,
                event,
                source="end_requested",
                reason="ended",
                init_kind=ErrorKind.SESSION_CLOSED,
            )

        ending = replace(state, state=SessionState.ENDING)
        commands: list[Command] = [
            CancelTimer(timer_id=TIMER_HANDSHAKE),
            CancelTimer(timer_id=TIMER_RECONNECT),
        ]
        if state.state is SessionState.CONNECTING:
            commands.append(FailInitialize(kind=ErrorKind.SESSION_CLOSED, reason="ended"))
        commands.append(CloseChannel(generation=state.channel_generation, code=WS_CLOSE_NORMAL))
        commands.append(_state_changed(state, ending, event, "end_requested"))
        return ending, _logs_last(tuple(commands))

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------
    if isinstance(event, HandshakeAcknowledged):
        if state.state not in (SessionState.CONNECTING, SessionState.RECONNECTING):
            return _ignore(state, event, "handshake_not_expected")

        reconnected = state.state is SessionState.RECONNECTING
        active = replace(
            state,
            state=SessionState.ACTIVE,
            conversation_id=event.conversation_id,
            established=True,
            reconnect_attempt=reset_attempt(),
            last_error=None,
        )
        commands = [CancelTimer(timer_id=TIMER_HANDSHAKE)]
        if not reconnected:
            commands.append(ResolveInitialize(conversation_id=event.conversation_id))
        commands.append(NotifyStatus(status=ConnectionStatus.CONNECTED))
        commands.append(
            NotifyConnected(conversation_id=event.conversation_id, reconnected=reconnected)
        )
        commands.append(
            _state_changed(state, active, event, "reconnected" if reconnected else "connected")
        )
        return active, _logs_last(tuple(commands))

    if isinstance(event, ChannelOpenFailed):
        if state.state not in (SessionState.CONNECTING, SessionState.RECONNECTING):
            return _ignore(state, event, "open_failed_not_expected")
        return _attempt_failed(state, event, FailureType.OPEN_FAILED, event.reason)

    if isinstance(event, ChannelClosed):
        reason = event.reason or f"close code {event.code}"

        if state.state is SessionState.ENDING:
            return _closed(state, event, source="channel_closed", reason="ended")

        if state.state in (SessionState.CONNECTING, SessionState.RECONNECTING):
            return _attempt_failed(state, event, classify_close(event.code), reason)

        if state.state is SessionState.ACTIVE:
            if classify_close(event.code) is FailureType.NORMAL_CLOSE:
                return _closed(state, event, source="remote_closed", reason=reason)

            attempt = next_attempt(reset_attempt())
            if not state.policy.should_retry(attempt):
                return _closed(
                    state,
                    event,
                    source="reconnect_exhausted",
                    reason=reason,
                    pending_kind=ErrorKind.RECONNECT_EXHAUSTED,
                    surface_kind=ErrorKind.RECONNECT_EXHAUSTED,
                )

            delay_ms = state.policy.delay_ms(attempt)
            reconnecting = replace(
                state,
                state=SessionState.RECONNECTING,
                channel_live=False,
                reconnect_attempt=attempt,
                last_error=reason,
            )
            return reconnecting, _logs_last((
                NotifyStatus(status=ConnectionStatus.CONNECTING),
                ScheduleReconnect(attempt=attempt.attempt, delay_ms=delay_ms),
                _log(
                    reconnecting,
                    event,
                    "reconnect_scheduled",
                    {
                        "failure": FailureType.ABNORMAL_CLOSE.value,
                        "code": event.code,
                        "reason": reason,
                        "attempt": attempt.attempt,
                        "delay_ms": delay_ms,
                    },
                ),
                _state_changed(state, reconnecting, event, "abnormal_close"),
            ))

        return _ignore(state, event, "close_not_expected")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    if isinstance(event, HandshakeTimeout):
        if state.state is SessionState.CONNECTING:
            return _closed(
                state,
                event,
                source="handshake_timeout",
                reason="handshake not acknowledged",
                close_code=WS_CLOSE_NORMAL,
            )

        if state.state is SessionState.RECONNECTING:
            new_state, commands_t = _attempt_failed(
                state,
                event,
                FailureType.HANDSHAKE_TIMEOUT,
                "handshake not acknowledged",
            )
            return new_state, _logs_last((
                CloseChannel(generation=state.channel_generation, code=WS_CLOSE_NORMAL),
                *commands_t,
            ))

        return _ignore(state, event, "handshake_timeout_not_expected")

    if isinstance(event, ReconnectReady):
        if state.state not in (SessionState.CONNECTING, SessionState.RECONNECTING):
            return _ignore(state, event, "reconnect_not_expected")
        if state.channel_live or event.attempt != state.reconnect_attempt.attempt:
            return _ignore(state, event, "stale_reconnect")
        return _open_next(state, event)

    if state.state in OPEN_STATES:
        return _ignore(state, event, "unhandled_event")
    return _ignore(state, event, "unhandled_state")
