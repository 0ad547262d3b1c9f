"""
Error hierarchy for conversation sessions.

Every error a caller of ConversationManager can observe derives from
ConversationError. `retryable` tells the UI whether to offer a retry
affordance; BusyError is a "disable duplicate submit" signal rather than a
failure.

The reducer never constructs exceptions. It emits commands carrying an
ErrorKind and the manager calls build_error() at execution time.
"""

from __future__ import annotations

from enum import Enum


class ConversationError(Exception):
    """Base class for all session-level errors."""

    retryable: bool = False

    def __init__(self, message: str = "", *, retryable: bool | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if retryable is not None:
            self.retryable = retryable


# pylint: disable=redefined-builtin
class ConnectionError(ConversationError):
    """Channel could not be opened or the handshake was never acknowledged."""

    retryable = True


class ReconnectExhaustedError(ConnectionError):
    """Reconnect budget exceeded after an abnormal disconnect."""


class ResponseTimeoutError(ConversationError):
    """No terminal event arrived for a pending send_message."""

    retryable = True


class BusyError(ConversationError):
    """A send_message call is already pending."""


class EmptyAudioError(ConversationError):
    """A burst flush would have produced zero bytes."""

    retryable = True


class InterruptionError(ConversationError):
    """The remote side aborted the turn and no audio could be salvaged."""

    retryable = True


class SessionNotActiveError(ConversationError):
    """The session is not in a state that accepts the operation."""


class SessionClosedError(SessionNotActiveError):
    """The session has been closed; this manager cannot be reused."""


class RemoteServiceError(ConversationError):
    """The remote voice service reported an error."""

    retryable = True


class AudioDeviceError(ConversationError):
    """The local capture device could not be acquired or failed."""


class ChannelProtocolError(ConversationError):
    """An inbound channel payload could not be parsed."""


# =============================================================================
# Error kinds (reducer-facing)
# =============================================================================

class ErrorKind(str, Enum):
    """Error discriminant carried by reducer commands."""

    CONNECTION = "CONNECTION"
    RECONNECT_EXHAUSTED = "RECONNECT_EXHAUSTED"
    SESSION_CLOSED = "SESSION_CLOSED"
    REMOTE = "REMOTE"
    REMOTE_FATAL = "REMOTE_FATAL"


_KIND_TO_ERROR: dict[ErrorKind, type[ConversationError]] = {
    ErrorKind.CONNECTION: ConnectionError,
    ErrorKind.RECONNECT_EXHAUSTED: ReconnectExhaustedError,
    ErrorKind.SESSION_CLOSED: SessionClosedError,
    ErrorKind.REMOTE: RemoteServiceError,
    ErrorKind.REMOTE_FATAL: RemoteServiceError,
}


def build_error(kind: ErrorKind, message: str) -> ConversationError:
    """Instantiate the exception for a reducer-emitted error kind."""
    error_cls = _KIND_TO_ERROR[kind]
    if kind is ErrorKind.REMOTE_FATAL:
        return error_cls(message, retryable=False)
    return error_cls(message)
