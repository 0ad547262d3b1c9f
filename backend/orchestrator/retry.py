"""
Reconnect policy helpers.

Purpose:
- Centralize the bounded-retry / exponential backoff rules
- Keep reducer pure
- Allow the manager to make deterministic reconnect decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from spec import (
    MAX_RECONNECT_ATTEMPTS,
    NORMAL_CLOSE_CODES,
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
)


# =============================================================================
# Failure Types
# =============================================================================

class FailureType(str, Enum):
    """
    Failure classification used by the reconnect policy.

    OPEN_FAILED:
        The websocket could not be opened at all.
        Counts as a failed attempt.

    HANDSHAKE_TIMEOUT:
        The socket opened but conversation_initiation_metadata never arrived.
        Counts as a failed attempt during a reconnect. During the initial
        connect it fails initialize() immediately.

    ABNORMAL_CLOSE:
        The channel closed with a code outside NORMAL_CLOSE_CODES.
        Triggers (or continues) reconnection.

    NORMAL_CLOSE:
        Graceful closure. Never retried.

    Notes:
    - A close requested through end_conversation() is not a failure and must
      never trigger reconnection.
    """

    OPEN_FAILED = "open_failed"
    HANDSHAKE_TIMEOUT = "handshake_timeout"
    ABNORMAL_CLOSE = "abnormal_close"
    NORMAL_CLOSE = "normal_close"


def classify_close(code: int) -> FailureType:
    """Map a websocket close code to a FailureType."""
    if code in NORMAL_CLOSE_CODES:
        return FailureType.NORMAL_CLOSE
    return FailureType.ABNORMAL_CLOSE


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial attempt (no retry yet).
    - attempt >= 1 represents the Nth retry attempt.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Bounded exponential backoff.

    delay_ms(n)     = min(base * 2**(n-1), cap)
    should_retry(n) = n <= max_attempts

    `n` is the 1-based number of the retry about to be made.
    """

    max_attempts: int = MAX_RECONNECT_ATTEMPTS
    base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS

    def should_retry(self, attempt: RetryAttempt) -> bool:
        return 1 <= attempt.attempt <= self.max_attempts

    def delay_ms(self, attempt: RetryAttempt) -> int:
        if attempt.attempt <= 0:
            return 0
        return min(self.base_delay_ms * 2 ** (attempt.attempt - 1), self.max_delay_ms)

    def schedule(self) -> tuple[int, ...]:
        """Every delay the policy will ever wait, in order."""
        return tuple(
            self.delay_ms(RetryAttempt(attempt=n))
            for n in range(1, self.max_attempts + 1)
        )
