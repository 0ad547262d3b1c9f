"""
Authoritative session lifecycle state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from orchestrator.enums.state import SessionState
from orchestrator.retry import ReconnectPolicy, RetryAttempt

from spec import HANDSHAKE_TIMEOUT_MS


@dataclass(frozen=True)
class LifecycleState:
    """Immutable snapshot of all reducer-owned session state."""

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    state: SessionState = SessionState.IDLE

    # ------------------------------------------------------------------
    # Channel tracking
    # ------------------------------------------------------------------
    # Bumped on every OpenChannel. Events from other generations are stale.
    channel_generation: int = 0

    # False once the live generation has failed or been abandoned, so a
    # late close from that socket is not counted twice.
    channel_live: bool = False

    # Remote conversation id of the live channel
    conversation_id: str | None = None

    # True once any handshake has been acknowledged
    established: bool = False

    # ------------------------------------------------------------------
    # Retry bookkeeping
    # ------------------------------------------------------------------
    reconnect_attempt: RetryAttempt = RetryAttempt(attempt=0)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None

    # ------------------------------------------------------------------
    # Static per-session configuration
    # ------------------------------------------------------------------
    policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    handshake_timeout_ms: int = HANDSHAKE_TIMEOUT_MS
