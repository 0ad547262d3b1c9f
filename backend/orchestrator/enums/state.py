"""
Authoritative session lifecycle state enumeration.

Rules:
- This enum defines ONLY the lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of a single conversation session.

    idle -> connecting -> active -> (reconnecting) -> ending -> closed

    CLOSED is terminal: a manager holds exactly one session.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    ENDING = "ending"
    CLOSED = "closed"


OPEN_STATES: frozenset[SessionState] = frozenset({
    SessionState.CONNECTING,
    SessionState.ACTIVE,
    SessionState.RECONNECTING,
})
