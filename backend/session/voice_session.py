"""
Conversation session container.

- Owned and mutated by ConversationManager only
- Mirrors reducer state for observability and callers
- NOT a state machine
- Contains no orchestration logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from orchestrator.enums.mode import Mode
from orchestrator.enums.state import SessionState
from session.connection_status import ConnectionStatus


# ---------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------


@dataclass
class Session:
    """Mutable runtime container for a single conversation session."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    # Local id for log correlation; the remote id arrives with the handshake
    session_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: float = field(default_factory=time.time)

    # Remote conversation id of the live channel
    conversation_id: str | None = None

    # Every remote conversation id this session held, in order. A reconnect
    # starts a new remote conversation.
    conversation_ids: list[str] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Mirrored state
    # ------------------------------------------------------------------

    state: SessionState = SessionState.IDLE
    mode: Mode = Mode.LISTENING
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempt: int = 0
    transcript_text: str = ""

    # Agent audio format announced by the handshake, e.g. "pcm_16000"
    output_audio_format: str | None = None

    def record_conversation(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        if conversation_id not in self.conversation_ids:
            self.conversation_ids.append(conversation_id)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """
        Return minimal structured context for logging.
        """
        return {
            "session_id": self.session_id,
            "conversation_id": self.conversation_id,
            "state": self.state.value,
            "mode": self.mode.value,
            "connection_status": self.connection_status.value,
        }
