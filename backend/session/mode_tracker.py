"""
Speaking/listening mode tracker.

Consumes ModeChanged, TranscriptFragment and SessionClosed only. Mode is
event-sourced: callers never set it directly.

Transition rules:
- into LISTENING: discard the partial user text buffer
- out of SPEAKING: finalize the accumulated agent utterance
- out of LISTENING: finalize the buffered user transcript
- SessionClosed: finalize both buffers
- same-mode events are ignored
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from context.transcript import Speaker, TranscriptAssembler
from observability.logger import log_event, now_ms
from orchestrator.enums.mode import Mode
from protocol.convai import ModeChanged, TranscriptFragment


@dataclass(frozen=True)
class SessionClosed:
    """The session ended; flush whatever is buffered."""


TrackerEvent = Union[ModeChanged, TranscriptFragment, SessionClosed]


class ModeTracker:

    def __init__(
        self,
        transcript: TranscriptAssembler,
        *,
        on_change: Callable[[Mode, Mode], None] | None = None,
        initial: Mode = Mode.LISTENING,
    ) -> None:
        self._transcript = transcript
        self._on_change = on_change
        self._mode = initial
        self._agent_parts: list[str] = []
        self._user_parts: list[str] = []
        self._closed = False

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def pending_agent_text(self) -> str:
        return " ".join(self._agent_parts)

    @property
    def pending_user_text(self) -> str:
        return " ".join(self._user_parts)

    def handle(self, event: TrackerEvent) -> None:
        if self._closed:
            return

        if isinstance(event, SessionClosed):
            self._finalize_user()
            self._finalize_agent()
            self._closed = True
            return

        if isinstance(event, TranscriptFragment):
            if event.role == Speaker.AGENT.value:
                self._agent_parts.append(event.text)
            elif event.role == Speaker.USER.value:
                self._user_parts.append(event.text)
            return

        if isinstance(event, ModeChanged):
            self._transition(event.mode)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(self, new_mode: Mode) -> None:
        previous = self._mode
        if new_mode is previous:
            return

        if previous is Mode.SPEAKING:
            self._finalize_agent()
        if previous is Mode.LISTENING:
            self._finalize_user()
        if new_mode is Mode.LISTENING:
            self._user_parts.clear()

        self._mode = new_mode
        log_event({
            "ts_ms": now_ms(),
            "event_type": "MODE_CHANGED",
            "from_mode": previous.value,
            "to_mode": new_mode.value,
        })

        if self._on_change is not None:
            try:
                self._on_change(previous, new_mode)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "MODE_CALLBACK_FAILED",
                    "error": repr(e),
                })

    def _finalize_agent(self) -> None:
        if self._agent_parts:
            self._transcript.append(Speaker.AGENT, " ".join(self._agent_parts))
            self._agent_parts.clear()

    def _finalize_user(self) -> None:
        if self._user_parts:
            self._transcript.append(Speaker.USER, " ".join(self._user_parts))
            self._user_parts.clear()
