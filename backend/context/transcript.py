"""
Transcript assembly.

Responsibilities:
- Store ordered agent/user utterances
- Render "<Speaker>: <text>" lines in arrival order
- Choose between the live transcript and the remote authoritative one

Non-responsibilities:
- No mode tracking (see session/mode_tracker.py)
- No fetching (see adapters/convai/artifacts.py)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Sequence

from observability.logger import log_event, now_ms
from spec import TRANSCRIPT_SPEAKER_LABELS


class Speaker(str, Enum):
    AGENT = "agent"
    USER = "user"


@dataclass(frozen=True)
class TranscriptEntry:
    """One utterance. Immutable after append."""
    speaker: Speaker
    text: str
    order: int


@dataclass(frozen=True)
class FinalTranscript:
    """The transcript returned at session end."""
    text: str
    entries: tuple[TranscriptEntry, ...]
    source: str  # "remote" | "live"


def render_entries(
    entries: Sequence[TranscriptEntry],
    labels: Mapping[str, str] = TRANSCRIPT_SPEAKER_LABELS,
) -> str:
    return "\n".join(
        f"{labels.get(entry.speaker.value, entry.speaker.value)}: {entry.text}"
        for entry in entries
    )


class TranscriptAssembler:
    """
    Mutable live transcript owned by the session manager.

    Invariants:
    - Entries are stored in arrival order
    - order is contiguous from 0
    - Blank utterances are never stored
    """

    def __init__(
        self,
        *,
        labels: Mapping[str, str] = TRANSCRIPT_SPEAKER_LABELS,
        on_update: Callable[[str], None] | None = None,
    ) -> None:
        self._labels = dict(labels)
        self._on_update = on_update
        self._entries: list[TranscriptEntry] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, speaker: Speaker | str, text: str) -> TranscriptEntry | None:
        """Append one utterance. Returns None for blank text."""
        cleaned = text.strip()
        if not cleaned:
            return None

        entry = TranscriptEntry(
            speaker=Speaker(speaker),
            text=cleaned,
            order=len(self._entries),
        )
        self._entries.append(entry)

        if self._on_update is not None:
            try:
                self._on_update(self.render())
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "TRANSCRIPT_CALLBACK_FAILED",
                    "error": repr(e),
                })
        return entry

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def render(self) -> str:
        return render_entries(self._entries, self._labels)

    def resolve(self, remote: Sequence[TranscriptEntry] | None) -> FinalTranscript:
        """
        Pick the transcript to return at session end.

        The remote transcript wins whenever it has at least one entry.
        """
        if remote:
            entries = tuple(remote)
            return FinalTranscript(
                text=render_entries(entries, self._labels),
                entries=entries,
                source="remote",
            )
        return FinalTranscript(text=self.render(), entries=self.entries, source="live")


def entries_from_spans(spans: Sequence[tuple[str, str]]) -> tuple[TranscriptEntry, ...]:
    """
    Build entries from remote (role, text) spans.

    Unknown roles and blank messages are skipped.
    """
    entries: list[TranscriptEntry] = []
    for role, text in spans:
        if role not in (Speaker.AGENT.value, Speaker.USER.value):
            continue
        if not text or not text.strip():
            continue
        entries.append(
            TranscriptEntry(speaker=Speaker(role), text=text.strip(), order=len(entries))
        )
    return tuple(entries)
