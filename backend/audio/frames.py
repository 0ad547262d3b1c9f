"""
Audio chunk and burst primitives.

Pure data containers only.
No behavior, no buffering, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioChunk:
    """
    One chunk of agent audio as delivered by the channel.

    sequence_id:
        Ordinal assigned by the remote side (the message event id).
        Determines position in the burst; arrival order does not.

    data:
        Raw audio bytes. Never empty.

    arrived_at_ms:
        Monotonic arrival time (milliseconds) from the buffer's clock.
    """
    sequence_id: int
    data: bytes
    arrived_at_ms: int


@dataclass(frozen=True)
class AudioBurst:
    """
    Reassembled audio for one utterance.

    data is the concatenation of every chunk payload in ascending
    sequence_id order. salvaged is True when the burst was flushed early
    because the agent was interrupted.
    """
    data: bytes
    chunk_count: int
    first_sequence_id: int
    last_sequence_id: int
    started_at_ms: int
    completed_at_ms: int
    salvaged: bool = False

    def __len__(self) -> int:
        return len(self.data)
