# backend/audio/burst_buffer.py
"""
Out-of-order audio chunk reassembly with quiet-period burst detection.

Rules:
- Chunks are keyed by sequence id; arrival order never affects output order
- Zero-length chunks and negative ids are rejected, never stored
- A duplicate sequence id keeps the first payload
- A burst is complete once no chunk has arrived for quiet_period_ms
- Flushing sorts by sequence id, concatenates, clears, emits exactly once
- An empty flush is an error (EmptyAudioError), never a zero-length burst

check(now_ms) is the synchronous poll step. start() runs it every
poll_interval_ms on the event loop; tests drive check() with a fake clock.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from audio.frames import AudioBurst, AudioChunk
from observability.logger import log_event, now_ms
from observability.metrics import SessionMetrics
from session.errors import EmptyAudioError
from spec import BURST_POLL_INTERVAL_MS, BURST_QUIET_PERIOD_MS, ms_to_seconds


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


@dataclass
class RejectCounters:
    """
    Reject counters for observability.
    """
    empty: int = 0
    invalid_id: int = 0
    duplicate: int = 0


class AudioChunkBuffer:
    """
    Accumulates the chunks of one burst and emits it when the channel goes quiet.

    on_burst is invoked synchronously from flush(); its exceptions are
    logged and do not leave the buffer in a partial state.
    """

    def __init__(
        self,
        *,
        quiet_period_ms: int = BURST_QUIET_PERIOD_MS,
        poll_interval_ms: int = BURST_POLL_INTERVAL_MS,
        on_burst: Callable[[AudioBurst], None] | None = None,
        clock: Callable[[], int] = monotonic_ms,
        metrics: SessionMetrics | None = None,
    ) -> None:
        if quiet_period_ms <= 0:
            raise ValueError("quiet_period_ms must be > 0")
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be > 0")

        self._quiet_period_ms = quiet_period_ms
        self._poll_interval_ms = poll_interval_ms
        self._on_burst = on_burst
        self._clock = clock
        self._metrics = metrics

        self._chunks: dict[int, AudioChunk] = {}
        self._last_arrival_ms: Optional[int] = None
        self._poll_task: asyncio.Task[None] | None = None

        self.rejects: RejectCounters = RejectCounters()
        self.bursts_emitted: int = 0

    # -------------------------
    # Core buffer operations
    # -------------------------

    def add_chunk(self, sequence_id: int, data: bytes) -> bool:
        """
        Store a chunk with its arrival time.

        Returns:
            True if stored
            False if rejected (empty payload, negative id, duplicate id)
        """
        if not data:
            self.rejects.empty += 1
            self._reject(sequence_id, "empty_payload")
            return False

        if sequence_id < 0:
            self.rejects.invalid_id += 1
            self._reject(sequence_id, "negative_sequence_id")
            return False

        if sequence_id in self._chunks:
            self.rejects.duplicate += 1
            self._reject(sequence_id, "duplicate_sequence_id")
            return False

        arrived = self._clock()
        self._chunks[sequence_id] = AudioChunk(
            sequence_id=sequence_id,
            data=bytes(data),
            arrived_at_ms=arrived,
        )
        self._last_arrival_ms = arrived

        if self._metrics is not None:
            self._metrics.increment("chunks_received")
        return True

    def check(self, now: int | None = None) -> AudioBurst | None:
        """
        Poll step: flush if the quiet period has elapsed.

        Returns the emitted burst, or None when nothing was flushed.
        """
        if not self._chunks or self._last_arrival_ms is None:
            return None

        current = self._clock() if now is None else now
        if current - self._last_arrival_ms < self._quiet_period_ms:
            return None

        return self.flush()

    def flush(self, *, salvaged: bool = False) -> AudioBurst:
        """
        Sort pending chunks by sequence id, concatenate, clear, emit.

        Raises:
            EmptyAudioError: nothing is pending.
        """
        if not self._chunks:
            raise EmptyAudioError("flush produced zero bytes")

        ordered = [self._chunks[sid] for sid in sorted(self._chunks)]
        data = b"".join(chunk.data for chunk in ordered)
        if not data:
            # Unreachable while empty chunks are rejected, kept as a guard
            self.clear()
            raise EmptyAudioError("flush produced zero bytes")

        burst = AudioBurst(
            data=data,
            chunk_count=len(ordered),
            first_sequence_id=ordered[0].sequence_id,
            last_sequence_id=ordered[-1].sequence_id,
            started_at_ms=min(chunk.arrived_at_ms for chunk in ordered),
            completed_at_ms=self._clock(),
            salvaged=salvaged,
        )
        self.clear()
        self.bursts_emitted += 1

        if self._metrics is not None:
            self._metrics.increment("bursts_salvaged" if salvaged else "bursts_completed")

        self._emit(burst)
        return burst

    def salvage(self) -> AudioBurst | None:
        """
        Flush whatever is pending immediately (on interruption).

        Returns None when nothing is pending.
        """
        if not self._chunks:
            return None
        return self.flush(salvaged=True)

    def clear(self) -> None:
        """
        Drop all pending chunks without emitting.

        Used on teardown.
        """
        self._chunks.clear()
        self._last_arrival_ms = None

    # -------------------------
    # Background poll
    # -------------------------

    def start(self) -> None:
        """Start the poll loop on the running event loop (idempotent)."""
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop the poll loop. Pending chunks are kept."""
        task = self._poll_task
        self._poll_task = None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _poll_loop(self) -> None:
        interval_s = ms_to_seconds(self._poll_interval_ms)
        try:
            while True:
                await asyncio.sleep(interval_s)
                self.check()
        except asyncio.CancelledError:
            return

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._chunks)

    def is_empty(self) -> bool:
        """Check if any chunk is pending."""
        return not self._chunks

    @property
    def first_arrival_ms(self) -> Optional[int]:
        """Arrival time of the earliest pending chunk."""
        if not self._chunks:
            return None
        return min(chunk.arrived_at_ms for chunk in self._chunks.values())

    @property
    def pending_bytes(self) -> int:
        return sum(len(chunk.data) for chunk in self._chunks.values())

    def snapshot(self) -> dict[str, int]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "chunks": len(self._chunks),
            "bytes": self.pending_bytes,
            "bursts_emitted": self.bursts_emitted,
            "rejected_empty": self.rejects.empty,
            "rejected_invalid_id": self.rejects.invalid_id,
            "rejected_duplicate": self.rejects.duplicate,
        }

    # -------------------------
    # Internal helpers
    # -------------------------

    def _reject(self, sequence_id: int, reason: str) -> None:
        if self._metrics is not None:
            self._metrics.increment("chunks_rejected")
        log_event({
            "ts_ms": now_ms(),
            "event_type": "AUDIO_CHUNK_REJECTED",
            "sequence_id": sequence_id,
            "reason": reason,
        })

    def _emit(self, burst: AudioBurst) -> None:
        if self._on_burst is None:
            return
        try:
            self._on_burst(burst)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "BURST_CALLBACK_FAILED",
                "error": repr(e),
            })
