"""
Local capture recording.

Keeps every PCM16 block the microphone produced for the session so a WAV
artifact exists even when the remote recording cannot be fetched.
"""

from __future__ import annotations

import io
import wave

from spec import (
    CAPTURE_CHANNELS,
    CAPTURE_SAMPLE_RATE_HZ,
    CAPTURE_SAMPLE_WIDTH_BYTES,
)


class LocalRecording:
    """Append-only PCM16 buffer with WAV export."""

    def __init__(
        self,
        *,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
        channels: int = CAPTURE_CHANNELS,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._channels = channels
        self._pcm = bytearray()

    def append(self, pcm_bytes: bytes) -> None:
        self._pcm.extend(pcm_bytes)

    def __len__(self) -> int:
        return len(self._pcm)

    @property
    def duration_ms(self) -> int:
        frame_bytes = CAPTURE_SAMPLE_WIDTH_BYTES * self._channels
        return (len(self._pcm) // frame_bytes) * 1000 // self._sample_rate_hz

    def to_wav(self) -> bytes | None:
        """Encode everything captured so far. None when nothing was captured."""
        if not self._pcm:
            return None

        out = io.BytesIO()
        with wave.open(out, "wb") as wf:
            wf.setnchannels(self._channels)
            wf.setsampwidth(CAPTURE_SAMPLE_WIDTH_BYTES)
            wf.setframerate(self._sample_rate_hz)
            wf.writeframes(bytes(self._pcm))
        return out.getvalue()

    def clear(self) -> None:
        self._pcm.clear()
