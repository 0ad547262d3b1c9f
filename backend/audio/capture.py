"""
Local microphone capture.

The capture device is acquired exclusively for a manager's lifetime and
released on cleanup. sounddevice invokes the stream callback on its own
audio thread; blocks are handed to the event loop with
call_soon_threadsafe so every consumer runs on the loop.

pause/resume only toggle `enabled` and stop/start the stream. The device
stays acquired.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol

from observability.logger import log_event, now_ms
from session.errors import AudioDeviceError
from spec import (
    CAPTURE_BLOCK_FRAMES,
    CAPTURE_CHANNELS,
    CAPTURE_SAMPLE_RATE_HZ,
)


FrameHandler = Callable[[bytes], None]


class AudioInput(Protocol):
    """What the session manager needs from a capture device."""

    enabled: bool

    async def acquire(self, on_frame: FrameHandler) -> None:
        """Open the device and start delivering PCM16 blocks to on_frame."""

    def suspend(self) -> None:
        """Stop delivering blocks without releasing the device."""

    def resume(self) -> None:
        """Resume delivery after suspend()."""

    def release(self) -> None:
        """Close the device. Idempotent."""


class MicrophoneCapture:
    """
    sounddevice InputStream delivering PCM16 mono blocks.

    Raises AudioDeviceError from acquire() if the device cannot be opened
    or PortAudio is not available.
    """

    def __init__(
        self,
        *,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
        channels: int = CAPTURE_CHANNELS,
        block_frames: int = CAPTURE_BLOCK_FRAMES,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._channels = channels
        self._block_frames = block_frames
        self._device = device

        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_frame: FrameHandler | None = None
        self.enabled = False

    @property
    def acquired(self) -> bool:
        return self._stream is not None

    async def acquire(self, on_frame: FrameHandler) -> None:
        if self._stream is not None:
            return

        try:
            # PortAudio is loaded at import time, so import only when a device is wanted
            import sounddevice as sd  # pylint: disable=import-outside-toplevel
        except OSError as e:
            raise AudioDeviceError(f"audio backend unavailable: {e}") from e

        self._loop = asyncio.get_running_loop()
        self._on_frame = on_frame

        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate_hz,
                channels=self._channels,
                dtype="int16",
                blocksize=self._block_frames,
                device=self._device,
                callback=self._callback,
            )
            stream.start()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._loop = None
            self._on_frame = None
            raise AudioDeviceError(f"microphone unavailable: {e}") from e

        self._stream = stream
        self.enabled = True
        log_event({
            "ts_ms": now_ms(),
            "event_type": "MIC_ACQUIRED",
            "sample_rate_hz": self._sample_rate_hz,
            "block_frames": self._block_frames,
        })

    def suspend(self) -> None:
        self.enabled = False
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def resume(self) -> None:
        if self._stream is None:
            return
        if not self._stream.active:
            self._stream.start()
        self.enabled = True

    def release(self) -> None:
        stream = self._stream
        self._stream = None
        self.enabled = False
        self._on_frame = None
        self._loop = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MIC_RELEASE_FAILED",
                "error": repr(e),
            })
            return
        log_event({"ts_ms": now_ms(), "event_type": "MIC_RELEASED"})

    # -- sounddevice audio-thread callback --

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        if status:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MIC_STATUS",
                "status": str(status),
            })
        if not self.enabled:
            return
        loop = self._loop
        handler = self._on_frame
        if loop is None or handler is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(handler, indata.tobytes())
