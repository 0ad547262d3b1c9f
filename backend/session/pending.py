"""
In-flight send_message bookkeeping.

At most one PendingRequest exists per session. It is settled exactly once,
by a burst, an error, or session end; later settlement attempts are no-ops.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from audio.frames import AudioBurst


@dataclass
class PendingRequest:
    """
    One awaiting send_message call.

    created_at_ms / deadline_ms use the same monotonic clock as the audio
    buffer so a burst can be compared against the request start.
    """

    text: str
    created_at_ms: int
    deadline_ms: int
    future: asyncio.Future[AudioBurst] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )

    @property
    def settled(self) -> bool:
        return self.future.done()

    def accepts(self, burst: AudioBurst) -> bool:
        """Only a burst that started after the request answers it."""
        return burst.started_at_ms >= self.created_at_ms

    def resolve(self, burst: AudioBurst) -> bool:
        if self.future.done():
            return False
        self.future.set_result(burst)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True
