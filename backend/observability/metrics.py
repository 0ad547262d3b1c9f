"""
Session-scoped metrics and timing helpers.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Count session events (chunks, bursts, reconnects, timeouts, errors)
- Emit metrics as JSONL events via observability.logger
- One timer measurement = one METRIC_TIMER event
- One METRICS_SUMMARY event on shutdown

Design notes:
- A SessionMetrics instance is constructed explicitly and injected into the
  components that report to it. There is no module-level registry.
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
import uuid
from collections import Counter
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


class SessionMetrics:
    """
    Metrics collector with an explicit lifecycle.

    start() must be called before counters are reported; shutdown() emits
    the summary and makes further calls no-ops. Both are idempotent.
    """

    def __init__(self, *, session_id: str | None = None) -> None:
        self.session_id = session_id
        self._counters: Counter[str] = Counter()
        # timer_id -> (metric_name, start_time_ns)
        self._active_timers: dict[str, tuple[str, int]] = {}
        self._started_ns: int | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._started_ns = time.monotonic_ns()
        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRICS_STARTED",
            "session_id": self.session_id,
        })

    def shutdown(self) -> None:
        """Emit METRICS_SUMMARY once and stop collecting."""
        if not self._running:
            return
        self._running = False

        # Leaked timers are reported, not silently dropped
        leaked = sorted(name for name, _ in self._active_timers.values())
        self._active_timers.clear()

        uptime_ms = 0
        if self._started_ns is not None:
            uptime_ms = (time.monotonic_ns() - self._started_ns) // 1_000_000

        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRICS_SUMMARY",
            "session_id": self.session_id,
            "uptime_ms": uptime_ms,
            "counters": dict(self._counters),
            "leaked_timers": leaked,
        })

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def increment(self, name: str, amount: int = 1) -> None:
        if not self._running:
            return
        self._counters[name] += amount

    def count(self, name: str) -> int:
        return self._counters[name]

    def snapshot(self) -> dict[str, int]:
        return dict(self._counters)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def start_timer(self, name: str) -> str:
        """
        Start a monotonic timer.

        Returns:
            timer_id (str): Opaque ID required to stop the timer later.

        IMPORTANT:
            Callers MUST call stop_timer() in a finally block
            unless using the `timed()` context manager.
        """
        timer_id = f"timer_{uuid.uuid4().hex[:12]}"
        self._active_timers[timer_id] = (name, time.monotonic_ns())
        return timer_id

    def stop_timer(
        self,
        timer_id: str,
        *,
        state: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> int | None:
        """
        Stop a previously started timer and emit a metric event.

        Returns:
            duration_ms if the timer existed, else None
        """
        entry = self._active_timers.pop(timer_id, None)
        if entry is None:
            return None

        name, start_ns = entry
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

        if self._running:
            log_event({
                # Wall-clock timestamp for log correlation / readability
                "ts_ms": now_ms(),
                "event_type": "METRIC_TIMER",
                "metric": name,
                "value_ms": duration_ms,
                "session_id": self.session_id,
                "state": state,
                "details": details or {},
            })

        return duration_ms

    @contextmanager
    def timed(
        self,
        name: str,
        *,
        state: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        """
        Context manager for measuring durations safely.

        Guarantees:
        - Timer is ALWAYS stopped (no leaks)
        - Metric is emitted exactly once
        - Exceptions inside the block do NOT suppress timing

        Usage:
            with metrics.timed("handshake_latency"):
                await channel.open()
        """
        timer_id = self.start_timer(name)
        try:
            yield
        finally:
            self.stop_timer(timer_id, state=state, details=details)
