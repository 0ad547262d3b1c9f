"""
JSONL event logger.

Contract:
- One JSON object per line, written to stdout
- No buffering, no batching
- Never raises into the caller
- Output sink is a module attribute so tests can capture lines
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_enabled: bool = True


def configure(*, enabled: bool) -> None:
    """Turn JSONL output on or off (ENABLE_JSON_LOGS)."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def now_ms() -> int:
    """Wall-clock milliseconds for log correlation."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event.

    The caller supplies the event dict (event_type, session_id, ...).
    Values that json cannot encode (bytes, exceptions) produce a
    LOGGER_SERIALIZATION_ERROR line instead of an exception.
    """
    if not _enabled:
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


class BoundLogger:
    """
    Logger that stamps a fixed context onto every event.

    Used by session-scoped components so each line carries session_id
    without every call site repeating it. Context can be extended later
    (the remote conversation id is only known after the handshake).
    """

    def __init__(self, context: Mapping[str, Any] | None = None) -> None:
        self._context: dict[str, Any] = dict(context or {})

    def update(self, **context: Any) -> None:
        """Merge new keys into the bound context."""
        self._context.update(context)

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    def __call__(self, event_type: str, **fields: Any) -> None:
        # Resolve through the module so a patched log_event is honored
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            **self._context,
            **fields,
        })


def bind(**context: Any) -> BoundLogger:
    """Return a BoundLogger carrying `context` on every line."""
    return BoundLogger(context)
