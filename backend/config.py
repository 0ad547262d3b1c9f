"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide typed, immutable config objects

Non-responsibilities:
- No session logic
- No protocol constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from spec import (
    BURST_POLL_INTERVAL_MS,
    BURST_QUIET_PERIOD_MS,
    CONVAI_WS_URL_DEFAULT,
    HANDSHAKE_TIMEOUT_MS,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
    RESPONSE_TIMEOUT_MS,
)


@dataclass(frozen=True)
class SessionTimings:
    """
    Timing knobs for one conversation session.

    Defaults come from spec.py. Tests construct this with small values so
    quiet periods and backoff delays elapse in milliseconds.
    """

    handshake_timeout_ms: int = HANDSHAKE_TIMEOUT_MS
    response_timeout_ms: int = RESPONSE_TIMEOUT_MS
    quiet_period_ms: int = BURST_QUIET_PERIOD_MS
    poll_interval_ms: int = BURST_POLL_INTERVAL_MS
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    reconnect_base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    reconnect_max_delay_ms: int = RECONNECT_MAX_DELAY_MS


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory and session gateway.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Voice agent (ElevenLabs Conversational AI)
    # ------------------------------------------------------------------

    elevenlabs_api_key: str | None
    elevenlabs_agent_id: str | None
    convai_ws_url: str

    # ------------------------------------------------------------------
    # Local capture
    # ------------------------------------------------------------------

    local_capture: bool

    # ------------------------------------------------------------------
    # Session timing
    # ------------------------------------------------------------------

    timings: SessionTimings = field(default_factory=SessionTimings)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric override is not an integer.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_agent_id=os.environ.get("ELEVENLABS_AGENT_ID"),
            convai_ws_url=os.environ.get("CONVAI_WS_URL", CONVAI_WS_URL_DEFAULT),

            local_capture=os.environ.get("LOCAL_CAPTURE", "0") == "1",

            timings=SessionTimings(
                handshake_timeout_ms=_int_env("HANDSHAKE_TIMEOUT_MS", HANDSHAKE_TIMEOUT_MS),
                response_timeout_ms=_int_env("RESPONSE_TIMEOUT_MS", RESPONSE_TIMEOUT_MS),
                quiet_period_ms=_int_env("BURST_QUIET_PERIOD_MS", BURST_QUIET_PERIOD_MS),
                poll_interval_ms=_int_env("BURST_POLL_INTERVAL_MS", BURST_POLL_INTERVAL_MS),
                max_reconnect_attempts=_int_env("MAX_RECONNECT_ATTEMPTS", MAX_RECONNECT_ATTEMPTS),
                reconnect_base_delay_ms=_int_env("RECONNECT_BASE_DELAY_MS", RECONNECT_BASE_DELAY_MS),
                reconnect_max_delay_ms=_int_env("RECONNECT_MAX_DELAY_MS", RECONNECT_MAX_DELAY_MS),
            ),
        )


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)
