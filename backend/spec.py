"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants of the session core.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
- Per-deployment overrides go through config.SessionTimings, which defaults
  to the values below.
"""

from __future__ import annotations

from typing import Final, Mapping, Tuple

# =============================================================================
# Remote voice channel (ElevenLabs Conversational AI)
# =============================================================================

CONVAI_WS_URL_DEFAULT: Final[str] = "wss://api.elevenlabs.io/v1/convai/conversation"

# websockets max frame size; agent audio chunks are base64 inside JSON
CHANNEL_MAX_MESSAGE_BYTES: Final[int] = 2**22

# Close codes (RFC 6455). Only NORMAL is a caller-initiated / graceful close;
# everything else counts as an abnormal disconnect and triggers reconnection.
WS_CLOSE_NORMAL: Final[int] = 1000
WS_CLOSE_ABNORMAL: Final[int] = 1006
WS_CLOSE_INTERNAL_ERROR: Final[int] = 1011
NORMAL_CLOSE_CODES: Final[frozenset[int]] = frozenset({WS_CLOSE_NORMAL})

# =============================================================================
# Session lifecycle timing
# =============================================================================

HANDSHAKE_TIMEOUT_MS: Final[int] = 10_000
RESPONSE_TIMEOUT_MS: Final[int] = 30_000

# =============================================================================
# Burst detection (Audio Chunk Buffer)
# =============================================================================

BURST_QUIET_PERIOD_MS: Final[int] = 500
BURST_POLL_INTERVAL_MS: Final[int] = 100

# =============================================================================
# Reconnect policy
# =============================================================================

MAX_RECONNECT_ATTEMPTS: Final[int] = 3
RECONNECT_BASE_DELAY_MS: Final[int] = 500
RECONNECT_MAX_DELAY_MS: Final[int] = 8_000

# =============================================================================
# Artifact retrieval (post-hoc audio + transcript)
# =============================================================================

ARTIFACT_POLL_INTERVAL_MS: Final[int] = 1_000
ARTIFACT_MAX_POLLS: Final[int] = 15
ARTIFACT_READY_STATUSES: Final[frozenset[str]] = frozenset({"done"})
ARTIFACT_FAILED_STATUSES: Final[frozenset[str]] = frozenset({"failed"})
REMOTE_AUDIO_CONTENT_TYPE: Final[str] = "audio/mpeg"

# =============================================================================
# Local capture (microphone)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
CAPTURE_CHANNELS: Final[int] = 1
CAPTURE_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16
CAPTURE_BLOCK_MS: Final[int] = 250
CAPTURE_BLOCK_FRAMES: Final[int] = (CAPTURE_SAMPLE_RATE_HZ * CAPTURE_BLOCK_MS) // 1000
LOCAL_AUDIO_CONTENT_TYPE: Final[str] = "audio/wav"

# =============================================================================
# Transcript rendering
# =============================================================================

TRANSCRIPT_SPEAKER_LABELS: Final[Mapping[str, str]] = {
    "agent": "Agent",
    "user": "User",
}

# =============================================================================
# Interview flow
# =============================================================================

QUESTION_PROMPT_TEMPLATE: Final[str] = (
    "Please ask the candidate the following question: {text}"
)
QUESTION_MAX_ATTEMPTS: Final[int] = 2

INTERVIEW_ASSET_PREFIX: Final[str] = "interviews"
INTERVIEW_EMAIL_SUBJECT: Final[str] = "Interview completed: {candidate_name}"

# =============================================================================
# Browser bridge
# =============================================================================

GATEWAY_INBOUND_TYPES: Final[Tuple[str, ...]] = (
    "START",
    "USER_MESSAGE",
    "PAUSE",
    "RESUME",
    "SET_VOLUME",
    "END",
)


# =============================================================================
# Helper Functions
# =============================================================================

def ms_to_seconds(duration_ms: int) -> float:
    """
    Convert milliseconds to seconds for asyncio.sleep / wait_for.

    Defensive behavior:
    - Negative input returns 0.0 instead of propagating an error.
    """
    if duration_ms <= 0:
        return 0.0
    return duration_ms / 1000.0
