"""
Post-conversation artifact retrieval (ElevenLabs REST).

After a conversation ends the remote side needs a few seconds to finish
processing. fetch() polls the conversation details until the status is
ready, then reads the authoritative transcript and downloads the recorded
audio.

Failures raise ArtifactUnavailableError. A failed audio download alone is
not fatal: the transcript is still returned with audio=None.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from elevenlabs.client import AsyncElevenLabs

from context.transcript import TranscriptEntry, entries_from_spans
from observability.logger import log_event, now_ms
from session.errors import ConversationError
from spec import (
    ARTIFACT_FAILED_STATUSES,
    ARTIFACT_MAX_POLLS,
    ARTIFACT_POLL_INTERVAL_MS,
    ARTIFACT_READY_STATUSES,
    REMOTE_AUDIO_CONTENT_TYPE,
    ms_to_seconds,
)


class ArtifactUnavailableError(ConversationError):
    """Remote artifacts could not be retrieved."""

    retryable = True


@dataclass(frozen=True)
class ConversationArtifacts:
    conversation_id: str
    transcript: tuple[TranscriptEntry, ...]
    audio: bytes | None = None
    audio_content_type: str = REMOTE_AUDIO_CONTENT_TYPE


class ArtifactSource(Protocol):

    async def fetch(self, conversation_id: str) -> ConversationArtifacts:
        """Return the remote artifacts for one conversation."""


class ElevenLabsArtifactClient:
    """
    ArtifactSource backed by the ElevenLabs conversational AI API.

    `client` may be injected (tests pass a fake with the same shape).
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        client: Any = None,
        poll_interval_ms: int = ARTIFACT_POLL_INTERVAL_MS,
        max_polls: int = ARTIFACT_MAX_POLLS,
    ) -> None:
        if client is None:
            client = AsyncElevenLabs(api_key=api_key)
        # elevenlabs < 2.0 only has get_conversation / get_conversation_audio
        if not hasattr(getattr(client, "conversational_ai", None), "conversations"):
            raise RuntimeError(
                "elevenlabs client has no conversational_ai.conversations; "
                "elevenlabs>=2.0.0 is required"
            )
        self._client = client
        self._poll_interval_ms = poll_interval_ms
        self._max_polls = max_polls

    async def fetch(self, conversation_id: str) -> ConversationArtifacts:
        details = await self._wait_until_ready(conversation_id)

        spans = [
            (str(getattr(item, "role", "")), getattr(item, "message", None) or "")
            for item in (getattr(details, "transcript", None) or [])
        ]
        transcript = entries_from_spans(spans)
        audio = await self._download_audio(conversation_id)

        log_event({
            "ts_ms": now_ms(),
            "event_type": "ARTIFACTS_FETCHED",
            "conversation_id": conversation_id,
            "transcript_entries": len(transcript),
            "audio_bytes": len(audio) if audio else 0,
        })
        return ConversationArtifacts(
            conversation_id=conversation_id,
            transcript=transcript,
            audio=audio,
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _wait_until_ready(self, conversation_id: str) -> Any:
        conversations = self._client.conversational_ai.conversations
        status = None

        for poll in range(self._max_polls):
            try:
                details = await conversations.get(conversation_id)
            except Exception as e:  # pylint: disable=broad-exception-caught
                raise ArtifactUnavailableError(
                    f"conversation lookup failed: {e!r}"
                ) from e

            status = str(getattr(details, "status", "") or "")
            if status in ARTIFACT_READY_STATUSES:
                return details
            if status in ARTIFACT_FAILED_STATUSES:
                raise ArtifactUnavailableError(
                    f"conversation {conversation_id} processing failed"
                )

            if poll + 1 < self._max_polls:
                await asyncio.sleep(ms_to_seconds(self._poll_interval_ms))

        raise ArtifactUnavailableError(
            f"conversation {conversation_id} not ready after "
            f"{self._max_polls} polls (status={status!r})"
        )

    async def _download_audio(self, conversation_id: str) -> bytes | None:
        audio_client = self._client.conversational_ai.conversations.audio
        buf = bytearray()
        try:
            async for chunk in audio_client.get(conversation_id):
                buf.extend(chunk)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "ARTIFACT_AUDIO_FAILED",
                "conversation_id": conversation_id,
                "error": repr(e),
            })
            return None
        return bytes(buf) or None
