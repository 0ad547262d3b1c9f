"""
Interview asset publication.

Uploads the audio, transcript and metadata of a finished interview under
interviews/<id>/ and emails the links. Each upload is independent: a
failed upload is logged and its URL is None.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from interview.models import InterviewRecord
from observability.logger import log_event, now_ms
from services.storage import ArtifactStorage, Mailer
from session.manager import ConversationResult
from spec import INTERVIEW_ASSET_PREFIX, INTERVIEW_EMAIL_SUBJECT


_EXTENSIONS: dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/webm": "webm",
}


@dataclass(frozen=True)
class InterviewAssets:
    audio_url: str | None
    transcript_url: str | None
    metadata_url: str | None

    @property
    def complete(self) -> bool:
        return None not in (self.audio_url, self.transcript_url, self.metadata_url)


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def build_metadata(record: InterviewRecord, result: ConversationResult) -> dict[str, object]:
    return {
        "id": record.id,
        "candidate_name": record.candidate_name,
        "start_time_ms": record.start_time_ms,
        "end_time_ms": record.end_time_ms,
        "duration_ms": record.duration_ms,
        "question_count": len(record.sequence),
        "completed_questions": len(record.responses),
        "status": record.status.value,
        "session_id": result.session_id,
        "conversation_ids": list(result.conversation_ids),
        "transcript_source": result.transcript.source,
        "audio_source": result.audio_source,
    }


class InterviewAssetPublisher:

    def __init__(
        self,
        *,
        storage: ArtifactStorage,
        mailer: Mailer | None = None,
        stamp: Callable[[], str] = _utc_stamp,
    ) -> None:
        self._storage = storage
        self._mailer = mailer
        self._stamp = stamp

    async def publish(
        self,
        record: InterviewRecord,
        result: ConversationResult,
    ) -> InterviewAssets:
        stamp = self._stamp()
        prefix = f"{INTERVIEW_ASSET_PREFIX}/{record.id}"

        audio_upload = None
        if result.audio is not None and result.audio_content_type is not None:
            ext = _EXTENSIONS.get(result.audio_content_type, "bin")
            audio_upload = self._upload(
                result.audio,
                f"{prefix}/audio-{stamp}.{ext}",
                result.audio_content_type,
            )

        transcript_upload = self._upload(
            result.transcript.text.encode("utf-8"),
            f"{prefix}/transcript-{stamp}.txt",
            "text/plain",
        )
        metadata_upload = self._upload(
            json.dumps(build_metadata(record, result), indent=2).encode("utf-8"),
            f"{prefix}/metadata-{stamp}.json",
            "application/json",
        )

        if audio_upload is None:
            transcript_url, metadata_url = await asyncio.gather(
                transcript_upload, metadata_upload
            )
            audio_url = None
        else:
            audio_url, transcript_url, metadata_url = await asyncio.gather(
                audio_upload, transcript_upload, metadata_upload
            )

        assets = InterviewAssets(
            audio_url=audio_url,
            transcript_url=transcript_url,
            metadata_url=metadata_url,
        )
        log_event({
            "ts_ms": now_ms(),
            "event_type": "INTERVIEW_ASSETS_PUBLISHED",
            "interview_id": record.id,
            "complete": assets.complete,
        })

        if self._mailer is not None and record.candidate_email:
            await self._notify(record, assets)
        return assets

    async def _upload(self, data: bytes, path: str, content_type: str) -> str | None:
        try:
            return await self._storage.upload(data, path, content_type)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "INTERVIEW_ASSET_UPLOAD_FAILED",
                "path": path,
                "error": repr(e),
            })
            return None

    async def _notify(self, record: InterviewRecord, assets: InterviewAssets) -> None:
        assert self._mailer is not None
        assert record.candidate_email is not None

        lines = [f"Hello {record.candidate_name},", "", "Your interview recording is ready."]
        if assets.audio_url:
            lines.append(f"Audio: {assets.audio_url}")
        if assets.transcript_url:
            lines.append(f"Transcript: {assets.transcript_url}")
        if assets.metadata_url:
            lines.append(f"Details: {assets.metadata_url}")

        try:
            await self._mailer.send_email(
                record.candidate_email,
                INTERVIEW_EMAIL_SUBJECT.format(candidate_name=record.candidate_name),
                "\n".join(lines),
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "INTERVIEW_EMAIL_FAILED",
                "interview_id": record.id,
                "error": repr(e),
            })
