# pylint: disable=missing-module-docstring,missing-function-docstring
import json
from types import SimpleNamespace
from typing import Any

import pytest

from context.transcript import FinalTranscript
from interview.models import (
    InterviewRecord,
    InterviewStatus,
    Question,
    QuestionSequence,
)
from interview.runner import InterviewRunner
from orchestrator.enums.state import SessionState
from services.interview_assets import InterviewAssetPublisher
from session.errors import (
    BusyError,
    ConnectionError,  # pylint: disable=redefined-builtin
    ResponseTimeoutError,
    SessionNotActiveError,
)
from session.manager import ConversationResult


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeManager:

    def __init__(self, replies: list[Any] | None = None) -> None:
        self.session = SimpleNamespace(session_id="sess-1")
        self.state = SessionState.IDLE
        self.replies = list(replies or [])
        self.sent: list[str] = []
        self.paused = 0
        self.resumed = 0
        self.init_error: Exception | None = None
        self.result: ConversationResult | None = None

    async def initialize(self) -> None:
        if self.init_error is not None:
            self.state = SessionState.CLOSED
            raise self.init_error
        self.state = SessionState.ACTIVE

    async def send_message(self, text: str) -> bytes:
        self.sent.append(text)
        reply = self.replies.pop(0) if self.replies else b"audio"
        if isinstance(reply, Exception):
            raise reply
        return reply

    def pause(self) -> None:
        self.paused += 1

    def resume(self) -> None:
        self.resumed += 1

    async def end_conversation(self) -> ConversationResult | None:
        self.state = SessionState.CLOSED
        return self.result


class FakeStorage:

    def __init__(self, fail_paths: tuple[str, ...] = ()) -> None:
        self.fail_paths = fail_paths
        self.uploads: dict[str, tuple[bytes, str]] = {}

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        if any(marker in path for marker in self.fail_paths):
            raise OSError("bucket unavailable")
        self.uploads[path] = (data, content_type)
        return f"https://files.example/{path}"


class FakeMailer:

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))


def make_record(email: str | None = "ada@example.com") -> InterviewRecord:
    sequence = QuestionSequence(
        id="seq-1",
        name="Backend screen",
        questions=(
            Question(id="q1", text="Describe a system you designed."),
            Question(id="q2", text="How do you test async code?"),
        ),
    )
    return InterviewRecord(id="int-1", candidate_name="Ada", sequence=sequence, candidate_email=email)


def make_result(audio: bytes | None = b"mp3", content_type: str | None = "audio/mpeg") -> ConversationResult:
    return ConversationResult(
        session_id="sess-1",
        conversation_ids=("conv-1",),
        transcript=FinalTranscript(text="Agent: Hi\nUser: Hello", entries=(), source="remote"),
        audio=audio,
        audio_content_type=content_type,
        audio_source="remote" if audio else None,
    )


# ---------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_questions_are_asked_in_order():
    manager = FakeManager()
    record = make_record()
    runner = InterviewRunner(manager=manager, record=record)

    await runner.start()
    first = await runner.ask_next()
    second = await runner.ask_next()
    done = await runner.ask_next()

    assert record.status is InterviewStatus.IN_PROGRESS
    assert [r.question_id for r in (first, second)] == ["q1", "q2"]
    assert done is None
    assert manager.sent == [
        "Please ask the candidate the following question: Describe a system you designed.",
        "Please ask the candidate the following question: How do you test async code?",
    ]
    assert record.finished_questions
    assert first is not None and first.audio_bytes == len(b"audio")


@pytest.mark.asyncio
async def test_retryable_error_is_retried_once():
    manager = FakeManager(replies=[ResponseTimeoutError("slow"), b"question-audio"])
    record = make_record()
    runner = InterviewRunner(manager=manager, record=record)
    await runner.start()

    response = await runner.ask_next()

    assert response is not None
    assert response.attempts == 2
    assert len(manager.sent) == 2
    assert record.current_question_index == 1


@pytest.mark.asyncio
async def test_retry_budget_is_bounded():
    manager = FakeManager(replies=[ResponseTimeoutError("slow"), ResponseTimeoutError("slow")])
    record = make_record()
    runner = InterviewRunner(manager=manager, record=record)
    await runner.start()

    with pytest.raises(ResponseTimeoutError):
        await runner.ask_next()

    assert len(manager.sent) == 2
    assert record.current_question_index == 0
    assert record.status is InterviewStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_busy_is_not_retried():
    manager = FakeManager(replies=[BusyError("pending")])
    runner = InterviewRunner(manager=manager, record=make_record())
    await runner.start()

    with pytest.raises(BusyError):
        await runner.ask_next()
    assert len(manager.sent) == 1


@pytest.mark.asyncio
async def test_closed_session_fails_interview():
    manager = FakeManager(replies=[ConnectionError("gone"), ConnectionError("gone")])
    record = make_record()
    runner = InterviewRunner(manager=manager, record=record)
    await runner.start()
    manager.state = SessionState.CLOSED

    with pytest.raises(ConnectionError):
        await runner.ask_next()
    assert record.status is InterviewStatus.FAILED


@pytest.mark.asyncio
async def test_failed_start_marks_interview_failed():
    manager = FakeManager()
    manager.init_error = ConnectionError("handshake not acknowledged")
    record = make_record()

    with pytest.raises(ConnectionError):
        await InterviewRunner(manager=manager, record=record).start()
    assert record.status is InterviewStatus.FAILED


@pytest.mark.asyncio
async def test_pause_blocks_questions_until_resume():
    manager = FakeManager()
    record = make_record()
    runner = InterviewRunner(manager=manager, record=record)
    await runner.start()

    runner.pause()
    runner.pause()
    assert record.status is InterviewStatus.PAUSED
    with pytest.raises(SessionNotActiveError):
        await runner.ask_next()

    runner.resume()
    assert record.status is InterviewStatus.IN_PROGRESS
    assert (manager.paused, manager.resumed) == (1, 1)
    assert await runner.ask_next() is not None


@pytest.mark.asyncio
async def test_complete_publishes_assets():
    manager = FakeManager()
    manager.result = make_result()
    storage = FakeStorage()
    mailer = FakeMailer()
    record = make_record()
    runner = InterviewRunner(
        manager=manager,
        record=record,
        publisher=InterviewAssetPublisher(storage=storage, mailer=mailer, stamp=lambda: "T1"),
    )
    await runner.start()
    await runner.ask_next()

    assets = await runner.complete()

    assert record.status is InterviewStatus.COMPLETED
    assert record.duration_ms is not None
    assert assets is not None and assets.complete
    assert set(storage.uploads) == {
        "interviews/int-1/audio-T1.mp3",
        "interviews/int-1/transcript-T1.txt",
        "interviews/int-1/metadata-T1.json",
    }
    metadata = json.loads(storage.uploads["interviews/int-1/metadata-T1.json"][0])
    assert metadata["question_count"] == 2
    assert metadata["completed_questions"] == 1
    assert metadata["status"] == "completed"
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_complete_without_session_publishes_nothing():
    storage = FakeStorage()
    runner = InterviewRunner(
        manager=FakeManager(),
        record=make_record(),
        publisher=InterviewAssetPublisher(storage=storage),
    )

    assert await runner.complete() is None
    assert storage.uploads == {}


# ---------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_failed_upload_is_skipped():
    storage = FakeStorage(fail_paths=("audio-",))
    mailer = FakeMailer()
    publisher = InterviewAssetPublisher(storage=storage, mailer=mailer, stamp=lambda: "T2")

    assets = await publisher.publish(make_record(), make_result())

    assert assets.audio_url is None
    assert assets.transcript_url == "https://files.example/interviews/int-1/transcript-T2.txt"
    assert not assets.complete
    to, subject, body = mailer.sent[0]
    assert to == "ada@example.com"
    assert subject == "Interview completed: Ada"
    assert "Audio:" not in body
    assert "transcript-T2.txt" in body


@pytest.mark.asyncio
async def test_local_wav_uses_wav_extension():
    storage = FakeStorage()
    publisher = InterviewAssetPublisher(storage=storage, stamp=lambda: "T3")

    await publisher.publish(make_record(), make_result(audio=b"RIFF", content_type="audio/wav"))

    data, content_type = storage.uploads["interviews/int-1/audio-T3.wav"]
    assert (data, content_type) == (b"RIFF", "audio/wav")
    assert storage.uploads["interviews/int-1/transcript-T3.txt"][0] == b"Agent: Hi\nUser: Hello"


@pytest.mark.asyncio
async def test_no_email_without_address():
    mailer = FakeMailer()
    publisher = InterviewAssetPublisher(storage=FakeStorage(), mailer=mailer)

    await publisher.publish(make_record(email=None), make_result(audio=None, content_type=None))

    assert mailer.sent == []
