"""
Interview runner.

Drives one ConversationManager through a QuestionSequence: each question
is sent as a prompt for the agent to ask aloud, and the runner waits for
the agent's spoken question before moving on.

Retry rule: a retryable error on a question is retried until
QUESTION_MAX_ATTEMPTS is reached. BusyError and closed-session errors are
never retried.
"""

from __future__ import annotations

import time

from interview.models import InterviewRecord, InterviewStatus, QuestionResponse
from observability.logger import bind
from orchestrator.enums.state import SessionState
from services.interview_assets import InterviewAssetPublisher, InterviewAssets
from session.errors import ConversationError, SessionNotActiveError
from session.manager import ConversationManager, ConversationResult
from spec import QUESTION_MAX_ATTEMPTS, QUESTION_PROMPT_TEMPLATE


def _wall_ms() -> int:
    return time.time_ns() // 1_000_000


class InterviewRunner:

    def __init__(
        self,
        *,
        manager: ConversationManager,
        record: InterviewRecord,
        publisher: InterviewAssetPublisher | None = None,
        max_attempts: int = QUESTION_MAX_ATTEMPTS,
    ) -> None:
        self._manager = manager
        self.record = record
        self._publisher = publisher
        self._max_attempts = max(1, max_attempts)
        self._log = bind(interview_id=record.id, session_id=manager.session.session_id)
        self.result: ConversationResult | None = None

    async def start(self) -> None:
        try:
            await self._manager.initialize()
        except ConversationError:
            self.record.status = InterviewStatus.FAILED
            raise
        self.record.status = InterviewStatus.IN_PROGRESS
        self.record.start_time_ms = _wall_ms()
        self._log("INTERVIEW_STARTED", questions=len(self.record.sequence))

    async def ask_next(self) -> QuestionResponse | None:
        """
        Ask the next question. Returns None when every question was asked.

        Raises:
            SessionNotActiveError: the interview is paused or not started.
            ConversationError: the question failed after all attempts.
        """
        if self.record.status is not InterviewStatus.IN_PROGRESS:
            raise SessionNotActiveError(f"interview is {self.record.status.value}")
        if self.record.finished_questions:
            return None

        question = self.record.sequence.questions[self.record.current_question_index]
        prompt = QUESTION_PROMPT_TEMPLATE.format(text=question.text)
        asked_at = _wall_ms()

        attempt = 0
        while True:
            attempt += 1
            try:
                audio = await self._manager.send_message(prompt)
                break
            except ConversationError as e:
                if e.retryable and attempt < self._max_attempts:
                    self._log(
                        "QUESTION_RETRY",
                        question_id=question.id,
                        attempt=attempt,
                        error=repr(e),
                    )
                    continue
                if self._manager.state is SessionState.CLOSED:
                    self.record.status = InterviewStatus.FAILED
                self._log("QUESTION_FAILED", question_id=question.id, error=repr(e))
                raise

        response = QuestionResponse(
            question_id=question.id,
            prompt=prompt,
            asked_at_ms=asked_at,
            duration_ms=_wall_ms() - asked_at,
            audio_bytes=len(audio),
            attempts=attempt,
        )
        self.record.responses.append(response)
        self.record.current_question_index += 1
        self._log(
            "QUESTION_ASKED",
            question_id=question.id,
            index=self.record.current_question_index - 1,
            attempts=attempt,
        )
        return response

    def pause(self) -> None:
        if self.record.status is not InterviewStatus.IN_PROGRESS:
            return
        self._manager.pause()
        self.record.status = InterviewStatus.PAUSED
        self._log("INTERVIEW_PAUSED")

    def resume(self) -> None:
        if self.record.status is not InterviewStatus.PAUSED:
            return
        self._manager.resume()
        self.record.status = InterviewStatus.IN_PROGRESS
        self._log("INTERVIEW_RESUMED")

    async def complete(self) -> InterviewAssets | None:
        """
        End the conversation and publish the interview assets.

        Returns None when there is nothing to publish.
        """
        self.result = await self._manager.end_conversation()
        self.record.end_time_ms = _wall_ms()
        if self.record.status is not InterviewStatus.FAILED:
            self.record.status = InterviewStatus.COMPLETED
        self._log(
            "INTERVIEW_COMPLETED",
            status=self.record.status.value,
            answered=len(self.record.responses),
        )

        if self.result is None or self._publisher is None:
            return None
        return await self._publisher.publish(self.record, self.result)
