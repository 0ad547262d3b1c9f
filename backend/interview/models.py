"""
Interview data model.

Pure data containers. The runner mutates InterviewRecord; everything else
is immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class QuestionType(str, Enum):
    OPEN_ENDED = "open_ended"
    MULTIPLE_CHOICE = "multiple_choice"
    BEHAVIORAL = "behavioral"
    TECHNICAL = "technical"


class QuestionDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class InterviewStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    type: QuestionType = QuestionType.OPEN_ENDED
    difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM
    category: str = "general"
    expected_duration_s: int = 120
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class QuestionSequence:
    """Ordered questions asked in one interview."""
    id: str
    name: str
    questions: tuple[Question, ...]
    description: str | None = None

    def __len__(self) -> int:
        return len(self.questions)

    @property
    def total_duration_s(self) -> int:
        return sum(q.expected_duration_s for q in self.questions)


@dataclass(frozen=True)
class QuestionResponse:
    """
    One asked question.

    audio_bytes is the size of the agent's spoken question; the candidate's
    answer lands in the session transcript.
    """
    question_id: str
    prompt: str
    asked_at_ms: int
    duration_ms: int
    audio_bytes: int
    attempts: int = 1


@dataclass
class InterviewRecord:
    """Mutable progress of one interview."""

    id: str
    candidate_name: str
    sequence: QuestionSequence
    candidate_email: str | None = None

    status: InterviewStatus = InterviewStatus.NOT_STARTED
    start_time_ms: int | None = None
    end_time_ms: int | None = None
    current_question_index: int = 0
    responses: list[QuestionResponse] = field(default_factory=list)

    @property
    def finished_questions(self) -> bool:
        return self.current_question_index >= len(self.sequence)

    @property
    def duration_ms(self) -> int | None:
        if self.start_time_ms is None or self.end_time_ms is None:
            return None
        return self.end_time_ms - self.start_time_ms
