"""Quiz session state machine.

Each operation takes the caller's `SessionState` and returns an outcome
carrying a new `SessionState`; nothing here mutates its input or touches
storage. `services.QuizService` loads and saves the state and persists
scored attempts.

States: no session -> active (start) -> active (answer) -> scored
(submit) -> no session. Starting always replaces any active quiz.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .errors import Err, Ok, Outcome, ProviderError, QuizError, QuizErrorKind
from .utils.selection import Question, QuestionSelector, clamp_count, merge_seen


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class QuizSession:
    questions: Tuple[Question, ...]
    started_at: datetime
    answers: Dict[int, str] = field(default_factory=dict)
    cursor: int = 0
    category: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.questions)


@dataclass(frozen=True)
class QuestionOutcome:
    question_number: int
    question: str
    options: Dict[str, str]
    user_answer: Optional[str]
    correct_answer: str
    is_correct: bool

    def to_dict(self) -> dict:
        return {
            "question_number": self.question_number,
            "question": self.question,
            "options": dict(self.options),
            "user_answer": self.user_answer,
            "correct_answer": self.correct_answer,
            "is_correct": self.is_correct,
        }


@dataclass(frozen=True)
class QuizResult:
    results: Tuple[QuestionOutcome, ...]
    correct_count: int
    incorrect_count: int
    total_questions: int
    score: int
    time_taken: int
    submitted_at: datetime

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "correct_count": self.correct_count,
            "incorrect_count": self.incorrect_count,
            "total_questions": self.total_questions,
            "time_taken": self.time_taken,
            "submitted_at": self.submitted_at.isoformat(),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class SessionState:
    """Everything the quiz core keeps for one signed-in caller."""
    quiz: Optional[QuizSession] = None
    seen_ids: Tuple[str, ...] = ()
    last_result: Optional[QuizResult] = None


def start_quiz(
    state: SessionState,
    selector: QuestionSelector,
    count=10,
    category: Optional[str] = None,
    now: Callable[[], datetime] = utcnow,
) -> Outcome[List[dict]]:
    """Select questions and open a new quiz, abandoning any active one.

    On provider failure the prior quiz is still abandoned: the `Err`
    carries the state with no active quiz (ledger and last result kept)
    and the provider kind mapped to the quiz taxonomy.
    The value on success is the redacted question list.
    """
    requested = clamp_count(count)
    try:
        questions = selector.select(state.seen_ids, requested, category)
    except ProviderError as exc:
        return Err(exc.to_quiz_error(), state=replace(state, quiz=None))
    quiz = QuizSession(questions=tuple(questions), started_at=now(), category=category)
    new_state = SessionState(
        quiz=quiz,
        seen_ids=merge_seen(state.seen_ids, (q.identifier for q in questions)),
        last_result=None,
    )
    return Ok(new_state, [q.redacted() for q in questions])


def answer_question(state: SessionState, position: int, label: str) -> Outcome[dict]:
    """Record `label` for the question at `position`; last write wins."""
    quiz = state.quiz
    if quiz is None:
        return Err(QuizError(QuizErrorKind.NO_ACTIVE_SESSION, "No active quiz. Start a quiz first."))
    if not isinstance(position, int) or isinstance(position, bool) or position < 0 or position >= quiz.total:
        return Err(QuizError(
            QuizErrorKind.INVALID_INDEX,
            f"Question index {position} is out of range (0-{quiz.total - 1}).",
        ))
    answers = dict(quiz.answers)
    answers[position] = label
    new_quiz = replace(quiz, answers=answers, cursor=position)
    return Ok(replace(state, quiz=new_quiz), {"question_index": position, "answer": label, "answered": len(answers)})


def score_quiz(quiz: QuizSession, submitted_at: datetime) -> QuizResult:
    outcomes = []
    correct_count = 0
    for idx, q in enumerate(quiz.questions):
        given = quiz.answers.get(idx)
        is_correct = given is not None and given == q.correct
        if is_correct:
            correct_count += 1
        outcomes.append(QuestionOutcome(
            question_number=idx + 1,
            question=q.prompt,
            options=dict(q.options),
            user_answer=given,
            correct_answer=q.correct,
            is_correct=is_correct,
        ))
    total = quiz.total
    score = round_half_up(correct_count / total * 100) if total else 0
    elapsed = max(0, round_half_up((submitted_at - quiz.started_at).total_seconds()))
    return QuizResult(
        results=tuple(outcomes),
        correct_count=correct_count,
        incorrect_count=total - correct_count,
        total_questions=total,
        score=score,
        time_taken=elapsed,
        submitted_at=submitted_at,
    )


def submit_quiz(state: SessionState, now: Callable[[], datetime] = utcnow) -> Outcome[QuizResult]:
    """Score the active quiz, close it and keep the result as the last result."""
    if state.quiz is None:
        return Err(QuizError(QuizErrorKind.NO_ACTIVE_SESSION, "No active quiz to submit."))
    result = score_quiz(state.quiz, now())
    return Ok(replace(state, quiz=None, last_result=result), result)


def read_last_result(state: SessionState) -> Outcome[QuizResult]:
    if state.last_result is None:
        return Err(QuizError(QuizErrorKind.NO_RESULT, "No quiz results found. Complete a quiz first."))
    return Ok(state, state.last_result)


def reset_quiz(state: SessionState) -> Outcome[dict]:
    """Forget the active quiz, the seen ledger and the last result."""
    return Ok(SessionState(), {"reset": True})
