"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
the session store and the quiz state machine. Services are intentionally
thin: they perform validation, run domain logic and persist aggregates
via repositories.
"""

from datetime import datetime, timedelta, timezone
import logging
from passlib.context import CryptContext
import jwt
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from . import models, repositories, quiz_session
from .config import settings
from .errors import Err, Ok, QuizErrorKind
from .quiz_session import QuizResult, SessionState
from .session_store import SessionStore
from .utils.observability import record_persistence_failure
from .utils.selection import QuestionSelector

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
LEADERBOARD_SIZE = 10

logger = logging.getLogger("trivia_quiz.quiz")


class AccountConflict(ValueError):
    """Raised when a username or email is already registered."""


class AuthService:
    """Authentication related operations (register, authenticate, logout)."""
    def __init__(self, session: Session, sessions: SessionStore):
        self.session = session
        self.sessions = sessions
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, email: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Raises `AccountConflict` if the username or email is taken.
        """
        email = email.strip().lower()
        if self.user_repo.get_by_username(username):
            raise AccountConflict('username already taken')
        if self.user_repo.get_by_email(email):
            raise AccountConflict('email already registered')
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, email=email, password_hash=hashed)
        return self.user_repo.create(u)

    def verify_password(self, user: models.User, password: str) -> bool:
        return PWD_CTX.verify(password, user.password_hash)

    def authenticate(self, identifier: str, password: str) -> Optional[str]:
        """Verify credentials, open a server session and return a signed JWT.

        `identifier` may be a username or an email. Returns `None` if
        authentication fails.
        """
        user = self.user_repo.find(identifier)
        if not user:
            return None
        if not self.verify_password(user, password):
            return None
        sid = self.sessions.create(user.id)
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "sid": sid, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def logout(self, sid: str) -> None:
        self.sessions.destroy(sid)


def compute_stats(scores: List[int]) -> dict:
    """Best and average score; both None when there are no attempts."""
    if not scores:
        return {'best_score': None, 'average_score': None}
    return {'best_score': max(scores), 'average_score': round(sum(scores) / len(scores), 2)}


class HistoryService:
    """Persist attempts and read a user's history back."""
    def __init__(self, session: Session):
        self.session = session
        self.attempt_repo = repositories.AttemptRepository(session)

    def record_attempt(self, user_id: int, result: QuizResult) -> Optional[models.QuizAttempt]:
        """Append `result` to the user's history.

        Never raises for database errors: the failure is logged, written
        to the quiz event log and `None` is returned.
        """
        attempt = models.QuizAttempt(
            user_id=user_id,
            score=result.score,
            correct_count=result.correct_count,
            incorrect_count=result.incorrect_count,
            total_questions=result.total_questions,
            time_taken=result.time_taken,
            timestamp=result.submitted_at,
        )
        items = [
            models.QuizAttemptItem(
                question_number=r.question_number,
                question=r.question,
                option_a=r.options.get('A', ''),
                option_b=r.options.get('B', ''),
                option_c=r.options.get('C', ''),
                option_d=r.options.get('D', ''),
                user_answer=r.user_answer,
                correct_answer=r.correct_answer,
                is_correct=r.is_correct,
            )
            for r in result.results
        ]
        try:
            return self.attempt_repo.create(attempt, items)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                "%s: attempt persistence failed user_id=%s score=%s",
                QuizErrorKind.PERSISTENCE_FAILURE.value, user_id, result.score,
            )
            try:
                record_persistence_failure(user_id, str(exc), result.to_dict())
            except OSError:
                logger.exception("could not write quiz event log")
            return None

    def history(self, user_id: int) -> List[dict]:
        out = []
        for a in self.attempt_repo.list_for_user(user_id):
            out.append({
                'id': a.id,
                'score': a.score,
                'correct_count': a.correct_count,
                'incorrect_count': a.incorrect_count,
                'total_questions': a.total_questions,
                'time_taken': a.time_taken,
                'date': a.timestamp.isoformat(),
                'questions': [it.to_dict() for it in self.attempt_repo.items_for(a.id)],
            })
        return out

    def profile(self, user: models.User) -> dict:
        """Profile payload: account details, aggregate stats and full history."""
        history = self.history(user.id)
        stats = compute_stats([h['score'] for h in history])
        stats['total_quizzes'] = len(history)
        return {
            'user': {'id': user.id, 'username': user.username, 'email': user.email},
            'stats': stats,
            'history': history,
        }


class LeaderboardService:
    """Rank users by best score. Recomputed from stored attempts on every read."""
    def __init__(self, session: Session):
        self.session = session
        self.attempt_repo = repositories.AttemptRepository(session)

    def ranked(self) -> List[dict]:
        """Full ranking of users that have at least one attempt.

        Ties keep user insertion order (the sort is stable and has no
        secondary key).
        """
        rows = [
            {
                'user_id': user_id,
                'username': username,
                'best_score': int(best),
                'average_score': round(float(avg), 2),
                'total_attempts': int(count),
            }
            for user_id, username, best, avg, count in self.attempt_repo.aggregates_by_user()
        ]
        rows.sort(key=lambda r: r['best_score'], reverse=True)
        for idx, row in enumerate(rows, start=1):
            row['rank'] = idx
        return rows

    def leaderboard(self, limit: int = LEADERBOARD_SIZE) -> List[dict]:
        return self.ranked()[:limit]

    def rank_of(self, user_id: int) -> Optional[int]:
        for row in self.ranked():
            if row['user_id'] == user_id:
                return row['rank']
        return None

    def for_user(self, user: models.User) -> dict:
        """Top entries plus the caller's own rank and stats."""
        ranked = self.ranked()
        mine = next((r for r in ranked if r['user_id'] == user.id), None)
        top = [{k: v for k, v in r.items() if k != 'user_id'} for r in ranked[:LEADERBOARD_SIZE]]
        return {
            'leaderboard': top,
            'current_user': {
                'username': user.username,
                'rank': mine['rank'] if mine else None,
                'best_score': mine['best_score'] if mine else None,
                'average_score': mine['average_score'] if mine else None,
                'total_attempts': mine['total_attempts'] if mine else 0,
            },
        }


class QuizService:
    """Run quiz operations against the user's stored quiz state.

    State is keyed by user id, so all of a user's logins share one
    active quiz.
    """
    def __init__(self, session: Session, sessions: SessionStore, selector: QuestionSelector, now=quiz_session.utcnow):
        self.session = session
        self.sessions = sessions
        self.selector = selector
        self.now = now
        self.history = HistoryService(session)

    def _state(self, user_id: int) -> SessionState:
        return self.sessions.get(user_id) or SessionState()

    def _apply(self, user_id: int, outcome):
        if isinstance(outcome, Ok) or outcome.state is not None:
            self.sessions.set(user_id, outcome.state)
        return outcome

    def start(self, user_id: int, count=10, category: Optional[str] = None):
        outcome = quiz_session.start_quiz(self._state(user_id), self.selector, count, category, now=self.now)
        if isinstance(outcome, Err):
            logger.warning("quiz start failed user_id=%s kind=%s", user_id, outcome.kind.value)
        return self._apply(user_id, outcome)

    def answer(self, user_id: int, position: int, label: str):
        return self._apply(user_id, quiz_session.answer_question(self._state(user_id), position, label))

    def submit(self, user_id: int):
        """Score the quiz and append it to history.

        Returns `(outcome, saved)`; `saved` is False when the attempt
        could not be persisted, in which case the score is still returned.
        """
        outcome = self._apply(user_id, quiz_session.submit_quiz(self._state(user_id), now=self.now))
        if isinstance(outcome, Err):
            return outcome, False
        attempt = self.history.record_attempt(user_id, outcome.value)
        return outcome, attempt is not None

    def last_result(self, user_id: int):
        return quiz_session.read_last_result(self._state(user_id))

    def reset(self, user_id: int):
        return self._apply(user_id, quiz_session.reset_quiz(self._state(user_id)))
