"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
attempts). Repositories return SQLModel objects and perform
commits/refreshes where appropriate.
"""

from typing import List, Optional, Tuple
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def find(self, identifier: str) -> Optional[models.User]:
        """Look a user up by username, falling back to email."""
        identifier = (identifier or '').strip()
        if not identifier:
            return None
        return self.get_by_username(identifier) or self.get_by_email(identifier)

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class AttemptRepository:
    """Append-only storage for quiz attempts and their items."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, attempt: models.QuizAttempt, items: List[models.QuizAttemptItem]) -> models.QuizAttempt:
        """Store a `QuizAttempt` together with its items in one commit."""
        self.session.add(attempt)
        self.session.flush()
        for it in items:
            it.attempt_id = attempt.id
            self.session.add(it)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def list_for_user(self, user_id: int) -> List[models.QuizAttempt]:
        """Return the user's attempts, newest first."""
        stmt = (
            select(models.QuizAttempt)
            .where(models.QuizAttempt.user_id == user_id)
            .order_by(models.QuizAttempt.timestamp.desc(), models.QuizAttempt.id.desc())
        )
        return self.session.exec(stmt).all()

    def items_for(self, attempt_id: int) -> List[models.QuizAttemptItem]:
        stmt = (
            select(models.QuizAttemptItem)
            .where(models.QuizAttemptItem.attempt_id == attempt_id)
            .order_by(models.QuizAttemptItem.question_number)
        )
        return self.session.exec(stmt).all()

    def aggregates_by_user(self) -> List[Tuple[int, str, int, float, int]]:
        """Return `(user_id, username, best, average, count)` for users with attempts.

        Rows come back in user insertion order; ranking is left to the caller.
        """
        stmt = (
            select(
                models.User.id,
                models.User.username,
                func.max(models.QuizAttempt.score),
                func.avg(models.QuizAttempt.score),
                func.count(models.QuizAttempt.id),
            )
            .join(models.QuizAttempt, models.QuizAttempt.user_id == models.User.id)
            .group_by(models.User.id, models.User.username)
            .order_by(models.User.id)
        )
        return list(self.session.exec(stmt).all())
