"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Users own an append-only history of quiz attempts; each attempt keeps
its per-question breakdown for history display and auditing.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone
from typing import List


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `email`: unique, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: List['QuizAttempt'] = Relationship(back_populates='user')


class QuizAttempt(SQLModel, table=True):
    """A scored quiz. Rows are inserted once and never updated."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    score: int
    correct_count: int
    incorrect_count: int
    total_questions: int
    time_taken: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user: Optional[User] = Relationship(back_populates='attempts')
    items: List['QuizAttemptItem'] = Relationship(back_populates='attempt')


class QuizAttemptItem(SQLModel, table=True):
    """A single question outcome inside a `QuizAttempt`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key='quizattempt.id', index=True)
    question_number: int
    question: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    user_answer: Optional[str] = None
    correct_answer: str
    is_correct: bool = False
    attempt: Optional[QuizAttempt] = Relationship(back_populates='items')

    def to_dict(self) -> dict:
        return {
            'question_number': self.question_number,
            'question': self.question,
            'options': {'A': self.option_a, 'B': self.option_b, 'C': self.option_c, 'D': self.option_d},
            'user_answer': self.user_answer,
            'correct_answer': self.correct_answer,
            'is_correct': self.is_correct,
        }
