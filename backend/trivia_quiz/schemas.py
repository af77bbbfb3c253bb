"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. The account rules mirror the
registration form: short word-character usernames, a plausible email
address and a minimum password length.
"""

from typing import Literal
from pydantic import BaseModel, Field


class RegisterIn(BaseModel):
    """Payload for user registration."""
    username: str = Field(min_length=3, max_length=30, pattern=r'^[A-Za-z0-9_]+$')
    email: str = Field(max_length=254, pattern=r'^\S+@\S+\.\S+$')
    password: str = Field(min_length=6, max_length=100)


class LoginIn(BaseModel):
    """Login payload; `identifier` is a username or an email."""
    identifier: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class AnswerIn(BaseModel):
    """A chosen option for one question of the active quiz."""
    question_index: int
    answer: Literal['A', 'B', 'C', 'D']
