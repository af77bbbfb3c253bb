"""Error taxonomy and tagged outcomes for the quiz core.

Quiz operations never raise for expected failures. Each one returns
either `Ok` (the new session state plus a value) or `Err` wrapping a
`QuizError`, so controllers handle every case explicitly. Provider
failures are the exception: the adapter and the selection engine raise
`ProviderError`, and the state machine converts it to an `Err` with the
kind preserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class QuizErrorKind(str, Enum):
    NO_ACTIVE_SESSION = "NoActiveSession"
    INVALID_INDEX = "InvalidIndex"
    NO_RESULT = "NoResult"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    PROVIDER_NO_RESULTS = "ProviderNoResults"
    PERSISTENCE_FAILURE = "PersistenceFailure"


HTTP_STATUS = {
    QuizErrorKind.NO_ACTIVE_SESSION: 409,
    QuizErrorKind.INVALID_INDEX: 400,
    QuizErrorKind.NO_RESULT: 404,
    QuizErrorKind.PROVIDER_UNAVAILABLE: 503,
    QuizErrorKind.PROVIDER_NO_RESULTS: 422,
    QuizErrorKind.PERSISTENCE_FAILURE: 500,
}


@dataclass(frozen=True)
class QuizError:
    """A structured failure: machine-readable kind plus a readable message."""
    kind: QuizErrorKind
    message: str

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class Ok(Generic[T]):
    state: Any
    value: T


@dataclass(frozen=True)
class Err:
    """A failed transition. `state`, when set, still replaces the stored state."""
    error: QuizError
    state: Any = None

    @property
    def kind(self) -> QuizErrorKind:
        return self.error.kind


Outcome = Union[Ok[T], Err]


class ProviderFailure(str, Enum):
    NO_RESULTS = "NoResults"
    NETWORK = "Network"
    TIMEOUT = "Timeout"
    INVALID_PARAMETER = "InvalidParameter"


class ProviderError(Exception):
    """Raised by the question provider adapter and the selection engine."""

    def __init__(self, kind: ProviderFailure, message: Optional[str] = None):
        self.kind = kind
        self.message = message or kind.value
        super().__init__(self.message)

    def to_quiz_error(self) -> QuizError:
        if self.kind in (ProviderFailure.NETWORK, ProviderFailure.TIMEOUT):
            return QuizError(
                QuizErrorKind.PROVIDER_UNAVAILABLE,
                f"The question service is unavailable right now ({self.message}). Please try again later.",
            )
        if self.kind == ProviderFailure.INVALID_PARAMETER:
            return QuizError(
                QuizErrorKind.PROVIDER_NO_RESULTS,
                f"The question service rejected the request ({self.message}). Try a different category or amount.",
            )
        return QuizError(
            QuizErrorKind.PROVIDER_NO_RESULTS,
            "No questions are available for this category and amount. Try different settings.",
        )
