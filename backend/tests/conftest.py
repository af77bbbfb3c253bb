import os
import tempfile
from pathlib import Path

import pytest

# Point the app at a throwaway database and event log before it is imported.
_TMP = Path(tempfile.mkdtemp(prefix="trivia_quiz_tests_"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'app.db'}"
os.environ["QUIZ_EVENTS_DIR"] = str(_TMP / "events")

from trivia_quiz.errors import ProviderError  # noqa: E402
from trivia_quiz.utils.provider import RawQuestion  # noqa: E402


def make_raw(n, prefix="Question", category="General Knowledge"):
    return [
        RawQuestion(
            question=f"{prefix} number {i} asks something?",
            correct_answer=f"right {i}",
            incorrect_answers=[f"wrong {i}a", f"wrong {i}b", f"wrong {i}c"],
            category=category,
            difficulty="easy",
        )
        for i in range(n)
    ]


class FakeProvider:
    """Provider double.

    With `responses`, each call consumes the next entry (a list of raw
    questions or a `ProviderError` to raise). Otherwise it serves the
    first `count` items of `pool`.
    """

    def __init__(self, pool=None, responses=None):
        self.pool = list(pool or [])
        self.responses = list(responses) if responses is not None else None
        self.calls = []

    def fetch_batch(self, count, category=None):
        self.calls.append((count, category))
        if self.responses is not None:
            nxt = self.responses.pop(0)
            if isinstance(nxt, ProviderError):
                raise nxt
            return list(nxt)
        return self.pool[:count]


@pytest.fixture
def raw_batch():
    return make_raw


@pytest.fixture
def fake_provider():
    return FakeProvider
