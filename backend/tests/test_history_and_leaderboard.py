import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from trivia_quiz import models, repositories
from trivia_quiz.quiz_session import QuestionOutcome, QuizResult
from trivia_quiz.services import HistoryService, LeaderboardService, compute_stats

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _user(db, name):
    repo = repositories.UserRepository(db)
    return repo.create(models.User(username=name, email=f"{name}@example.com", password_hash="x"))


def _result(score, total=10, offset=0):
    correct = round(score * total / 100)
    outcomes = tuple(
        QuestionOutcome(
            question_number=i + 1,
            question=f"Q{i}?",
            options={"A": "a", "B": "b", "C": "c", "D": "d"},
            user_answer="A" if i < correct else "B",
            correct_answer="A",
            is_correct=i < correct,
        )
        for i in range(total)
    )
    return QuizResult(
        results=outcomes,
        correct_count=correct,
        incorrect_count=total - correct,
        total_questions=total,
        score=score,
        time_taken=42,
        submitted_at=T0 + timedelta(minutes=offset),
    )


def test_compute_stats():
    assert compute_stats([]) == {"best_score": None, "average_score": None}
    assert compute_stats([70, 90, 85]) == {"best_score": 90, "average_score": 81.67}


def test_record_attempt_stores_breakdown(db):
    alice = _user(db, "alice")
    history = HistoryService(db)
    attempt = history.record_attempt(alice.id, _result(80))
    assert attempt is not None and attempt.id is not None
    rows = history.history(alice.id)
    assert len(rows) == 1
    assert rows[0]["score"] == 80
    assert rows[0]["time_taken"] == 42
    assert len(rows[0]["questions"]) == 10
    assert rows[0]["questions"][0]["options"] == {"A": "a", "B": "b", "C": "c", "D": "d"}


def test_profile_history_is_newest_first(db):
    bob = _user(db, "bob")
    history = HistoryService(db)
    history.record_attempt(bob.id, _result(50, offset=0))
    history.record_attempt(bob.id, _result(70, offset=5))
    profile = history.profile(bob)
    assert [h["score"] for h in profile["history"]] == [70, 50]
    assert profile["stats"] == {"best_score": 70, "average_score": 60.0, "total_quizzes": 2}
    assert profile["user"]["email"] == "bob@example.com"


def test_profile_without_attempts(db):
    carol = _user(db, "carol")
    profile = HistoryService(db).profile(carol)
    assert profile["stats"] == {"best_score": None, "average_score": None, "total_quizzes": 0}
    assert profile["history"] == []


def test_leaderboard_orders_by_best_score_and_ranks(db):
    u1 = _user(db, "ninety")
    u2 = _user(db, "seventy")
    history = HistoryService(db)
    history.record_attempt(u2.id, _result(70))
    history.record_attempt(u1.id, _result(90))
    board = LeaderboardService(db)
    top = board.leaderboard()
    assert [r["best_score"] for r in top] == [90, 70]
    assert board.rank_of(u1.id) == 1
    assert board.rank_of(u2.id) == 2


def test_users_without_attempts_are_excluded(db):
    active = _user(db, "active")
    idle = _user(db, "idle")
    HistoryService(db).record_attempt(active.id, _result(40))
    board = LeaderboardService(db)
    assert [r["username"] for r in board.leaderboard()] == ["active"]
    assert board.rank_of(idle.id) is None
    assert board.rank_of(9999) is None
    view = board.for_user(idle)
    assert view["current_user"]["rank"] is None
    assert view["current_user"]["total_attempts"] == 0


def test_ties_keep_insertion_order(db):
    users = [_user(db, f"tie{i}") for i in range(3)]
    history = HistoryService(db)
    for u in reversed(users):
        history.record_attempt(u.id, _result(60))
    assert [r["username"] for r in LeaderboardService(db).leaderboard()] == ["tie0", "tie1", "tie2"]


def test_leaderboard_is_top_ten_but_rank_uses_full_list(db):
    history = HistoryService(db)
    users = []
    for i in range(12):
        u = _user(db, f"player{i}")
        users.append(u)
        history.record_attempt(u.id, _result(100 - i * 5))
    board = LeaderboardService(db)
    assert len(board.leaderboard()) == 10
    assert board.rank_of(users[11].id) == 12
    view = board.for_user(users[11])
    assert view["current_user"]["rank"] == 12
    assert "user_id" not in view["leaderboard"][0]


def test_persistence_failure_is_logged_and_not_raised(db, monkeypatch, tmp_path, caplog):
    monkeypatch.setenv("QUIZ_EVENTS_DIR", str(tmp_path))
    dave = _user(db, "dave")

    def boom(self, attempt, items):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(repositories.AttemptRepository, "create", boom)
    with caplog.at_level("ERROR"):
        assert HistoryService(db).record_attempt(dave.id, _result(90)) is None
    assert "attempt persistence failed" in caplog.text
    lines = (Path(tmp_path) / "attempt_events.jsonl").read_text(encoding="utf-8").strip().splitlines()
    event = json.loads(lines[-1])
    assert event["user_id"] == dave.id
    assert event["result"]["score"] == 90
    stats = json.loads((Path(tmp_path) / "attempt_stats.json").read_text(encoding="utf-8"))
    assert stats["persistence_failures"] == 1
