"""Structured quiz event log.

Attempts that were scored but could not be written to the database are
appended here, with the full result payload, so history can be
reconciled by hand later.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock


_WRITE_LOCK = Lock()
_LOGGER = logging.getLogger("trivia_quiz.events")


def _events_root() -> Path:
    raw = os.getenv("QUIZ_EVENTS_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "data" / "quiz_events"


def _events_path() -> Path:
    root = _events_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "attempt_events.jsonl"


def _stats_path() -> Path:
    root = _events_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "attempt_stats.json"


def _empty_stats() -> dict:
    return {"persistence_failures": 0, "last_error": "", "updated_at": None}


def get_event_stats() -> dict:
    """Return the persistence failure counters."""
    stats_file = _stats_path()
    if not stats_file.exists():
        return _empty_stats()
    try:
        return json.loads(stats_file.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return _empty_stats()


def record_persistence_failure(user_id: int, error: str, result: dict) -> None:
    """Append an unsaved attempt to the event log and bump the counters."""
    payload = {
        "event": "attempt_persistence_failed",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "user_id": user_id,
        "error": error,
        "result": result,
    }
    with _WRITE_LOCK:
        with _events_path().open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(payload, ensure_ascii=True) + "\n")
        stats = get_event_stats()
        stats["persistence_failures"] = int(stats.get("persistence_failures", 0)) + 1
        stats["last_error"] = error
        stats["updated_at"] = payload["timestamp"]
        _stats_path().write_text(json.dumps(stats, ensure_ascii=True, indent=2), encoding="utf-8")
    _LOGGER.error("quiz_event %s", json.dumps({k: payload[k] for k in ("event", "user_id", "error")}, ensure_ascii=True))
