"""In-memory server-side session store.

Login sessions are created at login and keyed by an opaque session id
that travels inside the caller's access token. Quiz `SessionState` is
kept per user, so every login of the same account shares one active quiz
and one seen-question ledger. A user's quiz state is dropped once their
last login session is destroyed or expires after `ttl_seconds` idle.
"""

from __future__ import annotations

import threading
import time
import uuid
from typing import Optional

from .quiz_session import SessionState


class SessionStore:
    def __init__(self, ttl_seconds: int = 24 * 3600, max_sessions: int = 10000):
        self._sessions: dict[str, dict] = {}
        self._states: dict[int, SessionState] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self._max_sessions = max_sessions

    def create(self, user_id: int) -> str:
        self._cleanup()
        sid = uuid.uuid4().hex
        with self._lock:
            self._sessions[sid] = {"user_id": user_id, "touched": time.time()}
            if len(self._sessions) > self._max_sessions:
                # evict least recently used
                oldest = sorted(self._sessions.items(), key=lambda kv: kv[1]["touched"])
                for old_sid, _ in oldest[: len(self._sessions) - self._max_sessions]:
                    self._sessions.pop(old_sid, None)
                self._drop_orphaned_states()
        return sid

    def owner(self, sid: str) -> Optional[int]:
        """Return the user id the session was issued for, or None if it is gone."""
        self._cleanup()
        with self._lock:
            entry = self._sessions.get(sid)
            if not entry:
                return None
            entry["touched"] = time.time()
            return entry["user_id"]

    def get(self, user_id: int) -> Optional[SessionState]:
        with self._lock:
            return self._states.get(user_id)

    def set(self, user_id: int, state: SessionState) -> None:
        """Replace the user's quiz state. KeyError if the user has no live session."""
        with self._lock:
            if not any(entry["user_id"] == user_id for entry in self._sessions.values()):
                raise KeyError(user_id)
            self._states[user_id] = state

    def destroy(self, sid: str) -> None:
        with self._lock:
            self._sessions.pop(sid, None)
            self._drop_orphaned_states()

    def _drop_orphaned_states(self) -> None:
        # caller holds the lock
        live = {entry["user_id"] for entry in self._sessions.values()}
        for user_id in [u for u in self._states if u not in live]:
            self._states.pop(user_id, None)

    def _cleanup(self) -> None:
        cutoff = time.time() - self._ttl_seconds
        with self._lock:
            expired = [sid for sid, entry in self._sessions.items() if entry["touched"] < cutoff]
            for sid in expired:
                self._sessions.pop(sid, None)
            if expired:
                self._drop_orphaned_states()
