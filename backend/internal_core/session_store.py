from __future__ import annotations

import time
import uuid
from threading import RLock
from typing import TYPE_CHECKING, Any, Dict, List

if TYPE_CHECKING:
    from backend.note.editor import EditorSession


class InMemorySessionStore:
    """TTL registry of live editor sessions; each session is owned by exactly one user."""

    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def new_session_id() -> str:
        return uuid.uuid4().hex

    def add_session(self, session: "EditorSession") -> str:
        now = time.time()
        with self._lock:
            self._sessions[session.session_id] = {
                "session": session,
                "owner_id": session.owner_id,
                "created_at": now,
                "updated_at": now,
                "expires_at": now + self._ttl_seconds,
            }
        return session.session_id

    def _touch(self, session_id: str) -> None:
        now = time.time()
        entry = self._sessions[session_id]
        entry["updated_at"] = now
        entry["expires_at"] = now + self._ttl_seconds

    def get_session(self, session_id: str, owner_id: str) -> "EditorSession":
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None or entry["owner_id"] != owner_id:
                raise KeyError(f"Unknown session_id: {session_id}")
            self._touch(session_id)
            return entry["session"]

    def pop_session(self, session_id: str, owner_id: str) -> "EditorSession":
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None or entry["owner_id"] != owner_id:
                raise KeyError(f"Unknown session_id: {session_id}")
            del self._sessions[session_id]
        return entry["session"]

    def sessions_for_owner(self, owner_id: str) -> List["EditorSession"]:
        with self._lock:
            return [
                entry["session"]
                for entry in self._sessions.values()
                if entry["owner_id"] == owner_id
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def cleanup_expired_sessions(self) -> int:
        now = time.time()
        expired: List["EditorSession"] = []
        with self._lock:
            for session_id, entry in list(self._sessions.items()):
                if entry["expires_at"] <= now:
                    expired.append(entry["session"])
                    del self._sessions[session_id]
        # Each close still makes its one flush attempt.
        for session in expired:
            await session.close_session()
        return len(expired)
