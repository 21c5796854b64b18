"""
Note and summary persistence boundary.

Design intent:
- The editor only talks to the abstract stores; the hosted backend-as-a-service
  sits behind the same async interface in production.
- The in-memory stores are the reference implementation used by the API and tests.
"""
from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, List

from .contracts import Note, Summary


class NoteNotFoundError(KeyError):
    def __init__(self, note_id: str):
        super().__init__(f"Unknown note_id: {note_id}")
        self.note_id = note_id


class SummaryNotFoundError(KeyError):
    def __init__(self, summary_id: str):
        super().__init__(f"Unknown summary_id: {summary_id}")
        self.summary_id = summary_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NoteStore(ABC):
    @abstractmethod
    async def get(self, note_id: str) -> Note: ...

    @abstractmethod
    async def create(self, title: str, content: str, owner: str) -> Note: ...

    @abstractmethod
    async def update(self, note_id: str, title: str, content: str) -> Note: ...

    @abstractmethod
    async def delete(self, note_id: str) -> None: ...

    @abstractmethod
    async def list_for_owner(self, owner: str) -> List[Note]: ...


class SummaryStore(ABC):
    @abstractmethod
    async def create(self, note_id: str, content: str) -> Summary: ...

    @abstractmethod
    async def get(self, summary_id: str) -> Summary: ...

    @abstractmethod
    async def list_for_note(self, note_id: str) -> List[Summary]: ...

    @abstractmethod
    async def delete(self, summary_id: str) -> None: ...


class InMemoryNoteStore(NoteStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._notes: Dict[str, Note] = {}
        # Insertion order breaks created_at ties.
        self._order: Dict[str, int] = {}

    async def get(self, note_id: str) -> Note:
        with self._lock:
            note = self._notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    async def create(self, title: str, content: str, owner: str) -> Note:
        note = Note(
            id=uuid.uuid4().hex,
            owner=owner,
            title=title,
            content=content,
            created_at=_utc_now(),
        )
        with self._lock:
            self._notes[note.id] = note
            self._order[note.id] = len(self._order)
        return note

    async def update(self, note_id: str, title: str, content: str) -> Note:
        with self._lock:
            current = self._notes.get(note_id)
            if current is None:
                raise NoteNotFoundError(note_id)
            updated = current.model_copy(update={"title": title, "content": content})
            self._notes[note_id] = updated
        return updated

    async def delete(self, note_id: str) -> None:
        with self._lock:
            removed = self._notes.pop(note_id, None)
        if removed is None:
            raise NoteNotFoundError(note_id)

    async def list_for_owner(self, owner: str) -> List[Note]:
        with self._lock:
            owned = [note for note in self._notes.values() if note.owner == owner]
        owned.sort(key=lambda item: (item.created_at, self._order.get(item.id, 0)), reverse=True)
        return owned


class InMemorySummaryStore(SummaryStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._summaries: Dict[str, Summary] = {}
        self._order: Dict[str, int] = {}

    async def create(self, note_id: str, content: str) -> Summary:
        summary = Summary(
            id=uuid.uuid4().hex,
            note_id=note_id,
            content=content,
            created_at=_utc_now(),
        )
        with self._lock:
            self._summaries[summary.id] = summary
            self._order[summary.id] = len(self._order)
        return summary

    async def get(self, summary_id: str) -> Summary:
        with self._lock:
            summary = self._summaries.get(summary_id)
        if summary is None:
            raise SummaryNotFoundError(summary_id)
        return summary

    async def list_for_note(self, note_id: str) -> List[Summary]:
        with self._lock:
            items = [item for item in self._summaries.values() if item.note_id == note_id]
        items.sort(key=lambda item: (item.created_at, self._order.get(item.id, 0)), reverse=True)
        return items

    async def delete(self, summary_id: str) -> None:
        with self._lock:
            removed = self._summaries.pop(summary_id, None)
        if removed is None:
            raise SummaryNotFoundError(summary_id)
