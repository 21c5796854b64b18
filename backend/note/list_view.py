from __future__ import annotations

from threading import RLock
from typing import Dict, Iterable, List

from backend.internal_core.contracts import Note, NoteListItem


class NoteListView:
    """
    In-process copy of one owner's note list.

    Editor sessions push title changes and deletions into it through their
    callbacks so the list never has to re-fetch from the store.
    """

    def __init__(self, owner_id: str) -> None:
        self._owner_id = owner_id
        self._lock = RLock()
        self._items: List[NoteListItem] = []
        self._loaded = False

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def loaded(self) -> bool:
        return self._loaded

    def replace_all(self, notes: Iterable[Note]) -> None:
        with self._lock:
            self._items = [
                NoteListItem(id=note.id, title=note.title, created_at=note.created_at)
                for note in notes
                if note.owner == self._owner_id
            ]
            self._loaded = True

    def add(self, note: Note) -> None:
        if note.owner != self._owner_id:
            return
        with self._lock:
            self._items = [item for item in self._items if item.id != note.id]
            self._items.insert(0, NoteListItem(id=note.id, title=note.title, created_at=note.created_at))

    def on_note_updated(self, note_id: str, title: str) -> None:
        with self._lock:
            self._items = [
                item.model_copy(update={"title": title}) if item.id == note_id else item
                for item in self._items
            ]

    def on_note_deleted(self, note_id: str) -> None:
        with self._lock:
            self._items = [item for item in self._items if item.id != note_id]

    def items(self) -> List[NoteListItem]:
        with self._lock:
            return list(self._items)


class NoteListRegistry:
    def __init__(self) -> None:
        self._lock = RLock()
        self._views: Dict[str, NoteListView] = {}

    def for_owner(self, owner_id: str) -> NoteListView:
        with self._lock:
            view = self._views.get(owner_id)
            if view is None:
                view = NoteListView(owner_id)
                self._views[owner_id] = view
            return view
