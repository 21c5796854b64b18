from .config import AppConfig, load_config
from .note_store import (
    InMemoryNoteStore,
    InMemorySummaryStore,
    NoteNotFoundError,
    NoteStore,
    SummaryNotFoundError,
    SummaryStore,
)
from .session_store import InMemorySessionStore

__all__ = [
    "AppConfig",
    "InMemoryNoteStore",
    "InMemorySessionStore",
    "InMemorySummaryStore",
    "NoteNotFoundError",
    "NoteStore",
    "SummaryNotFoundError",
    "SummaryStore",
    "load_config",
]
