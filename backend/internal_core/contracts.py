from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EditorState = Literal[
    "empty", "loading", "ready", "dirty", "saving", "error", "deleted"
]

EditorErrorCode = Literal[
    "FETCH_FAILED",
    "SAVE_FAILED",
    "DELETE_FAILED",
    "SUMMARIZE_FAILED",
]

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class Note(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    owner: str
    title: str
    content: str
    created_at: datetime


class Summary(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    note_id: str
    content: str
    created_at: datetime


class DraftSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    content: str
    dirty: bool


class EditorSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    owner_id: str
    state: EditorState
    note_id: Optional[str] = None
    draft: Optional[DraftSnapshot] = None
    persisted_title: Optional[str] = None
    save_pending: bool = False
    summarizing: bool = False
    summaries: List[Summary] = Field(default_factory=list)
    error: Optional[str] = None
    last_error_code: Optional[EditorErrorCode] = None


class NoteListItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    created_at: datetime


AuditEventType = Literal[
    "SESSION_OPENED",
    "NOTE_LOADED",
    "NOTE_LOAD_FAILED",
    "SAVE_SKIPPED",
    "NOTE_SAVED",
    "SAVE_FAILED",
    "FLUSH_FAILED",
    "NOTE_DELETED",
    "DELETE_FAILED",
    "SUMMARY_CREATED",
    "SUMMARY_DELETED",
    "SUMMARIZE_FAILED",
    "SESSION_CLOSED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str
    note_id: Optional[str] = None
