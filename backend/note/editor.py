from __future__ import annotations

"""
Editor session controller for the note currently open in the editor.

Design intent:
- Mirror keystrokes into the local draft immediately; persist on a trailing debounce.
- Key every save to the note id captured when it was scheduled, never re-read later.
- Apply remote results only while their note is still the active one; the draft
  stays authoritative for what the next save sends.
- Convert every remote failure into local session state; nothing propagates.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from backend.internal_core import audit
from backend.internal_core.contracts import (
    GENERIC_ERROR_MESSAGE,
    AuditEvent,
    AuditEventType,
    DraftSnapshot,
    EditorErrorCode,
    EditorSnapshot,
    EditorState,
    Note,
    Summary,
)
from backend.internal_core.note_store import NoteNotFoundError, NoteStore, SummaryStore
from backend.summary.base import Summarizer

from .debounce import DebouncedCallback

logger = logging.getLogger(__name__)

NoteUpdatedCallback = Callable[[str, str], None]
NoteDeletedCallback = Callable[[str], None]

DEFAULT_AUTOSAVE_DELAY_MS = 750
DEFAULT_NOTE_TITLE = "New Note"


@dataclass(frozen=True)
class SessionContext:
    owner_id: str
    session_id: str


@dataclass
class Draft:
    title: str
    content: str
    dirty: bool = False


class EditorSession:
    def __init__(
        self,
        context: SessionContext,
        note_store: NoteStore,
        summary_store: SummaryStore,
        summarizer: Summarizer,
        *,
        autosave_delay_ms: float = DEFAULT_AUTOSAVE_DELAY_MS,
        default_title: str = DEFAULT_NOTE_TITLE,
        on_note_updated: Optional[NoteUpdatedCallback] = None,
        on_note_deleted: Optional[NoteDeletedCallback] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._context = context
        self._note_store = note_store
        self._summary_store = summary_store
        self._summarizer = summarizer
        self._default_title = default_title.strip() or DEFAULT_NOTE_TITLE
        self._on_note_updated = on_note_updated
        self._on_note_deleted = on_note_deleted

        self._state: EditorState = "empty"
        self._note_id: Optional[str] = None
        self._draft: Optional[Draft] = None
        self._persisted: Optional[Note] = None
        self._summaries: List[Summary] = []
        self._summarizing = False
        self._error: Optional[str] = None
        self._last_error_code: Optional[EditorErrorCode] = None
        self._closed = False

        self._load_generation = 0
        self._save_seq = 0
        self._confirmed_seq = 0
        self._saves_in_flight = 0
        self._flush_tasks: Dict[str, Set[asyncio.Task[bool]]] = {}
        # Latest write issued per note that has not resolved yet: (seq, title, content).
        self._issued: Dict[str, Tuple[int, str, str]] = {}

        self._audit_events: List[AuditEvent] = []
        self._autosave = DebouncedCallback(self._save, autosave_delay_ms, loop=loop)
        audit.log_event(self, "SESSION_OPENED", "OPEN", f"owner={context.owner_id}")

    @property
    def session_id(self) -> str:
        return self._context.session_id

    @property
    def owner_id(self) -> str:
        return self._context.owner_id

    @property
    def state(self) -> EditorState:
        return self._state

    @property
    def note_id(self) -> Optional[str]:
        return self._note_id

    @property
    def draft(self) -> Optional[Draft]:
        return self._draft

    @property
    def persisted(self) -> Optional[Note]:
        return self._persisted

    @property
    def summaries(self) -> List[Summary]:
        return list(self._summaries)

    @property
    def summarizing(self) -> bool:
        return self._summarizing

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def last_error_code(self) -> Optional[EditorErrorCode]:
        return self._last_error_code

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def save_pending(self) -> bool:
        return self._autosave.pending

    @property
    def autosave_delay_ms(self) -> float:
        return self._autosave.delay_ms

    @property
    def audit_events(self) -> List[AuditEvent]:
        return list(self._audit_events)

    def append_audit_event(self, event: AuditEvent) -> None:
        self._audit_events.append(event)

    async def select_note(self, note_id: str) -> bool:
        if self._closed:
            return False

        self._flush_outgoing()
        self._autosave.cancel()
        self._load_generation += 1
        generation = self._load_generation
        self._state = "loading"

        # A write for the target note still in flight would make the fetch
        # return text older than what the user typed.
        if self._has_outstanding_write(note_id):
            await self._drain()
            if generation != self._load_generation or self._closed:
                return False

        try:
            note = await self._note_store.get(note_id)
            if note.owner != self._context.owner_id:
                raise NoteNotFoundError(note_id)
        except Exception as exc:
            if generation != self._load_generation or self._closed:
                return False
            # Keep the previous draft and note binding; nothing typed is discarded.
            self._fail("FETCH_FAILED", "NOTE_LOAD_FAILED", exc, note_id)
            return False

        if generation != self._load_generation or self._closed:
            return False

        self._note_id = note.id
        self._persisted = note
        self._draft = Draft(title=note.title, content=note.content, dirty=False)
        self._summaries = []
        self._state = "ready"
        self._clear_error()
        audit.log_event(self, "NOTE_LOADED", "LOAD_OK", "note loaded", note.id)

        try:
            summaries = await self._summary_store.list_for_note(note.id)
        except Exception as exc:
            if generation == self._load_generation:
                self._record_error("FETCH_FAILED", "NOTE_LOAD_FAILED", exc, note.id)
            return True
        if generation == self._load_generation and self._note_id == note.id:
            self._summaries = list(summaries)
        return True

    def edit(self, *, title: Optional[str] = None, content: Optional[str] = None) -> bool:
        if title is None and content is None:
            return False
        if self._closed or self._draft is None or self._note_id is None:
            return False
        if self._state in ("empty", "loading", "deleted"):
            return False

        if title is not None:
            self._draft.title = title
        if content is not None:
            self._draft.content = content
        self._draft.dirty = not self._matches_persisted(self._draft.title, self._draft.content)
        # Typing dismisses a fetch/delete/summarize error; a save failure stays
        # until a save succeeds.
        if self._last_error_code is not None and self._last_error_code != "SAVE_FAILED":
            self._clear_error()
        self._state = "dirty"
        self._autosave(self._note_id)
        return True

    async def flush(self) -> bool:
        """Persist pending edits now and wait for every save issued so far."""
        if self._closed or self._note_id is None:
            return True
        ok = True
        if self._autosave.pending:
            ok = bool(await self._autosave.flush())
        elif self._draft is not None and self._draft.dirty and self._idle():
            ok = await self._save(self._note_id)
        await self._drain()
        if self._autosave.pending:
            # A confirmation during the wait found newer text to send.
            ok = bool(await self._autosave.flush()) and ok
            await self._drain()
        return ok and self._last_error_code != "SAVE_FAILED"

    async def delete_note(self) -> bool:
        if self._closed or self._note_id is None:
            return False
        if self._state in ("deleted", "loading", "empty"):
            return False

        note_id = self._note_id
        self._autosave.cancel()
        try:
            await self._note_store.delete(note_id)
        except Exception as exc:
            if note_id == self._note_id:
                self._fail("DELETE_FAILED", "DELETE_FAILED", exc, note_id)
                if self._draft is not None and self._draft.dirty:
                    self._autosave(note_id)
            return False

        self._notify_deleted(note_id)
        if note_id == self._note_id:
            self._state = "deleted"
            self._note_id = None
            self._draft = None
            self._persisted = None
            self._summaries = []
            self._clear_error()
        audit.log_event(self, "NOTE_DELETED", "DELETE_OK", "note deleted", note_id)
        return True

    def note_deleted_elsewhere(self, note_id: str) -> bool:
        """Drop the binding to a note another session or route already deleted."""
        if self._closed or note_id != self._note_id:
            return False
        self._autosave.cancel()
        self._state = "deleted"
        self._note_id = None
        self._draft = None
        self._persisted = None
        self._summaries = []
        self._clear_error()
        audit.log_event(self, "NOTE_DELETED", "DELETED_ELSEWHERE", "note deleted by another session", note_id)
        return True

    async def summarize(self) -> Optional[Summary]:
        if self._closed or self._summarizing:
            return None
        if self._note_id is None or self._draft is None:
            return None
        if self._state in ("loading", "deleted"):
            return None
        content = self._draft.content
        if not content.strip():
            return None

        note_id = self._note_id
        self._summarizing = True
        try:
            text = await self._summarizer.summarize(content)
            summary = await self._summary_store.create(note_id, text)
        except Exception as exc:
            if note_id == self._note_id:
                self._record_error("SUMMARIZE_FAILED", "SUMMARIZE_FAILED", exc, note_id)
            else:
                audit.log_event(self, "SUMMARIZE_FAILED", "STALE", type(exc).__name__, note_id)
            return None
        finally:
            self._summarizing = False

        if note_id == self._note_id and self._state != "deleted":
            self._summaries.insert(0, summary)
            if self._last_error_code == "SUMMARIZE_FAILED":
                self._clear_error()
        audit.log_event(
            self,
            "SUMMARY_CREATED",
            "SUMMARY_OK",
            f"provider={self._summarizer.name()} chars={len(summary.content)}",
            note_id,
        )
        return summary

    async def delete_summary(self, summary_id: str) -> bool:
        if self._closed or not any(item.id == summary_id for item in self._summaries):
            return False
        note_id = self._note_id
        try:
            await self._summary_store.delete(summary_id)
        except Exception as exc:
            self._record_error("DELETE_FAILED", "DELETE_FAILED", exc, note_id)
            return False
        self._summaries = [item for item in self._summaries if item.id != summary_id]
        audit.log_event(self, "SUMMARY_DELETED", "SUMMARY_DELETE_OK", f"summary={summary_id}", note_id)
        return True

    async def close_session(self) -> bool:
        """
        Tear the session down after one guaranteed flush attempt.

        A failed final flush is reported through the return value and the audit
        trail only; it is not retried and the draft is discarded with the session.
        """
        if self._closed:
            return True
        ok = True
        if self._note_id is not None and self._state != "deleted":
            ok = await self.flush()
            if not ok:
                audit.log_event(self, "FLUSH_FAILED", "CLOSE_FLUSH_FAILED", "final flush failed", self._note_id)
        self._autosave.dispose()
        self._closed = True
        audit.log_event(self, "SESSION_CLOSED", "CLOSE", f"flushed={ok}", self._note_id)
        return ok

    def snapshot(self) -> EditorSnapshot:
        draft = None
        if self._draft is not None:
            draft = DraftSnapshot(
                title=self._draft.title,
                content=self._draft.content,
                dirty=self._draft.dirty,
            )
        return EditorSnapshot(
            session_id=self.session_id,
            owner_id=self.owner_id,
            state=self._state,
            note_id=self._note_id,
            draft=draft,
            persisted_title=self._persisted.title if self._persisted is not None else None,
            save_pending=self._autosave.pending,
            summarizing=self._summarizing,
            summaries=list(self._summaries),
            error=self._error,
            last_error_code=self._last_error_code,
        )

    def _flush_outgoing(self) -> None:
        # Fire-and-forget: the switch never waits on the network, so the write
        # captures the outgoing note id and text now.
        if self._note_id is None or self._draft is None or self._state == "deleted":
            return
        had_pending = self._autosave.cancel()
        if not (had_pending or (self._draft.dirty and self._idle())):
            return
        if self._matches_last_sent(self._note_id, self._draft.title, self._draft.content):
            return
        task = asyncio.get_running_loop().create_task(
            self._write(
                self._note_id,
                self._effective_title(self._draft.title),
                self._draft.content,
            )
        )
        note_tasks = self._flush_tasks.setdefault(self._note_id, set())
        note_tasks.add(task)
        task.add_done_callback(lambda done, key=self._note_id: self._forget_flush_task(key, done))

    async def _save(self, note_id: str) -> bool:
        if note_id != self._note_id or self._draft is None or self._persisted is None:
            return True
        if self._state == "deleted":
            return True

        if self._matches_last_sent(note_id, self._draft.title, self._draft.content):
            self._draft.dirty = not self._matches_persisted(self._draft.title, self._draft.content)
            if self._saves_in_flight == 0 and not self._holds_error():
                if self._last_error_code == "SAVE_FAILED":
                    self._clear_error()
                if self._state in ("dirty", "error"):
                    self._state = "ready"
            audit.log_event(self, "SAVE_SKIPPED", "NO_CHANGES", "draft equals last sent note", note_id)
            return True
        return await self._write(
            note_id,
            self._effective_title(self._draft.title),
            self._draft.content,
        )

    async def _write(self, note_id: str, title: str, content: str) -> bool:
        self._save_seq += 1
        seq = self._save_seq
        self._saves_in_flight += 1
        self._issued[note_id] = (seq, title, content)
        if note_id == self._note_id and self._state not in ("loading", "deleted") and not self._holds_error():
            self._state = "saving"
        try:
            saved = await self._note_store.update(note_id, title, content)
        except Exception as exc:
            self._saves_in_flight -= 1
            self._resolve_issued(note_id, seq)
            if note_id == self._note_id and self._state not in ("loading", "deleted"):
                self._fail("SAVE_FAILED", "SAVE_FAILED", exc, note_id)
            else:
                # The user already left this note; the edit is lost.
                logger.warning(
                    "editor_flush_lost session_id=%s note_id=%s error=%s",
                    self.session_id,
                    note_id,
                    exc,
                )
                audit.log_event(self, "FLUSH_FAILED", "STALE_SAVE_FAILED", type(exc).__name__, note_id)
            return False
        self._saves_in_flight -= 1
        self._resolve_issued(note_id, seq)

        self._notify_updated(note_id, saved.title)
        audit.log_event(self, "NOTE_SAVED", "SAVE_OK", f"seq={seq}", note_id)
        if note_id != self._note_id or self._state == "deleted":
            return True
        # An older response arriving after a newer one confirms nothing new.
        fresh = seq > self._confirmed_seq
        if fresh:
            self._confirmed_seq = seq
            self._persisted = saved
            if self._draft is not None:
                self._draft.dirty = not self._matches_persisted(self._draft.title, self._draft.content)
        if self._state == "loading":
            return True
        if self._state == "error" and (not fresh or self._holds_error()):
            return True
        if fresh and self._last_error_code == "SAVE_FAILED":
            self._clear_error()
        if (
            fresh
            and not self._closed
            and self._draft is not None
            and self._draft.dirty
            and not self._autosave.pending
            and note_id not in self._issued
        ):
            # The draft moved on while this write was in flight; send it next.
            self._autosave(note_id)
        if self._saves_in_flight > 0:
            self._state = "saving"
        elif self._autosave.pending or (self._draft is not None and self._draft.dirty):
            self._state = "dirty"
        else:
            self._state = "ready"
        return True

    async def _drain(self) -> None:
        await self._autosave.drain()
        while self._flush_tasks:
            pending = [task for tasks in self._flush_tasks.values() for task in tasks]
            await asyncio.gather(*pending, return_exceptions=True)

    def _forget_flush_task(self, note_id: str, task: asyncio.Task[bool]) -> None:
        tasks = self._flush_tasks.get(note_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._flush_tasks[note_id]

    def _has_outstanding_write(self, note_id: str) -> bool:
        if note_id in self._issued or note_id in self._flush_tasks:
            return True
        # A fired autosave task may not have started its write yet.
        return note_id == self._note_id and self._autosave.in_flight > 0

    def _idle(self) -> bool:
        return self._saves_in_flight == 0 and not self._flush_tasks

    def _holds_error(self) -> bool:
        # Only a later successful save clears a save failure; other errors stay.
        return self._state == "error" and self._last_error_code != "SAVE_FAILED"

    def _effective_title(self, title: str) -> str:
        return title if title.strip() else self._default_title

    def _resolve_issued(self, note_id: str, seq: int) -> None:
        latest = self._issued.get(note_id)
        if latest is not None and latest[0] == seq:
            del self._issued[note_id]

    def _matches_last_sent(self, note_id: str, title: str, content: str) -> bool:
        # Compare against the newest write still in flight, else the confirmed note.
        latest = self._issued.get(note_id)
        if latest is not None:
            return (self._effective_title(title), content) == (latest[1], latest[2])
        return self._matches_persisted(title, content)

    def _matches_persisted(self, title: str, content: str) -> bool:
        if self._persisted is None:
            return False
        return (
            self._effective_title(title) == self._persisted.title
            and content == self._persisted.content
        )

    def _fail(
        self,
        code: EditorErrorCode,
        event_type: AuditEventType,
        exc: BaseException,
        note_id: Optional[str],
    ) -> None:
        self._state = "error"
        self._record_error(code, event_type, exc, note_id)

    def _record_error(
        self,
        code: EditorErrorCode,
        event_type: AuditEventType,
        exc: BaseException,
        note_id: Optional[str],
    ) -> None:
        self._error = GENERIC_ERROR_MESSAGE
        self._last_error_code = code
        logger.warning(
            "editor_failure session_id=%s code=%s note_id=%s error=%s",
            self.session_id,
            code,
            note_id or "-",
            exc,
        )
        audit.log_event(self, event_type, code, type(exc).__name__, note_id)

    def _clear_error(self) -> None:
        self._error = None
        self._last_error_code = None

    def _notify_updated(self, note_id: str, title: str) -> None:
        if self._on_note_updated is None:
            return
        try:
            self._on_note_updated(note_id, title)
        except Exception:
            logger.exception("on_note_updated callback failed note_id=%s", note_id)

    def _notify_deleted(self, note_id: str) -> None:
        if self._on_note_deleted is None:
            return
        try:
            self._on_note_deleted(note_id)
        except Exception:
            logger.exception("on_note_deleted callback failed note_id=%s", note_id)
