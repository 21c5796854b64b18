from __future__ import annotations

"""
API surface for the notes backend.

Design intent:
- Keep API orchestration thin and typed.
- Delegate editing, autosave and summaries to `backend.note` / `backend.summary`.
- Stores, summarizer and timings can be swapped through `app.state` for tests.
"""

import logging
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from backend.internal_core.config import AppConfig, load_config
from backend.internal_core.contracts import EditorSnapshot, Note, NoteListItem, Summary
from backend.internal_core.note_store import (
    InMemoryNoteStore,
    InMemorySummaryStore,
    NoteNotFoundError,
    NoteStore,
    SummaryStore,
)
from backend.internal_core.session_store import InMemorySessionStore
from backend.note.editor import EditorSession, SessionContext
from backend.note.list_view import NoteListRegistry, NoteListView
from backend.summary import FailingSummarizer, Summarizer, SummarizerError, build_summarizer


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = ""
    content: str = ""


class NoteListResponse(BaseModel):
    notes: list[Note] = Field(default_factory=list)


class NoteDeleteResponse(BaseModel):
    note_id: str
    deleted: bool


class NoteListViewResponse(BaseModel):
    owner_id: str
    items: list[NoteListItem] = Field(default_factory=list)


class EditorSelectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note_id: str = Field(min_length=1, max_length=128)


class EditorEditRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    content: str | None = None


class EditorSummarizeResponse(BaseModel):
    summary: Summary | None = None
    snapshot: EditorSnapshot


class EditorCloseResponse(BaseModel):
    session_id: str
    closed: bool
    flushed: bool


class SummarizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(min_length=1)


class SummarizeResponse(BaseModel):
    summary: str


cfg = load_config()
logging.getLogger("backend").setLevel(cfg.NOTES_LOG_LEVEL)

app = FastAPI(title="notes backend service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> AppConfig:
    configured = getattr(app.state, "config", None)
    if isinstance(configured, AppConfig):
        return configured
    return cfg


def _get_note_store() -> NoteStore:
    existing = getattr(app.state, "note_store", None)
    if isinstance(existing, NoteStore):
        return existing
    created = InMemoryNoteStore()
    setattr(app.state, "note_store", created)
    return created


def _get_summary_store() -> SummaryStore:
    existing = getattr(app.state, "summary_store", None)
    if isinstance(existing, SummaryStore):
        return existing
    created = InMemorySummaryStore()
    setattr(app.state, "summary_store", created)
    return created


def _get_session_store() -> InMemorySessionStore:
    existing = getattr(app.state, "editor_sessions", None)
    if isinstance(existing, InMemorySessionStore):
        return existing
    created = InMemorySessionStore(ttl_seconds=_get_config().NOTES_SESSION_TTL_SECONDS)
    setattr(app.state, "editor_sessions", created)
    return created


def _get_list_registry() -> NoteListRegistry:
    existing = getattr(app.state, "note_list_views", None)
    if isinstance(existing, NoteListRegistry):
        return existing
    created = NoteListRegistry()
    setattr(app.state, "note_list_views", created)
    return created


def _get_summarizer() -> Summarizer:
    injected = getattr(app.state, "summarizer", None)
    if isinstance(injected, Summarizer):
        return injected

    config = _get_config()
    try:
        created = build_summarizer(config)
    except SummarizerError as exc:
        logger.warning(
            "summarizer_unavailable backend=%s code=%s error=%s",
            config.NOTES_SUMMARY_BACKEND,
            exc.code,
            exc.message,
        )
        created = FailingSummarizer(config.NOTES_SUMMARY_BACKEND, exc.code, exc.message)
    except ValueError as exc:
        logger.warning("summarizer_unavailable backend=%s error=%s", config.NOTES_SUMMARY_BACKEND, exc)
        created = FailingSummarizer(config.NOTES_SUMMARY_BACKEND, "UNSUPPORTED_BACKEND", str(exc))
    setattr(app.state, "summarizer", created)
    return created


def _get_autosave_delay_ms() -> float:
    configured = getattr(app.state, "autosave_delay_ms", None)
    if isinstance(configured, (int, float)) and not isinstance(configured, bool):
        return max(0.0, float(configured))
    return float(_get_config().NOTES_AUTOSAVE_DELAY_MS)


def _require_owner(x_user_id: str | None) -> str:
    owner_id = str(x_user_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return owner_id


async def _get_owned_note(note_id: str, owner_id: str) -> Note:
    try:
        note = await _get_note_store().get(note_id)
    except NoteNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Note not found: {note_id}") from exc
    if note.owner != owner_id:
        raise HTTPException(status_code=404, detail=f"Note not found: {note_id}")
    return note


def _get_owned_session(session_id: str, owner_id: str) -> EditorSession:
    try:
        return _get_session_store().get_session(session_id, owner_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Editor session not found: {session_id}") from exc


def _clear_deleted_note(owner_id: str, note_id: str) -> int:
    cleared = 0
    for session in _get_session_store().sessions_for_owner(owner_id):
        if session.note_deleted_elsewhere(note_id):
            cleared += 1
    if cleared:
        logger.info("editor_sessions_cleared owner_id=%s note_id=%s count=%d", owner_id, note_id, cleared)
    return cleared


async def _load_list_view(owner_id: str) -> NoteListView:
    view = _get_list_registry().for_owner(owner_id)
    if not view.loaded:
        view.replace_all(await _get_note_store().list_for_owner(owner_id))
    return view


@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {
        "status": "ok",
        "summary_backend": _get_summarizer().name(),
        "editor_sessions": len(_get_session_store()),
    }


@app.get("/notes", response_model=NoteListResponse)
async def notes_list(x_user_id: str | None = Header(default=None)) -> NoteListResponse:
    owner_id = _require_owner(x_user_id)
    notes = await _get_note_store().list_for_owner(owner_id)
    _get_list_registry().for_owner(owner_id).replace_all(notes)
    return NoteListResponse(notes=notes)


@app.post("/notes", response_model=Note, status_code=201)
async def notes_create(
    payload: NoteCreateRequest | None = None,
    x_user_id: str | None = Header(default=None),
) -> Note:
    owner_id = _require_owner(x_user_id)
    request = payload or NoteCreateRequest()
    title = request.title if request.title.strip() else _get_config().NOTES_DEFAULT_TITLE
    note = await _get_note_store().create(title, request.content, owner_id)
    view = await _load_list_view(owner_id)
    view.add(note)
    logger.info("note_created owner_id=%s note_id=%s", owner_id, note.id)
    return note


@app.get("/notes/list-view", response_model=NoteListViewResponse)
async def notes_list_view(x_user_id: str | None = Header(default=None)) -> NoteListViewResponse:
    owner_id = _require_owner(x_user_id)
    view = await _load_list_view(owner_id)
    return NoteListViewResponse(owner_id=owner_id, items=view.items())


@app.get("/notes/{note_id}", response_model=Note)
async def notes_get(note_id: str, x_user_id: str | None = Header(default=None)) -> Note:
    owner_id = _require_owner(x_user_id)
    return await _get_owned_note(note_id, owner_id)


@app.delete("/notes/{note_id}", response_model=NoteDeleteResponse)
async def notes_delete(note_id: str, x_user_id: str | None = Header(default=None)) -> NoteDeleteResponse:
    owner_id = _require_owner(x_user_id)
    await _get_owned_note(note_id, owner_id)

    # An editor session showing this note performs the delete so its pending
    # autosave is cancelled and its state is cleared.
    for session in _get_session_store().sessions_for_owner(owner_id):
        if session.note_id == note_id and session.state not in ("deleted", "loading", "empty"):
            deleted = await session.delete_note()
            if not deleted:
                raise HTTPException(status_code=500, detail=f"Failed to delete note: {note_id}")
            _clear_deleted_note(owner_id, note_id)
            return NoteDeleteResponse(note_id=note_id, deleted=True)

    try:
        await _get_note_store().delete(note_id)
    except NoteNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Note not found: {note_id}") from exc
    _get_list_registry().for_owner(owner_id).on_note_deleted(note_id)
    _clear_deleted_note(owner_id, note_id)
    logger.info("note_deleted owner_id=%s note_id=%s", owner_id, note_id)
    return NoteDeleteResponse(note_id=note_id, deleted=True)


@app.post("/editor/sessions", response_model=EditorSnapshot, status_code=201)
async def editor_session_open(x_user_id: str | None = Header(default=None)) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    store = _get_session_store()
    expired = await store.cleanup_expired_sessions()
    if expired:
        logger.info("editor_sessions_expired count=%d", expired)

    view = await _load_list_view(owner_id)
    session = EditorSession(
        SessionContext(owner_id=owner_id, session_id=store.new_session_id()),
        _get_note_store(),
        _get_summary_store(),
        _get_summarizer(),
        autosave_delay_ms=_get_autosave_delay_ms(),
        default_title=_get_config().NOTES_DEFAULT_TITLE,
        on_note_updated=view.on_note_updated,
        on_note_deleted=view.on_note_deleted,
    )
    store.add_session(session)
    return session.snapshot()


@app.get("/editor/sessions/{session_id}", response_model=EditorSnapshot)
async def editor_session_get(session_id: str, x_user_id: str | None = Header(default=None)) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    return _get_owned_session(session_id, owner_id).snapshot()


@app.post("/editor/sessions/{session_id}/select", response_model=EditorSnapshot)
async def editor_session_select(
    session_id: str,
    payload: EditorSelectRequest,
    x_user_id: str | None = Header(default=None),
) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    session = _get_owned_session(session_id, owner_id)
    # A failed fetch is reported through the snapshot's error state.
    await session.select_note(payload.note_id)
    return session.snapshot()


@app.post("/editor/sessions/{session_id}/edit", response_model=EditorSnapshot)
async def editor_session_edit(
    session_id: str,
    payload: EditorEditRequest,
    x_user_id: str | None = Header(default=None),
) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    session = _get_owned_session(session_id, owner_id)
    if payload.title is None and payload.content is None:
        raise HTTPException(status_code=422, detail="Provide title or content.")
    if not session.edit(title=payload.title, content=payload.content):
        raise HTTPException(
            status_code=409,
            detail=f"Editor is not accepting edits in state: {session.state}",
        )
    return session.snapshot()


@app.post("/editor/sessions/{session_id}/flush", response_model=EditorSnapshot)
async def editor_session_flush(session_id: str, x_user_id: str | None = Header(default=None)) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    session = _get_owned_session(session_id, owner_id)
    await session.flush()
    return session.snapshot()


@app.post("/editor/sessions/{session_id}/summarize", response_model=EditorSummarizeResponse)
async def editor_session_summarize(
    session_id: str,
    x_user_id: str | None = Header(default=None),
) -> EditorSummarizeResponse:
    owner_id = _require_owner(x_user_id)
    session = _get_owned_session(session_id, owner_id)
    summary = await session.summarize()
    return EditorSummarizeResponse(summary=summary, snapshot=session.snapshot())


@app.delete("/editor/sessions/{session_id}/summaries/{summary_id}", response_model=EditorSnapshot)
async def editor_session_delete_summary(
    session_id: str,
    summary_id: str,
    x_user_id: str | None = Header(default=None),
) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    session = _get_owned_session(session_id, owner_id)
    if not any(item.id == summary_id for item in session.summaries):
        raise HTTPException(status_code=404, detail=f"Summary not found: {summary_id}")
    await session.delete_summary(summary_id)
    return session.snapshot()


@app.post("/editor/sessions/{session_id}/delete-note", response_model=EditorSnapshot)
async def editor_session_delete_note(
    session_id: str,
    x_user_id: str | None = Header(default=None),
) -> EditorSnapshot:
    owner_id = _require_owner(x_user_id)
    session = _get_owned_session(session_id, owner_id)
    if session.note_id is None or session.state in ("deleted", "empty"):
        raise HTTPException(status_code=409, detail="No note is open in this editor session.")
    note_id = session.note_id
    if await session.delete_note():
        _clear_deleted_note(owner_id, note_id)
    return session.snapshot()


@app.delete("/editor/sessions/{session_id}", response_model=EditorCloseResponse)
async def editor_session_close(session_id: str, x_user_id: str | None = Header(default=None)) -> EditorCloseResponse:
    owner_id = _require_owner(x_user_id)
    try:
        session = _get_session_store().pop_session(session_id, owner_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Editor session not found: {session_id}") from exc
    flushed = await session.close_session()
    return EditorCloseResponse(session_id=session_id, closed=True, flushed=flushed)


@app.post("/summarize", response_model=SummarizeResponse)
async def summarize(payload: SummarizeRequest) -> SummarizeResponse:
    summarizer = _get_summarizer()
    try:
        text = await summarizer.summarize(payload.content)
    except Exception as exc:
        logger.error("summarize_failed provider=%s error=%s", summarizer.name(), exc)
        raise HTTPException(status_code=500, detail="Failed to generate summary") from exc
    return SummarizeResponse(summary=text)
