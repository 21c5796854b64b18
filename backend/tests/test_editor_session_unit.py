import asyncio
from typing import Optional

import pytest

from backend.internal_core.audit import events_of_type
from backend.internal_core.contracts import GENERIC_ERROR_MESSAGE, Note
from backend.internal_core.note_store import InMemoryNoteStore, InMemorySummaryStore, NoteNotFoundError
from backend.note.editor import DEFAULT_AUTOSAVE_DELAY_MS, EditorSession, SessionContext
from backend.summary import MockSummarizer, Summarizer, SummarizerError

OWNER = "user-1"
DELAY_MS = 20
SETTLE = 0.1


class RecordingNoteStore(InMemoryNoteStore):
    def __init__(self) -> None:
        super().__init__()
        self.updates: list[tuple[str, str, str]] = []
        self.fail_get: set[str] = set()
        self.fail_update = False
        self.fail_delete = False
        self.get_gates: dict[str, asyncio.Event] = {}
        self.update_gate: Optional[asyncio.Event] = None
        self.response_delays: list[float] = []

    async def get(self, note_id: str) -> Note:
        gate = self.get_gates.get(note_id)
        if gate is not None:
            await gate.wait()
        if note_id in self.fail_get:
            raise ConnectionError("fetch failed")
        return await super().get(note_id)

    async def update(self, note_id: str, title: str, content: str) -> Note:
        if self.update_gate is not None:
            await self.update_gate.wait()
        if self.fail_update:
            raise ConnectionError("update failed")
        self.updates.append((note_id, title, content))
        saved = await super().update(note_id, title, content)
        if self.response_delays:
            await asyncio.sleep(self.response_delays.pop(0))
        return saved

    async def delete(self, note_id: str) -> None:
        if self.fail_delete:
            raise ConnectionError("delete failed")
        await super().delete(note_id)


class GatedSummarizer(Summarizer):
    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.calls = 0

    async def summarize(self, text: str) -> str:
        self.calls += 1
        await self.gate.wait()
        return "- gated"

    def name(self) -> str:
        return "gated"


class BrokenSummarizer(Summarizer):
    async def summarize(self, text: str) -> str:
        raise SummarizerError("GENERATION_FAILED", "upstream unavailable", self.name())

    def name(self) -> str:
        return "broken"


class CountingSummaryStore(InMemorySummaryStore):
    def __init__(self) -> None:
        super().__init__()
        self.creates = 0

    async def create(self, note_id: str, content: str):
        self.creates += 1
        return await super().create(note_id, content)


def _session(
    store: RecordingNoteStore,
    *,
    summaries: Optional[InMemorySummaryStore] = None,
    summarizer: Optional[Summarizer] = None,
    updated: Optional[list] = None,
    deleted: Optional[list] = None,
    owner_id: str = OWNER,
) -> EditorSession:
    return EditorSession(
        SessionContext(owner_id=owner_id, session_id="sess-1"),
        store,
        summaries or InMemorySummaryStore(),
        summarizer or MockSummarizer(),
        autosave_delay_ms=DELAY_MS,
        on_note_updated=(lambda note_id, title: updated.append((note_id, title))) if updated is not None else None,
        on_note_deleted=deleted.append if deleted is not None else None,
    )


def test_default_autosave_delay() -> None:
    assert DEFAULT_AUTOSAVE_DELAY_MS == 750


@pytest.mark.anyio
async def test_new_session_starts_empty_and_rejects_edits() -> None:
    session = _session(RecordingNoteStore())

    assert session.state == "empty"
    assert session.edit(content="x") is False
    assert await session.delete_note() is False
    assert await session.summarize() is None


@pytest.mark.anyio
async def test_single_edit_is_saved_once_after_quiet_period() -> None:
    store = RecordingNoteStore()
    note = await store.create("Groceries", "", OWNER)
    session = _session(store)
    assert await session.select_note(note.id) is True

    assert session.edit(content="Hello") is True
    assert session.state == "dirty"
    assert session.draft.content == "Hello"
    assert store.updates == []

    await asyncio.sleep(SETTLE)
    assert store.updates == [(note.id, "Groceries", "Hello")]
    assert session.state == "ready"
    assert session.draft.dirty is False
    assert session.persisted.content == "Hello"


@pytest.mark.anyio
async def test_rapid_edits_collapse_into_one_save() -> None:
    store = RecordingNoteStore()
    note = await store.create("Draft", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    for text in ("H", "He", "Hel"):
        session.edit(content=text)
        await asyncio.sleep(0.005)

    await asyncio.sleep(SETTLE)
    assert store.updates == [(note.id, "Draft", "Hel")]


@pytest.mark.anyio
async def test_unchanged_draft_skips_the_store() -> None:
    store = RecordingNoteStore()
    note = await store.create("Same", "body", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    session.edit(content="body!")
    session.edit(content="body")
    await asyncio.sleep(SETTLE)

    assert store.updates == []
    assert session.state == "ready"
    assert events_of_type(session.audit_events, "SAVE_SKIPPED")


@pytest.mark.anyio
async def test_blank_title_is_saved_as_default_and_reported() -> None:
    store = RecordingNoteStore()
    note = await store.create("Old title", "text", OWNER)
    updated: list[tuple[str, str]] = []
    session = _session(store, updated=updated)
    await session.select_note(note.id)

    session.edit(title="   ")
    await asyncio.sleep(SETTLE)

    assert store.updates == [(note.id, "New Note", "text")]
    assert updated == [(note.id, "New Note")]
    assert session.draft.title == "   "
    assert session.draft.dirty is False


@pytest.mark.anyio
async def test_switching_notes_flushes_outgoing_draft_to_its_own_note() -> None:
    store = RecordingNoteStore()
    first = await store.create("A", "a0", OWNER)
    second = await store.create("B", "b0", OWNER)
    updated: list[tuple[str, str]] = []
    session = _session(store, updated=updated)
    await session.select_note(first.id)

    session.edit(content="a1")
    await session.select_note(second.id)
    await session.flush()

    assert store.updates == [(first.id, "A", "a1")]
    assert updated == [(first.id, "A")]
    assert session.note_id == second.id
    assert session.draft.content == "b0"
    assert session.state == "ready"
    assert (await store.get(first.id)).content == "a1"


@pytest.mark.anyio
async def test_stale_fetch_response_is_ignored() -> None:
    store = RecordingNoteStore()
    first = await store.create("A", "a0", OWNER)
    second = await store.create("B", "b0", OWNER)
    gate = asyncio.Event()
    store.get_gates[first.id] = gate
    session = _session(store)

    slow_select = asyncio.create_task(session.select_note(first.id))
    await asyncio.sleep(0)
    assert await session.select_note(second.id) is True

    gate.set()
    assert await slow_select is False
    assert session.note_id == second.id
    assert session.draft.title == "B"
    assert session.state == "ready"


@pytest.mark.anyio
async def test_stale_save_response_does_not_touch_newly_selected_note() -> None:
    store = RecordingNoteStore()
    first = await store.create("A", "a0", OWNER)
    second = await store.create("B", "b0", OWNER)
    updated: list[tuple[str, str]] = []
    session = _session(store, updated=updated)
    await session.select_note(first.id)

    store.update_gate = asyncio.Event()
    session.edit(content="a1")
    await asyncio.sleep(SETTLE)
    assert session.state == "saving"

    await session.select_note(second.id)
    store.update_gate.set()
    await session.flush()

    assert store.updates == [(first.id, "A", "a1")]
    assert updated == [(first.id, "A")]
    assert session.note_id == second.id
    assert session.draft.content == "b0"
    assert session.persisted.id == second.id
    assert session.state == "ready"


@pytest.mark.anyio
async def test_out_of_order_save_responses_keep_newest_content() -> None:
    store = RecordingNoteStore()
    note = await store.create("Log", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    store.response_delays = [0.15, 0.0]
    session.edit(content="a")
    await asyncio.sleep(0.05)
    session.edit(content="ab")
    await asyncio.sleep(0.05)
    await session.flush()

    assert [item[2] for item in store.updates] == ["a", "ab"]
    assert session.persisted.content == "ab"
    assert session.draft.dirty is False
    assert session.state == "ready"


@pytest.mark.anyio
async def test_reverting_while_save_in_flight_sends_the_reverted_text() -> None:
    store = RecordingNoteStore()
    note = await store.create("T", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    store.update_gate = asyncio.Event()
    session.edit(content="a")
    await asyncio.sleep(SETTLE)
    assert session.state == "saving"
    session.edit(content="")
    await asyncio.sleep(SETTLE)

    store.update_gate.set()
    assert await session.flush() is True

    assert store.updates == [(note.id, "T", "a"), (note.id, "T", "")]
    assert (await store.get(note.id)).content == ""
    assert session.draft.dirty is False
    assert session.save_pending is False
    assert session.state == "ready"


@pytest.mark.anyio
async def test_reselecting_same_note_waits_for_outgoing_save() -> None:
    store = RecordingNoteStore()
    note = await store.create("A", "old", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    session.edit(content="new text")
    assert await session.select_note(note.id) is True

    assert session.draft.content == "new text"
    assert session.draft.dirty is False
    assert session.state == "ready"
    assert store.updates == [(note.id, "A", "new text")]
    await asyncio.sleep(SETTLE)
    assert store.updates == [(note.id, "A", "new text")]


@pytest.mark.anyio
async def test_switching_back_loads_text_saved_on_the_way_out() -> None:
    store = RecordingNoteStore()
    first = await store.create("A", "a0", OWNER)
    second = await store.create("B", "b0", OWNER)
    session = _session(store)
    await session.select_note(first.id)

    store.update_gate = asyncio.Event()
    session.edit(content="a1")
    assert await session.select_note(second.id) is True
    back = asyncio.create_task(session.select_note(first.id))
    await asyncio.sleep(0.01)
    assert session.state == "loading"

    store.update_gate.set()
    assert await back is True
    assert session.note_id == first.id
    assert session.draft.content == "a1"
    assert session.state == "ready"
    assert store.updates == [(first.id, "A", "a1")]


@pytest.mark.anyio
async def test_note_deleted_elsewhere_drops_binding_and_pending_save() -> None:
    store = RecordingNoteStore()
    note = await store.create("Shared", "", OWNER)
    other = await store.create("Other", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    session.edit(content="typed in second tab")
    assert session.note_deleted_elsewhere(other.id) is False
    await store.delete(note.id)
    assert session.note_deleted_elsewhere(note.id) is True
    await asyncio.sleep(SETTLE)

    assert store.updates == []
    assert session.state == "deleted"
    assert session.note_id is None
    assert session.draft is None
    assert session.last_error_code is None
    assert session.edit(content="again") is False
    assert session.note_deleted_elsewhere(note.id) is False
    assert [event.code for event in events_of_type(session.audit_events, "NOTE_DELETED")] == ["DELETED_ELSEWHERE"]


@pytest.mark.anyio
async def test_delete_cancels_pending_save() -> None:
    store = RecordingNoteStore()
    note = await store.create("Doomed", "", OWNER)
    deleted: list[str] = []
    session = _session(store, deleted=deleted)
    await session.select_note(note.id)

    session.edit(content="typed before delete")
    assert await session.delete_note() is True
    await asyncio.sleep(SETTLE)

    assert store.updates == []
    assert deleted == [note.id]
    assert session.state == "deleted"
    assert session.draft is None
    assert session.edit(content="again") is False
    with pytest.raises(NoteNotFoundError):
        await store.get(note.id)


@pytest.mark.anyio
async def test_delete_failure_keeps_note_and_still_saves_draft() -> None:
    store = RecordingNoteStore()
    note = await store.create("Keep", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)
    store.fail_delete = True

    session.edit(content="still here")
    assert await session.delete_note() is False
    assert session.state == "error"
    assert session.last_error_code == "DELETE_FAILED"
    assert session.error == GENERIC_ERROR_MESSAGE

    await asyncio.sleep(SETTLE)
    assert store.updates == [(note.id, "Keep", "still here")]
    assert session.state == "error"
    assert session.last_error_code == "DELETE_FAILED"


@pytest.mark.anyio
async def test_fetch_failure_keeps_previous_draft_and_binding() -> None:
    store = RecordingNoteStore()
    first = await store.create("A", "a0", OWNER)
    second = await store.create("B", "b0", OWNER)
    session = _session(store)
    await session.select_note(first.id)
    store.fail_get.add(second.id)

    session.edit(content="a1")
    assert await session.select_note(second.id) is False
    await session.flush()

    assert session.state == "error"
    assert session.last_error_code == "FETCH_FAILED"
    assert session.note_id == first.id
    assert session.draft.content == "a1"
    assert store.updates == [(first.id, "A", "a1")]

    assert session.edit(content="a2") is True
    assert session.error is None
    await asyncio.sleep(SETTLE)
    assert store.updates[-1] == (first.id, "A", "a2")


@pytest.mark.anyio
async def test_note_owned_by_someone_else_is_a_fetch_failure() -> None:
    store = RecordingNoteStore()
    foreign = await store.create("Private", "secret", "user-2")
    session = _session(store)

    assert await session.select_note(foreign.id) is False
    assert session.state == "error"
    assert session.last_error_code == "FETCH_FAILED"
    assert session.draft is None


@pytest.mark.anyio
async def test_save_failure_then_success_clears_error() -> None:
    store = RecordingNoteStore()
    note = await store.create("Flaky", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)
    store.fail_update = True

    session.edit(content="one")
    await asyncio.sleep(SETTLE)
    assert session.state == "error"
    assert session.last_error_code == "SAVE_FAILED"
    assert session.draft.content == "one"

    store.fail_update = False
    session.edit(content="one two")
    await asyncio.sleep(SETTLE)
    assert session.state == "ready"
    assert session.error is None
    assert store.updates == [(note.id, "Flaky", "one two")]


@pytest.mark.anyio
async def test_summarize_is_not_reentrant() -> None:
    store = RecordingNoteStore()
    note = await store.create("Notes", "First point. Second point.", OWNER)
    summarizer = GatedSummarizer()
    summaries = CountingSummaryStore()
    session = _session(store, summaries=summaries, summarizer=summarizer)
    await session.select_note(note.id)

    first = asyncio.create_task(session.summarize())
    await asyncio.sleep(0)
    assert session.summarizing is True
    assert await session.summarize() is None

    summarizer.gate.set()
    created = await first

    assert created is not None
    assert summarizer.calls == 1
    assert summaries.creates == 1
    assert session.summaries == [created]
    assert session.summarizing is False


@pytest.mark.anyio
async def test_summaries_are_listed_newest_first() -> None:
    store = RecordingNoteStore()
    note = await store.create("Notes", "One. Two.", OWNER)
    summaries = InMemorySummaryStore()
    older = await summaries.create(note.id, "- older")
    session = _session(store, summaries=summaries)
    await session.select_note(note.id)
    assert session.summaries == [older]

    newer = await session.summarize()

    assert session.summaries == [newer, older]


@pytest.mark.anyio
async def test_summarize_failure_sets_generic_error() -> None:
    store = RecordingNoteStore()
    note = await store.create("Notes", "Something to summarize.", OWNER)
    session = _session(store, summarizer=BrokenSummarizer())
    await session.select_note(note.id)

    assert await session.summarize() is None

    assert session.last_error_code == "SUMMARIZE_FAILED"
    assert session.error == GENERIC_ERROR_MESSAGE
    assert session.state == "ready"
    assert session.summarizing is False
    assert session.summaries == []


@pytest.mark.anyio
async def test_summarize_skips_blank_content() -> None:
    store = RecordingNoteStore()
    note = await store.create("Empty", "   ", OWNER)
    summarizer = MockSummarizer()
    session = _session(store, summarizer=summarizer)
    await session.select_note(note.id)

    assert await session.summarize() is None
    assert summarizer.calls == 0


@pytest.mark.anyio
async def test_delete_summary_removes_it_from_list() -> None:
    store = RecordingNoteStore()
    note = await store.create("Notes", "Alpha. Beta.", OWNER)
    summaries = InMemorySummaryStore()
    session = _session(store, summaries=summaries)
    await session.select_note(note.id)
    created = await session.summarize()

    assert await session.delete_summary("missing") is False
    assert await session.delete_summary(created.id) is True
    assert session.summaries == []
    assert await summaries.list_for_note(note.id) == []


@pytest.mark.anyio
async def test_close_session_flushes_pending_edit() -> None:
    store = RecordingNoteStore()
    note = await store.create("Close", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    session.edit(content="last words")
    assert await session.close_session() is True

    assert store.updates == [(note.id, "Close", "last words")]
    assert session.closed is True
    assert session.edit(content="after close") is False
    assert events_of_type(session.audit_events, "SESSION_CLOSED")


@pytest.mark.anyio
async def test_close_session_reports_failed_final_flush() -> None:
    store = RecordingNoteStore()
    note = await store.create("Close", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)
    store.fail_update = True

    session.edit(content="lost")
    assert await session.close_session() is False
    assert events_of_type(session.audit_events, "FLUSH_FAILED")

    await asyncio.sleep(SETTLE)
    assert store.updates == []


@pytest.mark.anyio
async def test_audit_trail_never_contains_note_text() -> None:
    store = RecordingNoteStore()
    note = await store.create("Diary", "", OWNER)
    session = _session(store)
    await session.select_note(note.id)

    session.edit(title="Top secret title", content="secret content here.")
    await session.flush()
    await session.summarize()
    await session.close_session()

    assert session.audit_events
    for event in session.audit_events:
        assert "secret" not in event.detail


@pytest.mark.anyio
async def test_snapshot_reflects_session_state() -> None:
    store = RecordingNoteStore()
    note = await store.create("Snap", "body", OWNER)
    session = _session(store)
    await session.select_note(note.id)
    session.edit(content="body 2")

    snap = session.snapshot()

    assert snap.session_id == "sess-1"
    assert snap.owner_id == OWNER
    assert snap.state == "dirty"
    assert snap.note_id == note.id
    assert snap.draft.content == "body 2"
    assert snap.draft.dirty is True
    assert snap.persisted_title == "Snap"
    assert snap.save_pending is True
    await session.close_session()
