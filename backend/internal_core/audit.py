from __future__ import annotations

import datetime as _dt
import logging
from typing import List, Optional, Protocol

from .contracts import AuditEvent, AuditEventType

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    session_id: str

    def append_audit_event(self, event: AuditEvent) -> None: ...


def _ts_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sanitize_detail(detail: str) -> str:
    # IMPORTANT: Never include note title / content / summary text in detail.
    detail = (detail or "").replace("\n", " ").strip()
    if len(detail) > 200:
        detail = detail[:200] + "…"
    return detail


def log_event(
    sink: AuditSink,
    event_type: AuditEventType,
    code: str,
    detail: str,
    note_id: Optional[str] = None,
) -> AuditEvent:
    event = AuditEvent(
        ts_iso=_ts_iso(),
        session_id=sink.session_id,
        type=event_type,
        code=code,
        detail=_sanitize_detail(detail),
        note_id=note_id,
    )
    sink.append_audit_event(event)
    logger.info(
        "editor_audit session_id=%s type=%s code=%s note_id=%s detail=%s",
        event.session_id,
        event.type,
        event.code,
        event.note_id or "-",
        event.detail,
    )
    return event


def events_of_type(events: List[AuditEvent], event_type: AuditEventType) -> List[AuditEvent]:
    return [item for item in events if item.type == event_type]
