"""Event repository: insert, lookup, listing and compare-and-set status updates."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update

from family_events.db import get_session
from family_events.db.base import utcnow
from family_events.db.models.event import Event


def create_event(title: str, starts_at: datetime, **fields: Any) -> Event:
    """Insert a new event (status defaults to discovered)."""
    with get_session() as session:
        row = Event(title=title, starts_at=starts_at, **fields)
        session.add(row)
        session.flush()
        session.refresh(row)
        session.expunge(row)
        return row


def get_event(event_id: int) -> Optional[Event]:
    with get_session() as session:
        row = session.get(Event, event_id)
        if row is not None:
            session.expunge(row)
        return row


def list_events(status: Optional[str] = None, limit: int = 100) -> list[Event]:
    """Return events ordered by start time, optionally filtered by status."""
    with get_session() as session:
        q = select(Event).order_by(Event.starts_at.asc()).limit(limit)
        if status is not None:
            q = q.where(Event.status == status)
        rows = list(session.scalars(q).all())
        for row in rows:
            session.expunge(row)
        return rows


def compare_and_set_status(event_id: int, expected: str, new_status: str) -> bool:
    """Set status to new_status only if it is currently expected. Returns True if the row changed."""
    now = utcnow()
    with get_session() as session:
        result = session.execute(
            update(Event)
            .where(Event.id == event_id)
            .where(Event.status == expected)
            .values(status=new_status, status_changed_at=now, updated_at=now)
        )
        return result.rowcount == 1
