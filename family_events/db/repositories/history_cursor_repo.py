"""History cursor repository: per-mailbox Gmail history watermark."""

from typing import Optional

from sqlalchemy import select, update

from family_events.db import get_session
from family_events.db.base import utcnow
from family_events.db.models.history_cursor import HistoryCursor


def get_cursor(mailbox: str) -> Optional[str]:
    with get_session() as session:
        row = session.get(HistoryCursor, mailbox.lower())
        return row.history_id if row is not None else None


def _as_int(history_id: str) -> int:
    try:
        return int(history_id)
    except (TypeError, ValueError):
        return -1


def advance_cursor(mailbox: str, history_id: str) -> bool:
    """Move the watermark forward. Never moves it backwards; returns True if stored."""
    key = mailbox.lower()
    new_value = str(history_id)
    with get_session() as session:
        row = session.get(HistoryCursor, key)
        if row is None:
            session.add(HistoryCursor(mailbox=key, history_id=new_value))
            return True
        current = row.history_id
        if _as_int(new_value) <= _as_int(current):
            return False
        result = session.execute(
            update(HistoryCursor)
            .where(HistoryCursor.mailbox == key)
            .where(HistoryCursor.history_id == current)
            .values(history_id=new_value, updated_at=utcnow())
        )
        return result.rowcount == 1
