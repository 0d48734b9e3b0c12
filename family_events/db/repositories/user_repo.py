"""User repository: the people who own mailboxes and OAuth credentials."""

from typing import Optional

from sqlalchemy import func, select

from family_events.db import get_session
from family_events.db.models.user import User

ROLE_ADMIN = "admin"
ROLE_USER = "user"


def create_user(email: str, name: str = "", role: str = ROLE_USER, active: bool = True) -> User:
    with get_session() as session:
        row = User(email=email.strip().lower(), name=name, role=role, active=active)
        session.add(row)
        session.flush()
        session.refresh(row)
        session.expunge(row)
        return row


def get_user(user_id: int) -> Optional[User]:
    with get_session() as session:
        row = session.get(User, user_id)
        if row is not None:
            session.expunge(row)
        return row


def get_user_by_email(email: str) -> Optional[User]:
    """Case-insensitive lookup by email address."""
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    with get_session() as session:
        row = session.scalars(select(User).where(func.lower(User.email) == normalized)).first()
        if row is not None:
            session.expunge(row)
        return row


def list_users(active_only: bool = False) -> list[User]:
    with get_session() as session:
        q = select(User).order_by(User.id.asc())
        if active_only:
            q = q.where(User.active.is_(True))
        rows = list(session.scalars(q).all())
        for row in rows:
            session.expunge(row)
        return rows
