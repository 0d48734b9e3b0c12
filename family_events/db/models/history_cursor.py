"""ORM model for the per-mailbox Gmail history watermark."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from family_events.db.base import Base, TimestampMixin


class HistoryCursor(Base, TimestampMixin):
    __tablename__ = "history_cursors"

    mailbox: Mapped[str] = mapped_column(String(320), primary_key=True)
    history_id: Mapped[str] = mapped_column(String(64), nullable=False)
