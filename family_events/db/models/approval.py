"""ORM model for the approval ledger: one row per outbound proposal or payment-link send."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from family_events.db.base import Base, TimestampMixin


class ApprovalRequest(Base, TimestampMixin):
    """Outbound message awaiting a reply. status == "sent" means open."""

    __tablename__ = "approval_requests"
    __table_args__ = (
        # At most one open request per (event, channel)
        Index(
            "uq_approval_requests_open_event_channel",
            "event_id",
            "channel",
            unique=True,
            sqlite_where=text("status = 'sent'"),
            postgresql_where=text("status = 'sent'"),
        ),
        Index("ix_approval_requests_recipient_status", "recipient", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="proposal")
    channel: Mapped[str] = mapped_column(String(8), nullable=False)
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)

    # Correlation key: our RFC 5322 Message-ID for email, carrier SID for SMS
    message_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True, index=True)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    thread_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="sent", index=True)
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    response_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_confidence: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    reminded_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
