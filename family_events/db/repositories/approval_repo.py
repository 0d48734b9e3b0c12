"""Approval ledger repository.

The ledger is the single source of truth for "is this event still awaiting a reply".
A request is open while its status is ``sent``; every transition out of ``sent``
is a compare-and-set so concurrent handlers (or redelivered webhooks) apply a
reply at most once.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select, update

from family_events.db import get_session
from family_events.db.base import utcnow
from family_events.db.models.approval import ApprovalRequest

STATUS_SENT = "sent"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_CANCELLED = "cancelled"
STATUS_PAYMENT_CONFIRMED = "payment_confirmed"
STATUS_SUPERSEDED = "superseded"
STATUS_TIMEOUT = "timeout"
STATUS_FAILED = "failed"

KIND_PROPOSAL = "proposal"
KIND_PAYMENT = "payment"

CHANNEL_SMS = "sms"
CHANNEL_EMAIL = "email"
CHANNELS = (CHANNEL_SMS, CHANNEL_EMAIL)


def _detach(session, row: Optional[ApprovalRequest]) -> Optional[ApprovalRequest]:
    if row is not None:
        session.expunge(row)
    return row


def create_request(
    event_id: int,
    channel: str,
    recipient: str,
    message_text: str,
    kind: str = KIND_PROPOSAL,
    subject: Optional[str] = None,
    message_id: Optional[str] = None,
    sent_at: Optional[datetime] = None,
) -> ApprovalRequest:
    """Supersede any open request for (event, channel) and insert the new open one in one transaction."""
    if channel not in CHANNELS:
        raise ValueError(f"Unknown channel: {channel!r}")
    now = sent_at or utcnow()
    with get_session() as session:
        session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.event_id == event_id)
            .where(ApprovalRequest.channel == channel)
            .where(ApprovalRequest.status == STATUS_SENT)
            .values(status=STATUS_SUPERSEDED, closed_at=now, updated_at=now)
        )
        row = ApprovalRequest(
            event_id=event_id,
            kind=kind,
            channel=channel,
            recipient=recipient,
            subject=subject,
            message_text=message_text,
            message_id=message_id,
            status=STATUS_SENT,
            sent_at=now,
        )
        session.add(row)
        session.flush()
        session.refresh(row)
        session.expunge(row)
        return row


def get_request(request_id: int) -> Optional[ApprovalRequest]:
    with get_session() as session:
        return _detach(session, session.get(ApprovalRequest, request_id))


def mark_delivered(
    request_id: int,
    provider_message_id: Optional[str],
    thread_id: Optional[str] = None,
) -> None:
    """Record the provider-assigned ids once dispatch succeeded."""
    with get_session() as session:
        session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .values(provider_message_id=provider_message_id, thread_id=thread_id, updated_at=utcnow())
        )


def mark_failed(request_id: int, error_message: str) -> bool:
    """Close an open request whose dispatch failed."""
    now = utcnow()
    with get_session() as session:
        result = session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .where(ApprovalRequest.status == STATUS_SENT)
            .values(status=STATUS_FAILED, error_message=error_message[:2000], closed_at=now, updated_at=now)
        )
        return result.rowcount == 1


def find_open_for_recipient(
    recipient: str,
    channel: Optional[str] = None,
    window_hours: int = 24,
    now: Optional[datetime] = None,
) -> Optional[ApprovalRequest]:
    """Most recent open request sent to recipient within the freshness window."""
    since = (now or utcnow()) - timedelta(hours=window_hours)
    with get_session() as session:
        q = (
            select(ApprovalRequest)
            .where(ApprovalRequest.recipient == recipient)
            .where(ApprovalRequest.status == STATUS_SENT)
            .where(ApprovalRequest.sent_at >= since)
            .order_by(ApprovalRequest.sent_at.desc(), ApprovalRequest.id.desc())
        )
        if channel is not None:
            q = q.where(ApprovalRequest.channel == channel)
        return _detach(session, session.scalars(q).first())


def find_by_message_ids(message_ids: list[str]) -> Optional[ApprovalRequest]:
    """Most recent request (any status) whose correlation key is one of message_ids."""
    ids = [m for m in message_ids if m]
    if not ids:
        return None
    with get_session() as session:
        q = (
            select(ApprovalRequest)
            .where(ApprovalRequest.message_id.in_(ids))
            .order_by(ApprovalRequest.sent_at.desc(), ApprovalRequest.id.desc())
        )
        return _detach(session, session.scalars(q).first())


def find_by_thread_id(thread_id: Optional[str], recipient: Optional[str] = None) -> Optional[ApprovalRequest]:
    """Most recent email request sent in the given provider thread."""
    if not thread_id:
        return None
    with get_session() as session:
        q = (
            select(ApprovalRequest)
            .where(ApprovalRequest.thread_id == thread_id)
            .order_by(ApprovalRequest.sent_at.desc(), ApprovalRequest.id.desc())
        )
        if recipient is not None:
            q = q.where(ApprovalRequest.recipient == recipient)
        return _detach(session, session.scalars(q).first())


def find_open_for_event(event_id: int, channel: Optional[str] = None) -> list[ApprovalRequest]:
    with get_session() as session:
        q = (
            select(ApprovalRequest)
            .where(ApprovalRequest.event_id == event_id)
            .where(ApprovalRequest.status == STATUS_SENT)
            .order_by(ApprovalRequest.sent_at.desc())
        )
        if channel is not None:
            q = q.where(ApprovalRequest.channel == channel)
        rows = list(session.scalars(q).all())
        for row in rows:
            session.expunge(row)
        return rows


def record_response(
    request_id: int,
    new_status: str,
    response_text: Optional[str],
    confidence: Optional[str] = None,
    now: Optional[datetime] = None,
    supersede_siblings: bool = True,
) -> bool:
    """Close an open request with the interpreted reply. False if it was no longer open.

    With supersede_siblings, the event's other open requests of the same kind
    (the proposal on the other channel) are closed as superseded in the same
    transaction, so one answer settles the event on every channel.
    """
    now = now or utcnow()
    with get_session() as session:
        result = session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .where(ApprovalRequest.status == STATUS_SENT)
            .values(
                status=new_status,
                response_text=response_text,
                response_confidence=confidence,
                responded_at=now,
                closed_at=now,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            return False
        if supersede_siblings:
            row = session.get(ApprovalRequest, request_id)
            session.execute(
                update(ApprovalRequest)
                .where(ApprovalRequest.event_id == row.event_id)
                .where(ApprovalRequest.kind == row.kind)
                .where(ApprovalRequest.id != request_id)
                .where(ApprovalRequest.status == STATUS_SENT)
                .values(status=STATUS_SUPERSEDED, closed_at=now, updated_at=now)
            )
        return True


def mark_superseded(request_id: int, expected_status: str, now: Optional[datetime] = None) -> bool:
    """Relabel a closed request as superseded when the event refused the reply's transition."""
    now = now or utcnow()
    with get_session() as session:
        result = session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .where(ApprovalRequest.status == expected_status)
            .values(status=STATUS_SUPERSEDED, updated_at=now)
        )
        return result.rowcount == 1


def mark_reminded(request_id: int, now: Optional[datetime] = None) -> bool:
    """Set the reminded flag once. False if already reminded or no longer open."""
    now = now or utcnow()
    with get_session() as session:
        result = session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .where(ApprovalRequest.status == STATUS_SENT)
            .where(ApprovalRequest.reminded_at.is_(None))
            .values(reminded_at=now, updated_at=now)
        )
        return result.rowcount == 1


def expire_request(request_id: int, now: Optional[datetime] = None) -> bool:
    """Close an open request as timed out. False if it was already closed."""
    now = now or utcnow()
    with get_session() as session:
        result = session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id)
            .where(ApprovalRequest.status == STATUS_SENT)
            .values(status=STATUS_TIMEOUT, closed_at=now, updated_at=now)
        )
        return result.rowcount == 1


def list_open(
    sent_before: Optional[datetime] = None,
    kind: Optional[str] = None,
    unreminded_only: bool = False,
) -> list[ApprovalRequest]:
    """Open requests, oldest first."""
    with get_session() as session:
        q = (
            select(ApprovalRequest)
            .where(ApprovalRequest.status == STATUS_SENT)
            .order_by(ApprovalRequest.sent_at.asc())
        )
        if sent_before is not None:
            q = q.where(ApprovalRequest.sent_at <= sent_before)
        if kind is not None:
            q = q.where(ApprovalRequest.kind == kind)
        if unreminded_only:
            q = q.where(ApprovalRequest.reminded_at.is_(None))
        rows = list(session.scalars(q).all())
        for row in rows:
            session.expunge(row)
        return rows


def count_proposals_since(since: datetime) -> int:
    """Proposals actually dispatched (failed sends excluded) since the given time."""
    with get_session() as session:
        q = (
            select(func.count(ApprovalRequest.id))
            .where(ApprovalRequest.kind == KIND_PROPOSAL)
            .where(ApprovalRequest.status != STATUS_FAILED)
            .where(ApprovalRequest.status != STATUS_SUPERSEDED)
            .where(ApprovalRequest.sent_at >= since)
        )
        return int(session.scalar(q) or 0)


def list_requests(
    limit: int = 100,
    offset: int = 0,
    status: Optional[str] = None,
    event_id: Optional[int] = None,
) -> list[ApprovalRequest]:
    with get_session() as session:
        q = (
            select(ApprovalRequest)
            .order_by(ApprovalRequest.sent_at.desc(), ApprovalRequest.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if status is not None:
            q = q.where(ApprovalRequest.status == status)
        if event_id is not None:
            q = q.where(ApprovalRequest.event_id == event_id)
        rows = list(session.scalars(q).all())
        for row in rows:
            session.expunge(row)
        return rows


def counts_by_status(
    from_dt: Optional[datetime] = None,
    to_dt: Optional[datetime] = None,
) -> dict[str, dict[str, int]]:
    """Return {channel: {status: count}} for requests sent in the optional range."""
    with get_session() as session:
        q = select(
            ApprovalRequest.channel,
            ApprovalRequest.status,
            func.count(ApprovalRequest.id),
        )
        if from_dt is not None:
            q = q.where(ApprovalRequest.sent_at >= from_dt)
        if to_dt is not None:
            q = q.where(ApprovalRequest.sent_at <= to_dt)
        q = q.group_by(ApprovalRequest.channel, ApprovalRequest.status)
        rows = list(session.execute(q).all())
    out: dict[str, dict[str, int]] = {}
    for channel, status, count in rows:
        out.setdefault(channel, {})[status] = count
    return out


def to_dict(row: ApprovalRequest) -> dict[str, Any]:
    return {
        "id": row.id,
        "event_id": row.event_id,
        "kind": row.kind,
        "channel": row.channel,
        "recipient": row.recipient,
        "subject": row.subject,
        "status": row.status,
        "message_id": row.message_id,
        "thread_id": row.thread_id,
        "sent_at": row.sent_at.isoformat() if row.sent_at else None,
        "response_text": row.response_text,
        "response_confidence": row.response_confidence,
        "responded_at": row.responded_at.isoformat() if row.responded_at else None,
        "reminded_at": row.reminded_at.isoformat() if row.reminded_at else None,
    }
