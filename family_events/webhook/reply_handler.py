"""Apply an interpreted reply to its approval request: close the ledger row, move the event, notify.

Shared by the SMS and email listeners. The ledger closure is a compare-and-set
on the open row, so a redelivered or concurrently handled reply is applied once.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from family_events.db.base import utcnow
from family_events.db.models.approval import ApprovalRequest
from family_events.db.repositories import approval_repo, event_repo
from family_events.errors import DeliveryError, EventNotFoundError
from family_events.interpreter import Confidence, Interpretation, ReplyAction, interpret
from family_events.notifier import Notifier
from family_events.state_machine import EventStatus, TransitionResult, can_transition, request_transition
from family_events.utils.logger import get_logger

logger = get_logger("family_events.webhook.reply_handler")

RESULT_APPLIED = "applied"
RESULT_CLARIFICATION = "clarification"
RESULT_ALREADY_HANDLED = "already_handled"
RESULT_STALE = "stale"

# (request kind, reply action) -> ledger status
_LEDGER_STATUS = {
    (approval_repo.KIND_PROPOSAL, ReplyAction.APPROVED): approval_repo.STATUS_APPROVED,
    (approval_repo.KIND_PROPOSAL, ReplyAction.REJECTED): approval_repo.STATUS_REJECTED,
    (approval_repo.KIND_PROPOSAL, ReplyAction.CANCELLED): approval_repo.STATUS_CANCELLED,
    (approval_repo.KIND_PAYMENT, ReplyAction.PAYMENT_CONFIRMED): approval_repo.STATUS_PAYMENT_CONFIRMED,
    (approval_repo.KIND_PAYMENT, ReplyAction.CANCELLED): approval_repo.STATUS_CANCELLED,
    (approval_repo.KIND_PAYMENT, ReplyAction.REJECTED): approval_repo.STATUS_CANCELLED,
}


@dataclass(frozen=True)
class ReplyOutcome:
    approval_id: int
    event_id: int
    action: ReplyAction
    confidence: Confidence
    result: str
    event_status: Optional[str] = None
    notification_error: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.result == RESULT_APPLIED


def ledger_status_for(kind: str, action: ReplyAction) -> Optional[str]:
    """Ledger status a reply closes the request with; None when the reply does not fit the request."""
    return _LEDGER_STATUS.get((kind, action))


def first_transition_for(kind: str, action: ReplyAction) -> EventStatus:
    """Event status the reply moves the event to first."""
    if kind == approval_repo.KIND_PROPOSAL and action == ReplyAction.APPROVED:
        return EventStatus.APPROVED
    if kind == approval_repo.KIND_PAYMENT and action == ReplyAction.PAYMENT_CONFIRMED:
        return EventStatus.READY_FOR_REGISTRATION
    return EventStatus.REJECTED


async def _transition(event_id: int, target: EventStatus, reason: str) -> TransitionResult:
    return await asyncio.to_thread(request_transition, event_id, target, reason)


async def _close_stale(
    notifier: Notifier,
    approval: ApprovalRequest,
    interpretation: Interpretation,
    event_status: Optional[str],
    log,
) -> ReplyOutcome:
    """The event already moved on: tell the sender nothing is pending and change no state."""
    log.warning("reply_handler.event_moved_on", event_status=event_status)
    error = None
    try:
        await notifier.send_nothing_pending(approval.channel, approval.recipient)
    except DeliveryError as e:
        error = str(e)
        log.error("reply_handler.nothing_pending_failed", error=error)
    return ReplyOutcome(
        approval.id,
        approval.event_id,
        interpretation.action,
        interpretation.confidence,
        RESULT_STALE,
        event_status=event_status,
        notification_error=error,
    )


async def apply_reply(
    notifier: Notifier,
    approval: ApprovalRequest,
    text: str,
    interpretation: Optional[Interpretation] = None,
    now: Optional[datetime] = None,
) -> ReplyOutcome:
    """Act on a reply to an open approval request. Unclear or misfit replies only prompt for clarification."""
    interpretation = interpretation or interpret(text)
    now = now or utcnow()
    action = interpretation.action
    log = logger.bind(
        approval_id=approval.id,
        event_id=approval.event_id,
        kind=approval.kind,
        channel=approval.channel,
        action=action.value,
        confidence=interpretation.confidence.value,
    )

    status = ledger_status_for(approval.kind, action)
    if status is None:
        log.info("reply_handler.clarification_needed")
        error = None
        try:
            await notifier.send_clarification(approval.event_id, approval, text)
        except DeliveryError as e:
            error = str(e)
            log.error("reply_handler.clarification_failed", error=error)
        return ReplyOutcome(
            approval.id,
            approval.event_id,
            action,
            interpretation.confidence,
            RESULT_CLARIFICATION,
            notification_error=error,
        )

    event_id = approval.event_id
    event = await asyncio.to_thread(event_repo.get_event, event_id)
    if event is None:
        raise EventNotFoundError(f"Event not found: {event_id}")
    first = first_transition_for(approval.kind, action)

    if not can_transition(event.status, first):
        closed = await asyncio.to_thread(
            approval_repo.record_response,
            approval.id,
            approval_repo.STATUS_SUPERSEDED,
            text,
            interpretation.confidence.value,
            now,
            False,
        )
        if not closed:
            log.info("reply_handler.already_handled")
            return ReplyOutcome(approval.id, event_id, action, interpretation.confidence, RESULT_ALREADY_HANDLED)
        return await _close_stale(notifier, approval, interpretation, event.status, log)

    closed = await asyncio.to_thread(
        approval_repo.record_response,
        approval.id,
        status,
        text,
        interpretation.confidence.value,
        now,
    )
    if not closed:
        log.info("reply_handler.already_handled")
        return ReplyOutcome(approval.id, event_id, action, interpretation.confidence, RESULT_ALREADY_HANDLED)

    transition = await _transition(event_id, first, f"reply_{action.value}")
    if not transition.ok:
        # Lost a race with another reply or the scheduler after the check above
        await asyncio.to_thread(approval_repo.mark_superseded, approval.id, status, now)
        return await _close_stale(notifier, approval, interpretation, transition.current.value, log)

    if first == EventStatus.APPROVED:
        follow = EventStatus.READY_FOR_REGISTRATION if event.is_free else EventStatus.PAYMENT_PENDING
        transition = await _transition(event_id, follow, "free_event_approved" if event.is_free else "payment_required")
        if not transition.ok:
            log.warning("reply_handler.follow_up_rejected", event_status=transition.current.value)
            return ReplyOutcome(
                approval.id,
                event_id,
                action,
                interpretation.confidence,
                RESULT_STALE,
                event_status=transition.current.value,
            )
    current = transition.current.value

    error = None
    try:
        if first == EventStatus.APPROVED:
            await notifier.send_confirmation(event_id, approval, "approved")
            if not event.is_free:
                await notifier.send_payment_link(event_id, approval.id, now=now)
        elif action == ReplyAction.PAYMENT_CONFIRMED:
            await notifier.send_confirmation(event_id, approval, "payment_confirmed")
        elif approval.kind == approval_repo.KIND_PAYMENT:
            await notifier.send_confirmation(event_id, approval, "cancelled")
        else:
            await notifier.send_confirmation(event_id, approval, action.value)
    except DeliveryError as e:
        # Ledger and event state are already committed
        error = str(e)
        log.error("reply_handler.notification_failed", error=error)

    log.info("reply_handler.reply.applied", ledger_status=status, event_status=current)
    return ReplyOutcome(
        approval.id,
        event_id,
        action,
        interpretation.confidence,
        RESULT_APPLIED,
        event_status=current,
        notification_error=error,
    )
