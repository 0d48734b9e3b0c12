"""Event lifecycle: the canonical status graph and the only way to change an event's status.

discovered -> proposed -> approved | rejected | timeout_expired
approved -> payment_pending (cost > 0) | ready_for_registration
payment_pending -> ready_for_registration | rejected (cancelled before paying)
ready_for_registration -> registered | registration_failed

Transitions are compare-and-set updates on the event row, so concurrent
handlers racing on the same event apply a given transition once.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from family_events.db.repositories import event_repo
from family_events.errors import EventNotFoundError
from family_events.utils.logger import get_logger

logger = get_logger("family_events.state_machine")


class EventStatus(str, Enum):
    DISCOVERED = "discovered"
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAYMENT_PENDING = "payment_pending"
    READY_FOR_REGISTRATION = "ready_for_registration"
    REGISTERED = "registered"
    REGISTRATION_FAILED = "registration_failed"
    TIMEOUT_EXPIRED = "timeout_expired"


TERMINAL_STATES = frozenset(
    {
        EventStatus.REJECTED,
        EventStatus.REGISTERED,
        EventStatus.REGISTRATION_FAILED,
        EventStatus.TIMEOUT_EXPIRED,
    }
)

ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DISCOVERED: frozenset({EventStatus.PROPOSED}),
    EventStatus.PROPOSED: frozenset(
        {EventStatus.APPROVED, EventStatus.REJECTED, EventStatus.TIMEOUT_EXPIRED}
    ),
    EventStatus.APPROVED: frozenset(
        {EventStatus.PAYMENT_PENDING, EventStatus.READY_FOR_REGISTRATION}
    ),
    EventStatus.PAYMENT_PENDING: frozenset(
        {EventStatus.READY_FOR_REGISTRATION, EventStatus.REJECTED}
    ),
    EventStatus.READY_FOR_REGISTRATION: frozenset(
        {EventStatus.REGISTERED, EventStatus.REGISTRATION_FAILED}
    ),
}

# Bounded re-reads when a compare-and-set loses a race
_MAX_CAS_ATTEMPTS = 3


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    event_id: int
    previous: EventStatus
    current: EventStatus
    target: EventStatus

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED

    @property
    def ok(self) -> bool:
        """True when the event is now in the target state (applied or already there)."""
        return self.outcome is not TransitionOutcome.REJECTED


def is_terminal(status: str | EventStatus) -> bool:
    return EventStatus(status) in TERMINAL_STATES


def can_transition(current: str | EventStatus, target: str | EventStatus) -> bool:
    current, target = EventStatus(current), EventStatus(target)
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def request_transition(
    event_id: int,
    target: str | EventStatus,
    reason: Optional[str] = None,
) -> TransitionResult:
    """Move an event to target.

    Same-state requests are a NOOP. Requests from a terminal state, or along an
    edge not in ALLOWED_TRANSITIONS, are REJECTED and logged; they never raise.
    Raises EventNotFoundError for unknown events.
    """
    target = EventStatus(target)
    log = logger.bind(event_id=event_id, target=target.value, reason=reason)
    for _ in range(_MAX_CAS_ATTEMPTS):
        event = event_repo.get_event(event_id)
        if event is None:
            raise EventNotFoundError(f"Event not found: {event_id}")
        current = EventStatus(event.status)
        if current == target:
            log.debug("state_machine.transition_noop", current=current.value)
            return TransitionResult(TransitionOutcome.NOOP, event_id, current, current, target)
        if current in TERMINAL_STATES or target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            log.warning(
                "state_machine.transition_rejected",
                current=current.value,
                terminal=current in TERMINAL_STATES,
            )
            return TransitionResult(TransitionOutcome.REJECTED, event_id, current, current, target)
        if event_repo.compare_and_set_status(event_id, current.value, target.value):
            log.info("state_machine.transition_applied", previous=current.value)
            return TransitionResult(TransitionOutcome.APPLIED, event_id, current, target, target)
        log.debug("state_machine.transition_race", expected=current.value)

    event = event_repo.get_event(event_id)
    current = EventStatus(event.status) if event is not None else target
    log.warning("state_machine.transition_contended", current=current.value)
    outcome = TransitionOutcome.NOOP if current == target else TransitionOutcome.REJECTED
    return TransitionResult(outcome, event_id, current, current, target)


def mark_registered(event_id: int) -> TransitionResult:
    """Called by the registration bot once booking succeeded."""
    return request_transition(event_id, EventStatus.REGISTERED, reason="registration_succeeded")


def mark_registration_failed(event_id: int, error: Optional[str] = None) -> TransitionResult:
    return request_transition(
        event_id,
        EventStatus.REGISTRATION_FAILED,
        reason=f"registration_failed: {error}" if error else "registration_failed",
    )
