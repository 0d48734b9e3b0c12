"""Timeout and reminder sweep over open approval requests.

Expiry runs before reminders, and reminder candidates are re-read after the
expiry pass, so a request old enough to expire is never also reminded. Both
passes close or flag rows with a compare-and-set, so overlapping sweeps (cron
plus the in-process loop) send each reminder and each timeout notice once.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from family_events.config import EXPIRE_AFTER_HOURS, REMINDER_AFTER_HOURS, SCHEDULER_INTERVAL_SECONDS
from family_events.db.base import utcnow
from family_events.db.repositories import approval_repo
from family_events.errors import DeliveryError, EventNotFoundError
from family_events.notifier import Notifier
from family_events.state_machine import EventStatus, request_transition
from family_events.utils.logger import get_logger

logger = get_logger("family_events.scheduler")


@dataclass
class SweepResult:
    expired: int = 0
    reminded: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"expired": self.expired, "reminded": self.reminded, "errors": list(self.errors)}


async def expire_stale(
    notifier: Notifier,
    now: datetime,
    expire_after_hours: int = EXPIRE_AFTER_HOURS,
) -> tuple[int, list[str]]:
    """Close proposal requests open for expire_after_hours and move their events to timeout_expired.
    Payment requests are never auto-expired."""
    cutoff = now - timedelta(hours=expire_after_hours)
    stale = await asyncio.to_thread(approval_repo.list_open, cutoff, approval_repo.KIND_PROPOSAL)
    expired = 0
    errors: list[str] = []
    for approval in stale:
        log = logger.bind(approval_id=approval.id, event_id=approval.event_id, channel=approval.channel)
        if not await asyncio.to_thread(approval_repo.expire_request, approval.id, now):
            log.debug("scheduler.expire.lost_race")
            continue
        expired += 1
        try:
            transition = await asyncio.to_thread(
                request_transition, approval.event_id, EventStatus.TIMEOUT_EXPIRED, "no_reply"
            )
        except EventNotFoundError as e:
            log.error("scheduler.expire.event_missing", error=str(e))
            errors.append(str(e))
            continue
        log.info("scheduler.expired", event_status=transition.current.value, outcome=transition.outcome.value)
        if not transition.ok:
            log.info("scheduler.timeout_notice_skipped", event_status=transition.current.value)
            continue
        try:
            await notifier.send_timeout_notice(approval.event_id, approval)
        except DeliveryError as e:
            log.error("scheduler.timeout_notice_failed", error=str(e))
            errors.append(str(e))
    return expired, errors


async def remind_pending(
    notifier: Notifier,
    now: datetime,
    remind_after_hours: int = REMINDER_AFTER_HOURS,
) -> tuple[int, list[str]]:
    """Send exactly one reminder to each request open for remind_after_hours."""
    cutoff = now - timedelta(hours=remind_after_hours)
    pending = await asyncio.to_thread(approval_repo.list_open, cutoff, None, True)
    reminded = 0
    errors: list[str] = []
    for approval in pending:
        log = logger.bind(approval_id=approval.id, event_id=approval.event_id, channel=approval.channel)
        if not await asyncio.to_thread(approval_repo.mark_reminded, approval.id, now):
            log.debug("scheduler.remind.lost_race")
            continue
        try:
            await notifier.send_reminder(approval, now=now)
        except (DeliveryError, EventNotFoundError) as e:
            log.error("scheduler.reminder_failed", error=str(e))
            errors.append(str(e))
            continue
        reminded += 1
        log.info("scheduler.reminded")
    return reminded, errors


async def sweep(notifier: Notifier, now: Optional[datetime] = None) -> SweepResult:
    """One pass: expiry first, then reminders."""
    now = now or utcnow()
    expired, expire_errors = await expire_stale(notifier, now)
    reminded, remind_errors = await remind_pending(notifier, now)
    result = SweepResult(expired=expired, reminded=reminded, errors=expire_errors + remind_errors)
    logger.info("scheduler.sweep.completed", expired=expired, reminded=reminded, errors=len(result.errors))
    return result


async def run_periodic(notifier: Notifier, interval_seconds: int = SCHEDULER_INTERVAL_SECONDS) -> None:
    """Sweep forever at a fixed interval. Stops on CancelledError."""
    logger.info("scheduler.started", interval_seconds=interval_seconds)
    try:
        while True:
            try:
                await sweep(notifier)
            except Exception as e:
                logger.exception("scheduler.sweep.error", error=str(e))
            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        logger.info("scheduler.stopped")
        raise
