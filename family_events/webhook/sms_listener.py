"""Inbound SMS reply adapter: correlate a text to the sender's open approval and apply it."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from opentelemetry.trace import Status, StatusCode

from family_events.config import APPROVAL_REPLY_WINDOW_HOURS
from family_events.db.base import utcnow
from family_events.db.repositories import approval_repo
from family_events.errors import DeliveryError
from family_events.interpreter import interpret
from family_events.notifier import Notifier
from family_events.utils.logger import get_logger, mask_address, reply_context
from family_events.utils.phone import normalize_phone
from family_events.utils.tracing import get_tracer
from family_events.webhook.dedup_store import ProcessedMessageCache
from family_events.webhook.reply_handler import ReplyOutcome, apply_reply

logger = get_logger("family_events.webhook.sms_listener")

STATUS_DUPLICATE = "duplicate"
STATUS_NOTHING_PENDING = "nothing_pending"
STATUS_HANDLED = "handled"


@dataclass(frozen=True)
class SmsHandlingResult:
    status: str
    outcome: Optional[ReplyOutcome] = None


async def handle_inbound_sms(
    notifier: Notifier,
    cache: ProcessedMessageCache,
    from_address: str,
    body: str,
    external_id: str,
    now: Optional[datetime] = None,
    window_hours: int = APPROVAL_REPLY_WINDOW_HOURS,
) -> SmsHandlingResult:
    """Pipeline: dedupe -> correlate (24h window) -> interpret -> apply -> mark processed."""
    now = now or utcnow()
    phone = normalize_phone(from_address) or from_address.strip()
    log = logger.bind(message_sid=external_id, sender=mask_address(phone))

    if not await cache.claim(external_id):
        log.info("sms_listener.duplicate_skipped")
        return SmsHandlingResult(STATUS_DUPLICATE)

    tracer = get_tracer()
    with reply_context("sms", external_id), tracer.start_as_current_span(
        "sms_listener.handle", attributes={"sms.message_sid": external_id}
    ) as span:
        try:
            approval = await asyncio.to_thread(
                approval_repo.find_open_for_recipient,
                phone,
                approval_repo.CHANNEL_SMS,
                window_hours,
                now,
            )
            if approval is None:
                log.info("sms_listener.nothing_pending")
                try:
                    await notifier.send_nothing_pending(approval_repo.CHANNEL_SMS, phone)
                except DeliveryError as e:
                    log.error("sms_listener.ack_failed", error=str(e))
                await cache.add(external_id)
                return SmsHandlingResult(STATUS_NOTHING_PENDING)

            interpretation = interpret(body)
            log.info(
                "sms_listener.reply.interpreted",
                approval_id=approval.id,
                action=interpretation.action.value,
                confidence=interpretation.confidence.value,
            )
            outcome = await apply_reply(notifier, approval, body, interpretation, now=now)
            await cache.add(external_id)
            span.set_attribute("reply.result", outcome.result)
            return SmsHandlingResult(STATUS_HANDLED, outcome)
        except Exception as e:
            await cache.release(external_id)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            log.exception("sms_listener.error", error=str(e))
            raise
