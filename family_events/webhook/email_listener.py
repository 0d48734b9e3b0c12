"""Inbound email reply adapter driven by Gmail push notifications.

The pipeline runs in a fixed order: verify the push, decode it, map the mailbox
to a user, diff history from the stored cursor, then for each added message
dedupe, fetch, filter to family senders, correlate to an approval request,
clean and interpret the body and apply the reply. The cursor is advanced only
after the whole batch was handled, so a crash mid-batch causes reprocessing
(absorbed by the processed-message cache and the ledger compare-and-set)
rather than lost replies.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from opentelemetry.trace import Status, StatusCode

from family_events.auth.push_verifier import PushVerifier
from family_events.config import (
    APPROVAL_REPLY_WINDOW_HOURS,
    GMAIL_FALLBACK_LOOKBACK_MINUTES,
    GMAIL_FALLBACK_MAX_MESSAGES,
)
from family_events.db.base import utcnow
from family_events.db.models.approval import ApprovalRequest
from family_events.db.repositories import approval_repo, history_cursor_repo, user_repo
from family_events.errors import HistoryExpiredError
from family_events.interpreter import interpret
from family_events.mail_provider.gmail_models import GmailMessage, PushNotificationData
from family_events.mail_provider.mapping import extract_address, extract_body, header_map, referenced_message_ids
from family_events.notifier import Notifier
from family_events.notifier.templates import REPLY_SUBJECT_PHRASES
from family_events.utils.aio import maybe_await
from family_events.utils.body_sanitizer import clean_reply_body
from family_events.utils.logger import get_logger, mask_address, reply_context
from family_events.utils.tracing import get_tracer
from family_events.webhook.dedup_store import ProcessedMessageCache
from family_events.webhook.family_config import FamilyMember, member_for_email
from family_events.webhook.models import decode_push
from family_events.webhook.reply_handler import ReplyOutcome, apply_reply

logger = get_logger("family_events.webhook.email_listener")

# Per-message results
MSG_DUPLICATE = "duplicate"
MSG_NOT_FOUND = "not_found"
MSG_NOT_FAMILY = "not_family"
MSG_NOT_A_REPLY = "not_a_reply"
MSG_HANDLED = "handled"

# Push results
PUSH_PROCESSED = "processed"
PUSH_UNKNOWN_MAILBOX = "unknown_mailbox"

_REPLY_PREFIXES = ("re:", "aw:", "sv:")


@dataclass
class MessageResult:
    message_id: str
    status: str
    outcome: Optional[ReplyOutcome] = None


@dataclass
class PushResult:
    status: str
    mailbox: str
    history_id: Optional[str] = None
    used_fallback: bool = False
    messages: list[MessageResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for m in self.messages if m.status == status)


def is_reply_subject(subject: Optional[str]) -> bool:
    """Reply marker plus one of our outbound subject phrases."""
    s = (subject or "").strip().lower()
    return s.startswith(_REPLY_PREFIXES) and any(phrase in s for phrase in REPLY_SUBJECT_PHRASES)


def _latest_history_id(*candidates: Optional[str]) -> Optional[str]:
    values = [c for c in candidates if c and str(c).isdigit()]
    return max(values, key=int) if values else None


class EmailReplyListener:
    """Handles Gmail push notifications for every connected mailbox."""

    def __init__(
        self,
        notifier: Notifier,
        mail_provider: Any,
        cache: ProcessedMessageCache,
        members: Optional[list[FamilyMember]] = None,
        verifier: Optional[PushVerifier] = None,
        window_hours: int = APPROVAL_REPLY_WINDOW_HOURS,
    ):
        self.notifier = notifier
        self.mail_provider = mail_provider
        self.cache = cache
        self.members = members if members is not None else notifier.members
        self.verifier = verifier
        self.window_hours = window_hours

    # --- stages ---

    async def verify(self, authorization: Optional[str]) -> None:
        """Raises PushVerificationError. No-op when verification is disabled (no verifier)."""
        if self.verifier is None:
            return
        await self.verifier.averify(authorization)

    async def added_message_ids(
        self, user_id: int, mailbox: str, push: PushNotificationData, now: datetime
    ) -> tuple[list[str], Optional[str], bool]:
        """(message ids, latest history id, used fallback). Falls back to a recent-inbox scan
        when there is no cursor yet or the stored one is too old for history.list."""
        start = await asyncio.to_thread(history_cursor_repo.get_cursor, mailbox)
        if start is not None:
            try:
                ids, latest = await maybe_await(self.mail_provider.list_added_messages(user_id, start))
                return ids, latest, False
            except HistoryExpiredError as e:
                logger.warning("email_listener.history_expired", mailbox=mask_address(mailbox), cursor=start, error=str(e))
        after = now - timedelta(minutes=GMAIL_FALLBACK_LOOKBACK_MINUTES)
        ids = await maybe_await(
            self.mail_provider.list_recent_inbox(user_id, after, GMAIL_FALLBACK_MAX_MESSAGES)
        )
        logger.info("email_listener.fallback_scan", mailbox=mask_address(mailbox), found=len(ids))
        # Oldest first so replies apply in arrival order
        return list(reversed(ids)), None, True

    async def correlate(
        self, message: GmailMessage, sender: str, now: Optional[datetime] = None
    ) -> Optional[ApprovalRequest]:
        """Find the approval request a reply answers.

        Reply-threading headers come first, then the provider thread id. The
        subject heuristic is used only when the message carries no threading
        headers at all.
        """
        headers = header_map(message)
        referenced = referenced_message_ids(headers)
        approval = None
        if referenced:
            approval = await asyncio.to_thread(approval_repo.find_by_message_ids, referenced)
        if approval is None and message.threadId:
            approval = await asyncio.to_thread(approval_repo.find_by_thread_id, message.threadId, sender)
        if approval is None and not referenced and is_reply_subject(headers.get("subject")):
            approval = await asyncio.to_thread(
                approval_repo.find_open_for_recipient,
                sender,
                approval_repo.CHANNEL_EMAIL,
                self.window_hours,
                now,
            )
        if approval is None or approval.status == approval_repo.STATUS_SENT:
            return approval
        # Answered request: the reply may belong to the event's follow-up (e.g. the payment request)
        open_rows = await asyncio.to_thread(
            approval_repo.find_open_for_event, approval.event_id, approval_repo.CHANNEL_EMAIL
        )
        return open_rows[0] if open_rows else approval

    async def process_message(self, user_id: int, message_id: str, now: datetime) -> MessageResult:
        if not await self.cache.claim(message_id):
            logger.debug("email_listener.duplicate_skipped", message_id=message_id)
            return MessageResult(message_id, MSG_DUPLICATE)
        try:
            with reply_context("email", message_id, mailbox_user_id=user_id):
                result = await self._process_claimed(user_id, message_id, now)
        except Exception:
            await self.cache.release(message_id)
            raise
        await self.cache.add(message_id)
        return result

    async def _process_claimed(self, user_id: int, message_id: str, now: datetime) -> MessageResult:
        message = await maybe_await(self.mail_provider.get_message(user_id, message_id))
        if message is None:
            logger.info("email_listener.message_not_found", message_id=message_id)
            return MessageResult(message_id, MSG_NOT_FOUND)

        headers = header_map(message)
        sender = extract_address(headers.get("from"))
        log = logger.bind(message_id=message_id, sender=mask_address(sender))
        if member_for_email(self.members, sender) is None:
            log.info("email_listener.sender_filtered")
            return MessageResult(message_id, MSG_NOT_FAMILY)

        approval = await self.correlate(message, sender, now)
        if approval is None:
            log.info("email_listener.not_a_reply", subject=headers.get("subject", "")[:120])
            return MessageResult(message_id, MSG_NOT_A_REPLY)
        if approval.status != approval_repo.STATUS_SENT:
            log.info("email_listener.reply_to_closed_request", approval_id=approval.id, status=approval.status)
            return MessageResult(message_id, MSG_HANDLED)

        raw_body, content_type = extract_body(message)
        text = clean_reply_body(raw_body, content_type)
        interpretation = interpret(text)
        log.info(
            "email_listener.reply.interpreted",
            approval_id=approval.id,
            action=interpretation.action.value,
            confidence=interpretation.confidence.value,
        )
        outcome = await apply_reply(self.notifier, approval, text, interpretation, now=now)
        return MessageResult(message_id, MSG_HANDLED, outcome)

    # --- pipeline ---

    async def handle_push(
        self,
        authorization: Optional[str],
        body: object,
        now: Optional[datetime] = None,
    ) -> PushResult:
        """Raises PushVerificationError (401) or MalformedPushError (400); everything else is a 200."""
        now = now or utcnow()
        await self.verify(authorization)
        push = decode_push(body)
        mailbox = push.emailAddress.strip().lower()
        log = logger.bind(mailbox=mask_address(mailbox), push_history_id=push.historyId)

        user = await asyncio.to_thread(user_repo.get_user_by_email, mailbox)
        if user is None or not user.active:
            log.warning("email_listener.unknown_mailbox")
            return PushResult(PUSH_UNKNOWN_MAILBOX, mailbox)

        tracer = get_tracer()
        with tracer.start_as_current_span(
            "email_listener.handle_push",
            attributes={"gmail.history_id": push.historyId, "user.id": user.id},
        ) as span:
            try:
                ids, latest, used_fallback = await self.added_message_ids(user.id, mailbox, push, now)
                result = PushResult(PUSH_PROCESSED, mailbox, used_fallback=used_fallback)
                for message_id in ids:
                    result.messages.append(await self.process_message(user.id, message_id, now))
                watermark = _latest_history_id(push.historyId, latest)
                if watermark is not None:
                    await asyncio.to_thread(history_cursor_repo.advance_cursor, mailbox, watermark)
                result.history_id = watermark
                span.set_attribute("email_listener.messages", len(ids))
                log.info(
                    "email_listener.push.processed",
                    messages=len(ids),
                    handled=result.count(MSG_HANDLED),
                    duplicates=result.count(MSG_DUPLICATE),
                    used_fallback=used_fallback,
                    history_id=watermark,
                )
                return result
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                log.exception("email_listener.push.error", error=str(e))
                raise
