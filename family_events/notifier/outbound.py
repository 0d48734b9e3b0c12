"""Outbound notifier: renders messages, writes the approval ledger and dispatches over SMS or email."""

import asyncio
from datetime import datetime, time, timezone
from typing import Optional, Union

from opentelemetry.trace import Status, StatusCode

from family_events.config import DEFAULT_CHANNEL, EMAIL_MESSAGE_ID_DOMAIN, EVENTS_PER_DAY_MAX
from family_events.db.base import utcnow
from family_events.db.models.approval import ApprovalRequest
from family_events.db.models.event import Event
from family_events.db.repositories import approval_repo, event_repo, user_repo
from family_events.errors import (
    ApprovalNotFoundError,
    AuthenticationError,
    DailyProposalLimitError,
    DeliveryError,
    EventNotFoundError,
    EventNotProposableError,
    ProviderError,
)
from family_events.mail_provider.gmail_models import OutgoingEmail
from family_events.mail_provider.mapping import new_message_id, normalize_message_id
from family_events.notifier import templates
from family_events.notifier.templates import RenderedMessage
from family_events.state_machine import EventStatus, can_transition, request_transition
from family_events.utils.aio import maybe_await
from family_events.utils.logger import get_logger, mask_address
from family_events.utils.phone import normalize_phone
from family_events.utils.tracing import get_tracer
from family_events.webhook.family_config import FamilyMember, member_for_email, member_for_phone, primary_recipient

logger = get_logger("family_events.notifier")

_DISPATCH_ERRORS = (DeliveryError, AuthenticationError, ProviderError)


def start_of_utc_day(now: datetime) -> datetime:
    return datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


class Notifier:
    """Sends proposals and every follow-up message on the approval's channel.

    Ledger rows are written before dispatch. A failed dispatch closes the row as
    ``failed`` and raises DeliveryError, so a failed send never leaves an open
    request behind.
    """

    def __init__(
        self,
        sms_provider=None,
        mail_provider=None,
        members: Optional[list[FamilyMember]] = None,
        mail_user_id: Optional[int] = None,
        daily_limit: int = EVENTS_PER_DAY_MAX,
    ):
        self.sms_provider = sms_provider
        self.mail_provider = mail_provider
        self.members = members or []
        self._mail_user_id = mail_user_id
        self.daily_limit = daily_limit

    # --- recipients and mailbox ---

    def resolve_recipient(self, channel: str, recipient: Optional[str] = None) -> str:
        if recipient:
            if channel == approval_repo.CHANNEL_EMAIL:
                return recipient.strip().lower()
            return normalize_phone(recipient) or recipient.strip()
        member = primary_recipient(self.members, channel)
        if member is None:
            raise DeliveryError(f"No family member reachable by {channel}", channel=channel)
        return member.email if channel == approval_repo.CHANNEL_EMAIL else member.phone

    def _recipient_name(self, channel: str, recipient: str) -> Optional[str]:
        if channel == approval_repo.CHANNEL_EMAIL:
            member = member_for_email(self.members, recipient)
        else:
            member = member_for_phone(self.members, recipient)
        return member.name if member and member.name else None

    async def mail_user_id(self) -> int:
        """User whose mailbox sends email: configured id, else the first active admin, else any active user."""
        if self._mail_user_id is not None:
            return self._mail_user_id
        users = await asyncio.to_thread(user_repo.list_users, True)
        admins = [u for u in users if u.role == user_repo.ROLE_ADMIN]
        chosen = (admins or users or [None])[0]
        if chosen is None:
            raise DeliveryError("No active user owns a mailbox for email sends", channel="email")
        self._mail_user_id = chosen.id
        return chosen.id

    # --- dispatch ---

    async def _dispatch(
        self,
        channel: str,
        recipient: str,
        rendered: RenderedMessage,
        message_id: Optional[str] = None,
        reply_to: Optional[ApprovalRequest] = None,
    ) -> tuple[Optional[str], Optional[str]]:
        """Send one message. Returns (provider message id, provider thread id)."""
        if channel == approval_repo.CHANNEL_SMS:
            if self.sms_provider is None:
                raise DeliveryError("SMS provider not configured", channel=channel)
            result = await maybe_await(self.sms_provider.send_sms(recipient, rendered.body))
            return result.sid, None

        if channel != approval_repo.CHANNEL_EMAIL:
            raise DeliveryError(f"Unknown channel: {channel!r}", channel=channel)
        if self.mail_provider is None:
            raise DeliveryError("Mail provider not configured", channel=channel)
        threading = {}
        if reply_to is not None and reply_to.message_id:
            original = f"<{reply_to.message_id}>"
            threading = {"in_reply_to": original, "references": [original], "thread_id": reply_to.thread_id}
        email = OutgoingEmail(
            to=recipient,
            subject=rendered.subject or "Family event update",
            body=rendered.body,
            message_id=message_id or new_message_id(EMAIL_MESSAGE_ID_DOMAIN),
            **threading,
        )
        user_id = await self.mail_user_id()
        result = await maybe_await(self.mail_provider.send_email(user_id, email))
        return result.id, result.threadId

    async def _send_tracked(
        self,
        event: Event,
        kind: str,
        channel: str,
        recipient: str,
        rendered: RenderedMessage,
        now: datetime,
    ) -> ApprovalRequest:
        """Ledger first, then dispatch; closes the row as failed when dispatch fails."""
        message_id = new_message_id(EMAIL_MESSAGE_ID_DOMAIN) if channel == approval_repo.CHANNEL_EMAIL else None
        row = await asyncio.to_thread(
            approval_repo.create_request,
            event.id,
            channel,
            recipient,
            rendered.body,
            kind,
            rendered.subject,
            normalize_message_id(message_id) if message_id else None,
            now,
        )
        log = logger.bind(event_id=event.id, approval_id=row.id, channel=channel, kind=kind)
        try:
            provider_id, thread_id = await self._dispatch(channel, recipient, rendered, message_id=message_id)
        except _DISPATCH_ERRORS as e:
            await asyncio.to_thread(approval_repo.mark_failed, row.id, str(e))
            log.error("notifier.send_failed", recipient=mask_address(recipient), error=str(e))
            if isinstance(e, DeliveryError):
                raise
            raise DeliveryError(str(e), channel=channel) from e
        await asyncio.to_thread(approval_repo.mark_delivered, row.id, provider_id, thread_id)
        row.provider_message_id = provider_id
        row.thread_id = thread_id
        log.info("notifier.sent", recipient=mask_address(recipient), provider_message_id=provider_id)
        return row

    async def _send_untracked(
        self,
        channel: str,
        recipient: str,
        rendered: RenderedMessage,
        what: str,
        reply_to: Optional[ApprovalRequest] = None,
    ) -> Optional[str]:
        """Follow-up messages that open no ledger row."""
        try:
            provider_id, _ = await self._dispatch(channel, recipient, rendered, reply_to=reply_to)
        except _DISPATCH_ERRORS as e:
            logger.error(f"notifier.{what}.failed", channel=channel, recipient=mask_address(recipient), error=str(e))
            if isinstance(e, DeliveryError):
                raise
            raise DeliveryError(str(e), channel=channel) from e
        logger.info(f"notifier.{what}.sent", channel=channel, recipient=mask_address(recipient))
        return provider_id

    # --- operations ---

    async def _load_event(self, event: Union[Event, int]) -> Event:
        event_id = event.id if isinstance(event, Event) else event
        loaded = await asyncio.to_thread(event_repo.get_event, event_id)
        if loaded is None:
            raise EventNotFoundError(f"Event not found: {event_id}")
        return loaded

    async def send_proposal(
        self,
        event: Union[Event, int],
        channel: Optional[str] = None,
        recipient: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        """Render and send a proposal, supersede the event's prior open request on the channel,
        and move the event to proposed."""
        now = now or utcnow()
        channel = (channel or DEFAULT_CHANNEL).lower()
        event = await self._load_event(event)
        tracer = get_tracer()
        with tracer.start_as_current_span(
            "notifier.send_proposal",
            attributes={"event.id": event.id, "notifier.channel": channel},
        ) as span:
            try:
                if not can_transition(event.status, EventStatus.PROPOSED):
                    raise EventNotProposableError(
                        f"Event {event.id} is {event.status}; only discovered or proposed events can be proposed"
                    )
                sent_today = await asyncio.to_thread(approval_repo.count_proposals_since, start_of_utc_day(now))
                if sent_today >= self.daily_limit:
                    raise DailyProposalLimitError(
                        f"Daily proposal limit reached ({sent_today}/{self.daily_limit})"
                    )
                to = self.resolve_recipient(channel, recipient)
                rendered = templates.render_proposal(event, channel, now, self._recipient_name(channel, to))
                row = await self._send_tracked(event, approval_repo.KIND_PROPOSAL, channel, to, rendered, now)
                await asyncio.to_thread(request_transition, event.id, EventStatus.PROPOSED, "proposal_sent")
                span.set_attribute("approval.id", row.id)
                return row
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise

    async def send_payment_link(
        self,
        event: Union[Event, int],
        approval_id: int,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        """Send the payment link on the channel and to the recipient of the approved proposal.
        Opens a payment request awaiting PAID or CANCEL."""
        now = now or utcnow()
        event = await self._load_event(event)
        approval = await asyncio.to_thread(approval_repo.get_request, approval_id)
        if approval is None:
            raise ApprovalNotFoundError(f"Approval request not found: {approval_id}")
        rendered = templates.render_payment_link(
            event, approval.channel, self._recipient_name(approval.channel, approval.recipient)
        )
        return await self._send_tracked(
            event, approval_repo.KIND_PAYMENT, approval.channel, approval.recipient, rendered, now
        )

    async def send_reminder(self, approval: ApprovalRequest, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        event = await self._load_event(approval.event_id)
        rendered = templates.render_reminder(event, approval.channel, now, approval.kind)
        await self._send_untracked(approval.channel, approval.recipient, rendered, "reminder", reply_to=approval)

    async def send_confirmation(self, event: Union[Event, int], approval: ApprovalRequest, action: str) -> None:
        event = await self._load_event(event)
        rendered = templates.render_confirmation(
            action, event, approval.channel, self._recipient_name(approval.channel, approval.recipient)
        )
        await self._send_untracked(approval.channel, approval.recipient, rendered, "confirmation", reply_to=approval)

    async def send_clarification(self, event: Union[Event, int], approval: ApprovalRequest, reply_text: str) -> None:
        event = await self._load_event(event)
        rendered = templates.render_clarification(event, reply_text, approval.channel, approval.kind)
        await self._send_untracked(approval.channel, approval.recipient, rendered, "clarification", reply_to=approval)

    async def send_nothing_pending(self, channel: str, recipient: str) -> None:
        rendered = templates.render_nothing_pending(channel)
        await self._send_untracked(channel, recipient, rendered, "nothing_pending")

    async def send_timeout_notice(self, event: Union[Event, int], approval: ApprovalRequest) -> None:
        event = await self._load_event(event)
        rendered = templates.render_timeout_notice(event, approval.channel)
        await self._send_untracked(approval.channel, approval.recipient, rendered, "timeout_notice", reply_to=approval)
