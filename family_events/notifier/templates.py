"""Deterministic message rendering for proposals, payment links, confirmations and reminders.

Every function takes the event (and ``now`` where time matters) and returns the
same text for the same input, so a rendered message can be stored in the
approval ledger and compared in tests.
"""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from family_events.config import ASSISTANT_SIGNATURE, DEFAULT_EVENT_LOCATION, DISPLAY_TIMEZONE
from family_events.db.base import as_utc
from family_events.db.models.event import Event

# Subject phrases that identify our outbound proposals in a "Re:" reply
PROPOSAL_SUBJECT_PHRASE = "new family event"
PAYMENT_SUBJECT_PHRASE = "payment required"
REPLY_SUBJECT_PHRASES = (PROPOSAL_SUBJECT_PHRASE, PAYMENT_SUBJECT_PHRASE)

URGENT_WITHIN_WEEKS = 2
LOW_CAPACITY_RATIO = 0.3
REGISTRATION_OPEN_WINDOW = timedelta(hours=2)
MAX_LOCATION_CHARS = 30


class RenderedMessage(BaseModel):
    """Body plus subject (email only)."""

    body: str
    subject: Optional[str] = None


def _local(dt: datetime) -> datetime:
    return as_utc(dt).astimezone(ZoneInfo(DISPLAY_TIMEZONE))


def _hour_minute(dt: datetime) -> str:
    return dt.strftime("%I:%M %p").lstrip("0")


def format_short_date(dt: datetime) -> str:
    """'Sat, Oct 4, 10:00 AM'"""
    local = _local(dt)
    return f"{local:%a, %b} {local.day}, {_hour_minute(local)}"


def format_long_date(dt: datetime) -> str:
    """'Saturday, October 4, 2025 at 10:00 AM'"""
    local = _local(dt)
    return f"{local:%A, %B} {local.day}, {local.year} at {_hour_minute(local)}"


def days_until(starts_at: datetime, now: datetime) -> int:
    """Whole calendar days between now and the event, in the display timezone."""
    return (_local(starts_at).date() - _local(now).date()).days


def weeks_until(starts_at: datetime, now: datetime) -> int:
    return round((as_utc(starts_at) - as_utc(now)).total_seconds() / (7 * 24 * 3600))


def time_until_phrase(starts_at: datetime, now: datetime) -> str:
    """'today', 'tomorrow', '5 days away', '1 week away', '3 weeks away'."""
    days = days_until(starts_at, now)
    if days < 0:
        return "already started"
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    if days < 14:
        return f"{days} days away"
    weeks = round(days / 7)
    return "1 week away" if weeks == 1 else f"{weeks} weeks away"


def truncate_location(address: Optional[str]) -> str:
    """First comma-separated segment, else at most 30 characters."""
    if not address or not address.strip():
        return DEFAULT_EVENT_LOCATION
    parts = address.split(",")
    if len(parts) > 1:
        return parts[0].strip()
    if len(address) > MAX_LOCATION_CHARS:
        return address[: MAX_LOCATION_CHARS - 3] + "..."
    return address


def format_cost(cost: float) -> str:
    """25.0 -> '25', 12.5 -> '12.50'."""
    if float(cost).is_integer():
        return str(int(cost))
    return f"{cost:.2f}"


def _spots_left(event: Event) -> Optional[int]:
    if not event.max_capacity or event.current_capacity is None:
        return None
    return max(event.current_capacity, 0)


def registration_just_opened(event: Event, now: datetime) -> bool:
    if event.registration_opens_at is None:
        return False
    return abs(as_utc(event.registration_opens_at) - as_utc(now)) <= REGISTRATION_OPEN_WINDOW


def filling_fast(event: Event) -> bool:
    left = _spots_left(event)
    return left is not None and left <= event.max_capacity * LOW_CAPACITY_RATIO


def is_new_venue(event: Event) -> bool:
    return not event.previously_attended and not event.is_recurring


def situational_notes(event: Event, now: datetime) -> list[str]:
    """Urgency, social-proof and new-venue markers, in display order."""
    notes = []
    if registration_just_opened(event, now):
        notes.append("🔥 Registration just opened!")
    elif filling_fast(event):
        notes.append(f"⚡ Filling fast - only {_spots_left(event)} spots left")
    if event.influencer_mentions:
        notes.append("📸 Trending on Instagram")
    if is_new_venue(event):
        notes.append("✨ New venue for us!")
    return notes


def _greeting(recipient_name: Optional[str]) -> str:
    return f"Hi {recipient_name}!" if recipient_name else "Hi!"


def _signature() -> str:
    return f"Best,\n{ASSISTANT_SIGNATURE}"


def proposal_sms(event: Event, now: datetime) -> str:
    lines = ["New family event found!"]
    title = event.title
    if event.social_proof_rating:
        title += f" ⭐ {event.social_proof_rating:.1f}"
    lines.append(title)
    lines.append(f"Date: {format_short_date(event.starts_at)} ({time_until_phrase(event.starts_at, now)})")
    lines.append(f"Location: {truncate_location(event.location_address or event.location_name)}")
    if event.is_free:
        lines.append("Cost: FREE")
    else:
        lines.append(f"⚠️ COST: ${format_cost(event.cost)} - REQUIRES PAYMENT")
    if event.age_range_min is not None and event.age_range_max is not None:
        lines.append(f"Ages: {event.age_range_min}-{event.age_range_max}")
    lines.extend(situational_notes(event, now))
    if event.is_free:
        lines.append("\nReply YES to book or NO to skip")
    else:
        lines.append("\nReply YES to receive payment link")
        lines.append("Reply NO to skip")
    return "\n".join(lines)


def proposal_subject(event: Event, now: datetime) -> str:
    cost = "FREE" if event.is_free else f"${format_cost(event.cost)}"
    subject = f"New Family Event: {event.title} ({cost})"
    weeks = weeks_until(event.starts_at, now)
    if days_until(event.starts_at, now) >= 0 and 0 <= weeks <= URGENT_WITHIN_WEEKS:
        return f"URGENT: {subject} - {time_until_phrase(event.starts_at, now)}!"
    return subject


def proposal_email(event: Event, now: datetime, recipient_name: Optional[str] = None) -> RenderedMessage:
    lines = [_greeting(recipient_name), "", "I found a family event that looks like a great fit:", ""]
    lines.append(event.title)
    if event.social_proof_rating:
        lines.append(f"Rating: {event.social_proof_rating:.1f}/5")
    lines.append(f"Date: {format_long_date(event.starts_at)} ({time_until_phrase(event.starts_at, now)})")
    lines.append(f"Location: {event.location_address or event.location_name or DEFAULT_EVENT_LOCATION}")
    if event.is_free:
        lines.append("Cost: FREE")
    else:
        lines.append(f"Cost: ${format_cost(event.cost)} per person (requires payment)")
    if event.age_range_min is not None and event.age_range_max is not None:
        lines.append(f"Ages: {event.age_range_min}-{event.age_range_max} years old")
    if event.description:
        lines.extend(["", "Description:", event.description.strip()])
    notes = situational_notes(event, now)
    if notes:
        lines.append("")
        lines.extend(notes)
    if event.registration_url:
        lines.extend(["", f"Registration: {event.registration_url}"])
    lines.extend(["", "---", ""])
    if event.is_free:
        lines.extend(
            [
                "Should I book this event for the family? Reply with:",
                "- YES to book it automatically",
                "- NO to skip this event",
            ]
        )
    else:
        lines.extend(
            [
                "This event requires payment. Should I proceed? Reply with:",
                "- YES to receive the payment link",
                "- NO to skip this event",
            ]
        )
    lines.extend(["", "Just reply to this email; I'll handle the rest.", "", _signature()])
    return RenderedMessage(subject=proposal_subject(event, now), body="\n".join(lines))


def render_proposal(
    event: Event, channel: str, now: datetime, recipient_name: Optional[str] = None
) -> RenderedMessage:
    if channel == "email":
        return proposal_email(event, now, recipient_name)
    return RenderedMessage(body=proposal_sms(event, now))


def render_payment_link(event: Event, channel: str, recipient_name: Optional[str] = None) -> RenderedMessage:
    link = event.registration_url or "(see registration page)"
    if channel == "email":
        lines = [
            _greeting(recipient_name),
            "",
            f'You approved "{event.title}" for the family.',
            "",
            "Payment details:",
            f"- Event: {event.title}",
            f"- Amount: ${format_cost(event.cost)}",
            f"- Payment link: {link}",
            "",
            "Next steps:",
            "1. Open the payment link and complete the registration",
            "2. Complete the payment (I never pay on your behalf)",
            '3. Reply to this email with "PAID" once done, or "CANCEL" to drop the booking',
            "",
            _signature(),
        ]
        return RenderedMessage(subject=f"💳 Payment Required: {event.title}", body="\n".join(lines))
    body = (
        f"💳 Payment Required\n{event.title}\n"
        f"Amount: ${format_cost(event.cost)}\n"
        f"Payment Link: {link}\n\n"
        "⚠️ IMPORTANT: Complete payment manually\n"
        'Reply "PAY" after payment to confirm\n'
        'Reply "CANCEL" to cancel booking'
    )
    return RenderedMessage(body=body)


_CONFIRMATION_SUBJECTS = {
    "approved": "✅ Event Approved: {title}",
    "rejected": "👍 Event Skipped: {title}",
    "cancelled": "👍 Booking Cancelled: {title}",
    "payment_confirmed": "💳 Payment Confirmed: {title}",
}


def _confirmation_text(action: str, event: Event) -> str:
    if action == "approved":
        if event.is_free:
            return f'✅ Great! "{event.title}" is approved and will be booked automatically.'
        return f'✅ Great! "{event.title}" is approved. Payment link coming next...'
    if action == "payment_confirmed":
        return f'💳 Payment confirmed for "{event.title}"! Now processing registration...'
    if action == "cancelled":
        return f'👍 Cancelled "{event.title}". I won\'t book it.'
    return f'👍 Got it! Skipping "{event.title}". I\'ll keep looking for other events.'


def render_confirmation(
    action: str, event: Event, channel: str, recipient_name: Optional[str] = None
) -> RenderedMessage:
    """action is one of approved, rejected, cancelled, payment_confirmed."""
    text = _confirmation_text(action, event)
    if channel != "email":
        return RenderedMessage(body=text)
    lines = [_greeting(recipient_name), "", text, ""]
    if action == "approved" and event.is_free:
        lines.extend(["I'll handle the registration and let you know once it's confirmed.", ""])
    elif action == "approved":
        lines.extend(["I'll send the payment details in a separate email.", ""])
    lines.append(_signature())
    subject = _CONFIRMATION_SUBJECTS.get(action, "Family Event Update: {title}").format(title=event.title)
    return RenderedMessage(subject=subject, body="\n".join(lines))


def render_clarification(
    event: Event, reply_text: str, channel: str, kind: str = "proposal"
) -> RenderedMessage:
    """Ask again, naming the pending event."""
    snippet = " ".join((reply_text or "").split())[:80]
    if kind == "payment":
        ask = f'Please reply PAID once you have paid for "{event.title}", or CANCEL to drop it.'
    else:
        ask = f'Please reply YES to book "{event.title}" or NO to skip it.'
    text = f'I didn\'t understand "{snippet}". {ask}' if snippet else ask
    if channel == "email":
        return RenderedMessage(subject="❓ Please clarify your response", body=f"{text}\n\n{_signature()}")
    return RenderedMessage(body=text)


def render_nothing_pending(channel: str) -> RenderedMessage:
    text = "No pending event approvals found. You'll receive new event suggestions soon! 🎉"
    if channel == "email":
        return RenderedMessage(subject="🎉 No pending approvals", body=f"{text}\n\n{_signature()}")
    return RenderedMessage(body=text)


def render_reminder(event: Event, channel: str, now: datetime, kind: str = "proposal") -> RenderedMessage:
    when = time_until_phrase(event.starts_at, now)
    if kind == "payment":
        action = 'Reply "PAID" once payment is complete or "CANCEL" to drop it'
    else:
        action = "Reply YES to book or NO to skip"
    text = (
        "Reminder: You have a pending event approval.\n\n"
        f'"{event.title}"\n'
        f"{format_short_date(event.starts_at)} ({when})\n\n"
        f"{action}"
    )
    if channel == "email":
        return RenderedMessage(subject=f"Reminder: {event.title} ({when})", body=f"{text}\n\n{_signature()}")
    return RenderedMessage(body=text)


def render_timeout_notice(event: Event, channel: str) -> RenderedMessage:
    text = f'⏰ No reply received for "{event.title}", so I skipped it. I\'ll keep looking for other events.'
    if channel == "email":
        return RenderedMessage(subject=f"⏰ Event Expired: {event.title}", body=f"{text}\n\n{_signature()}")
    return RenderedMessage(body=text)
