"""Shared fixtures for tests: a throwaway SQLite database and event/provider factories."""

import asyncio
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Point the package at a scratch database before any family_events import
os.environ["DATABASE_URL"] = f"sqlite:///{Path(tempfile.gettempdir()) / f'family_events_test_{os.getpid()}.sqlite'}"
os.environ.setdefault("TRACING_ENABLED", "false")
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from family_events.db import reset_db  # noqa: E402
from family_events.db.repositories import event_repo  # noqa: E402
from family_events.mail_provider.gmail_mock import GmailMockProvider  # noqa: E402
from family_events.notifier import Notifier  # noqa: E402
from family_events.sms_provider.mock import MockSmsProvider  # noqa: E402
from family_events.webhook.family_config import FamilyMember  # noqa: E402

# Wednesday 2025-10-01 10:00 in Los Angeles
NOW = datetime(2025, 10, 1, 17, 0, tzinfo=timezone.utc)

PARENT_PHONE = "+14155550101"
PARENT_EMAIL = "alex@example.com"
FAMILY = [FamilyMember(name="Alex", email=PARENT_EMAIL, phone=PARENT_PHONE)]


def fresh_db() -> None:
    reset_db()


def run(coro):
    return asyncio.run(coro)


def make_event(title: str = "Kids Science Fair", cost: float = 0.0, days_ahead: int = 3, **fields):
    fields.setdefault("location_address", "Exploratorium, Pier 15, San Francisco, CA")
    return event_repo.create_event(title, NOW + timedelta(days=days_ahead), cost=cost, **fields)


def make_notifier(sms=None, mail=None, members=None, daily_limit: int = 3, mail_user_id: int = 1):
    return Notifier(
        sms_provider=sms if sms is not None else MockSmsProvider(),
        mail_provider=mail if mail is not None else GmailMockProvider(),
        members=list(FAMILY if members is None else members),
        mail_user_id=mail_user_id,
        daily_limit=daily_limit,
    )
