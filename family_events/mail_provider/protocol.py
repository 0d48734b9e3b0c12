"""Mail provider protocol (Gmail-shaped interface). Implementations may be sync or async."""

from datetime import datetime
from typing import Awaitable, Optional, Protocol, Union

from family_events.mail_provider.gmail_models import (
    GmailMessage,
    OutgoingEmail,
    SendResult,
    WatchResponse,
)


class MailProvider(Protocol):
    """Per-user mailbox access. user_id selects whose OAuth credentials are used."""

    def list_added_messages(
        self, user_id: int, start_history_id: str
    ) -> Union[tuple[list[str], Optional[str]], Awaitable[tuple[list[str], Optional[str]]]]:
        """Message ids added to INBOX since start_history_id, and the latest history id seen.

        Raises HistoryExpiredError when start_history_id is too old.
        """
        ...

    def list_recent_inbox(
        self, user_id: int, after: datetime, max_results: int = 10
    ) -> Union[list[str], Awaitable[list[str]]]:
        """Ids of inbox messages received after the given time (newest first)."""
        ...

    def get_message(
        self, user_id: int, message_id: str
    ) -> Union[Optional[GmailMessage], Awaitable[Optional[GmailMessage]]]:
        """Full message, or None if it no longer exists."""
        ...

    def send_email(
        self, user_id: int, email: OutgoingEmail
    ) -> Union[SendResult, Awaitable[SendResult]]:
        ...

    def watch(
        self, user_id: int, topic_name: str, label_ids: Optional[list[str]] = None
    ) -> Union[WatchResponse, Awaitable[WatchResponse]]:
        """Start (or renew) push notifications for the mailbox."""
        ...
