"""Mail provider: Gmail-shaped interface, REST implementation and mock."""

from family_events.mail_provider.gmail_mock import GmailMockProvider
from family_events.mail_provider.gmail_models import (
    GmailHeader,
    GmailMessage,
    GmailMessagePart,
    GmailPartBody,
    OutgoingEmail,
    PushNotificationData,
    SendResult,
    WatchResponse,
)
from family_events.mail_provider.protocol import MailProvider

__all__ = [
    "GmailHeader",
    "GmailMessage",
    "GmailMessagePart",
    "GmailPartBody",
    "OutgoingEmail",
    "PushNotificationData",
    "SendResult",
    "WatchResponse",
    "MailProvider",
    "GmailMockProvider",
]
