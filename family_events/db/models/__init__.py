"""Re-export all ORM models so Base.metadata has all tables."""

from family_events.db.models.approval import ApprovalRequest
from family_events.db.models.event import Event
from family_events.db.models.history_cursor import HistoryCursor
from family_events.db.models.oauth import CredentialAuditEntry, OAuthCredential
from family_events.db.models.user import User

__all__ = [
    "Event",
    "ApprovalRequest",
    "User",
    "OAuthCredential",
    "CredentialAuditEntry",
    "HistoryCursor",
]
