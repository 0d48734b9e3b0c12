"""DB repositories: sync module-level functions returning detached rows."""

from family_events.db.repositories import (
    approval_repo,
    credential_repo,
    event_repo,
    history_cursor_repo,
    user_repo,
)

__all__ = [
    "approval_repo",
    "credential_repo",
    "event_repo",
    "history_cursor_repo",
    "user_repo",
]
