"""Mock mail provider: inbox read from a JSON file (or seeded in memory), sends appended to another JSON file."""

import json
from datetime import datetime
from itertools import count
from pathlib import Path
from typing import Any, Optional

from family_events.db.base import as_utc
from family_events.errors import HistoryExpiredError
from family_events.mail_provider.gmail_models import (
    GmailMessage,
    OutgoingEmail,
    SendResult,
    WatchResponse,
)
from family_events.utils.logger import get_logger

logger = get_logger("family_events.mail_provider.mock")


class GmailMockProvider:
    """Single shared mock mailbox. Each message carries a numeric historyId; the mailbox history
    counter is the highest one seen."""

    def __init__(self, inbox_path: Optional[Path] = None, sent_path: Optional[Path] = None):
        self._inbox_path = inbox_path
        self._sent_path = sent_path
        self._messages: list[GmailMessage] = []
        self._history_id = 1
        self.sent: list[dict[str, Any]] = []
        self._sent_ids = count(1)
        self.oldest_history_id = 0
        if inbox_path is not None:
            self._load_inbox()

    def _load_inbox(self) -> None:
        if self._inbox_path is None or not self._inbox_path.exists():
            logger.warning("mail_provider.inbox_missing", inbox_path=str(self._inbox_path))
            return
        with self._inbox_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        items = data if isinstance(data, list) else data.get("messages", [])
        for item in items:
            self.add_message(GmailMessage.model_validate(item))
        logger.info("mail_provider.inbox_loaded", message_count=len(self._messages))

    def _save_sent(self) -> None:
        if self._sent_path is None:
            return
        self._sent_path.parent.mkdir(parents=True, exist_ok=True)
        with self._sent_path.open("w", encoding="utf-8") as f:
            json.dump(self.sent, f, indent=2, default=str)

    @property
    def history_id(self) -> str:
        return str(self._history_id)

    def add_message(self, message: GmailMessage) -> GmailMessage:
        """Deliver a message; assigns the next historyId when the message has none."""
        if message.historyId is None:
            self._history_id += 1
            message = message.model_copy(update={"historyId": str(self._history_id)})
        else:
            self._history_id = max(self._history_id, int(message.historyId))
        self._messages.append(message)
        return message

    def list_added_messages(self, user_id: int, start_history_id: str) -> tuple[list[str], Optional[str]]:
        start = int(start_history_id)
        if start < self.oldest_history_id:
            raise HistoryExpiredError(f"History id {start_history_id} is no longer available", status_code=404)
        added = [m.id for m in self._messages if int(m.historyId or 0) > start]
        return added, self.history_id

    def list_recent_inbox(self, user_id: int, after: datetime, max_results: int = 10) -> list[str]:
        after_ms = int(as_utc(after).timestamp() * 1000)
        recent = [m for m in self._messages if int(m.internalDate or 0) >= after_ms]
        recent.sort(key=lambda m: int(m.internalDate or 0), reverse=True)
        return [m.id for m in recent[:max_results]]

    def get_message(self, user_id: int, message_id: str) -> Optional[GmailMessage]:
        for m in self._messages:
            if m.id == message_id:
                return m
        logger.debug("mail_provider.get_message.miss", message_id=message_id)
        return None

    def send_email(self, user_id: int, email: OutgoingEmail) -> SendResult:
        gmail_id = f"sent-{next(self._sent_ids)}"
        thread_id = email.thread_id or f"thread-{gmail_id}"
        self.sent.append({"user_id": user_id, "id": gmail_id, "threadId": thread_id, **email.model_dump()})
        self._save_sent()
        logger.info("mail_provider.sent", to=email.to, subject=email.subject, gmail_id=gmail_id)
        return SendResult(id=gmail_id, threadId=thread_id, labelIds=["SENT"])

    def watch(self, user_id: int, topic_name: str, label_ids: Optional[list[str]] = None) -> WatchResponse:
        return WatchResponse(historyId=self.history_id, expiration=None)
