"""Gmail REST API mail provider (async, httpx, per-user OAuth via CredentialManager)."""

import asyncio
from datetime import datetime
from typing import Any, Optional

import httpx

from family_events.auth.credential_manager import CredentialManager
from family_events.errors import AuthenticationError, DeliveryError, HistoryExpiredError, ProviderError
from family_events.mail_provider.gmail_models import (
    GmailMessage,
    HistoryPage,
    MessageListPage,
    OutgoingEmail,
    SendResult,
    WatchResponse,
)
from family_events.mail_provider.mapping import build_raw_message
from family_events.utils.logger import get_logger

logger = get_logger("family_events.mail_provider.gmail")

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
HISTORY_PAGE_SIZE = 100
MAX_HISTORY_PAGES = 20
_MAX_TRANSIENT_ATTEMPTS = 3


def _is_transient(e: Exception) -> bool:
    """Network-level failures worth a short retry (connection reset, timeouts, protocol errors)."""
    return isinstance(e, (httpx.TransportError, ConnectionResetError, TimeoutError))


class GmailProvider:
    """Gmail mailbox access for any authorized user.

    Every call goes through ``CredentialManager.acquire(user_id)``. An
    AuthenticationError from a call triggers exactly one reinitialization of
    that user's client; a second failure propagates.
    """

    def __init__(self, credentials: CredentialManager, base_url: str = GMAIL_API_BASE):
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")

    async def _send_once(self, user_id: int, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._credentials.acquire(user_id)
        for attempt in range(_MAX_TRANSIENT_ATTEMPTS):
            try:
                return await client.request(method, url, **kwargs)
            except Exception as e:
                if attempt < _MAX_TRANSIENT_ATTEMPTS - 1 and _is_transient(e):
                    delay = 0.5 * (attempt + 1)
                    logger.debug(
                        "gmail_provider.request.retry",
                        url=url,
                        attempt=attempt + 1,
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise
        raise ProviderError(f"Gmail request failed after {_MAX_TRANSIENT_ATTEMPTS} attempts: {url}")

    async def _call(self, user_id: int, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            return await self._send_once(user_id, method, url, **kwargs)
        except AuthenticationError as e:
            logger.warning("gmail_provider.reinitialize", user_id=user_id, error=str(e))
            await self._credentials.reinitialize(user_id)
            return await self._send_once(user_id, method, url, **kwargs)

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        if response.status_code >= 400:
            raise ProviderError(
                f"Gmail {what} failed: HTTP {response.status_code} {response.text[:300]}",
                status_code=response.status_code,
            )

    async def list_added_messages(self, user_id: int, start_history_id: str) -> tuple[list[str], Optional[str]]:
        """Walk history pages from start_history_id and collect INBOX messagesAdded ids in order."""
        message_ids: list[str] = []
        latest: Optional[str] = None
        page_token: Optional[str] = None
        for _ in range(MAX_HISTORY_PAGES):
            params: dict[str, Any] = {
                "startHistoryId": start_history_id,
                "historyTypes": "messageAdded",
                "labelId": "INBOX",
                "maxResults": HISTORY_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self._call(user_id, "GET", "history", params=params)
            if response.status_code == 404:
                raise HistoryExpiredError(
                    f"History id {start_history_id} is no longer available", status_code=404
                )
            self._raise_for_status(response, "history.list")
            page = HistoryPage.model_validate(response.json())
            latest = page.historyId or latest
            for record in page.history:
                for added in record.messagesAdded:
                    if added.message.id not in message_ids:
                        message_ids.append(added.message.id)
            page_token = page.nextPageToken
            if not page_token:
                break
        else:
            logger.warning("gmail_provider.history.page_limit", user_id=user_id, pages=MAX_HISTORY_PAGES)
        logger.debug(
            "gmail_provider.history.listed",
            user_id=user_id,
            start_history_id=start_history_id,
            added=len(message_ids),
            latest_history_id=latest,
        )
        return message_ids, latest

    async def list_recent_inbox(self, user_id: int, after: datetime, max_results: int = 10) -> list[str]:
        params = {"q": f"in:inbox after:{int(after.timestamp())}", "maxResults": max_results}
        response = await self._call(user_id, "GET", "messages", params=params)
        self._raise_for_status(response, "messages.list")
        page = MessageListPage.model_validate(response.json())
        return [m.id for m in page.messages]

    async def get_message(self, user_id: int, message_id: str) -> Optional[GmailMessage]:
        response = await self._call(user_id, "GET", f"messages/{message_id}", params={"format": "full"})
        if response.status_code == 404:
            logger.debug("gmail_provider.get_message.not_found", message_id=message_id)
            return None
        self._raise_for_status(response, "messages.get")
        return GmailMessage.model_validate(response.json())

    async def send_email(self, user_id: int, email: OutgoingEmail) -> SendResult:
        body: dict[str, Any] = {"raw": build_raw_message(email)}
        if email.thread_id:
            body["threadId"] = email.thread_id
        try:
            response = await self._call(user_id, "POST", "messages/send", json=body)
            self._raise_for_status(response, "messages.send")
        except ProviderError as e:
            raise DeliveryError(str(e), channel="email") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Gmail send failed: {e}", channel="email") from e
        result = SendResult.model_validate(response.json())
        logger.info("gmail_provider.sent", user_id=user_id, gmail_id=result.id, thread_id=result.threadId)
        return result

    async def watch(self, user_id: int, topic_name: str, label_ids: Optional[list[str]] = None) -> WatchResponse:
        body = {
            "topicName": topic_name,
            "labelIds": label_ids or ["INBOX"],
            "labelFilterBehavior": "INCLUDE",
        }
        response = await self._call(user_id, "POST", "watch", json=body)
        self._raise_for_status(response, "watch")
        result = WatchResponse.model_validate(response.json())
        logger.info("gmail_provider.watch_started", user_id=user_id, history_id=result.historyId, expiration=result.expiration)
        return result
