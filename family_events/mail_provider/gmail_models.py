"""Pydantic models for the Gmail REST API resources we read and write."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class GmailHeader(BaseModel):
    name: str
    value: str = ""


class GmailPartBody(BaseModel):
    size: int = 0
    data: Optional[str] = None
    attachmentId: Optional[str] = None

    model_config = {"extra": "ignore"}


class GmailMessagePart(BaseModel):
    """A MIME part; the top-level payload is also a part."""

    partId: Optional[str] = None
    mimeType: str = "text/plain"
    filename: Optional[str] = None
    headers: list[GmailHeader] = Field(default_factory=list)
    body: GmailPartBody = Field(default_factory=GmailPartBody)
    parts: list[GmailMessagePart] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class GmailMessage(BaseModel):
    """users.messages resource (format=full)."""

    id: str
    threadId: Optional[str] = None
    labelIds: list[str] = Field(default_factory=list)
    snippet: Optional[str] = None
    historyId: Optional[str] = None
    internalDate: Optional[str] = None
    payload: GmailMessagePart = Field(default_factory=GmailMessagePart)

    model_config = {"extra": "ignore"}


class GmailMessageRef(BaseModel):
    id: str
    threadId: Optional[str] = None
    labelIds: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class HistoryMessageAdded(BaseModel):
    message: GmailMessageRef


class HistoryRecord(BaseModel):
    id: str
    messagesAdded: list[HistoryMessageAdded] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class HistoryPage(BaseModel):
    """users.history.list response page."""

    history: list[HistoryRecord] = Field(default_factory=list)
    nextPageToken: Optional[str] = None
    historyId: Optional[str] = None


class MessageListPage(BaseModel):
    messages: list[GmailMessageRef] = Field(default_factory=list)
    nextPageToken: Optional[str] = None
    resultSizeEstimate: int = 0


class WatchResponse(BaseModel):
    historyId: str
    expiration: Optional[str] = None


class SendResult(BaseModel):
    id: str
    threadId: Optional[str] = None
    labelIds: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class OutgoingEmail(BaseModel):
    """An email we send. message_id is our RFC 5322 Message-ID (angle brackets included)."""

    to: str
    subject: str
    body: str
    message_id: str
    in_reply_to: Optional[str] = None
    references: list[str] = Field(default_factory=list)
    thread_id: Optional[str] = None


class PushNotificationData(BaseModel):
    """Decoded Pub/Sub message data for a Gmail watch."""

    emailAddress: str
    historyId: str

    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}
