"""Pydantic models for inbound webhook payloads (Gmail Pub/Sub push, Twilio SMS)."""

import base64
import binascii
import json

from pydantic import BaseModel, Field, ValidationError

from family_events.errors import MalformedPushError
from family_events.mail_provider.gmail_models import PushNotificationData


class PubSubMessage(BaseModel):
    """The message inside a Pub/Sub push envelope; data is base64-encoded JSON."""

    data: str
    message_id: str | None = Field(None, alias="messageId")
    publish_time: str | None = Field(None, alias="publishTime")
    attributes: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "extra": "ignore"}


class PubSubPushEnvelope(BaseModel):
    """Request body of a Pub/Sub push POST."""

    message: PubSubMessage
    subscription: str | None = None

    model_config = {"extra": "ignore"}


class InboundSms(BaseModel):
    """Twilio inbound message form fields."""

    from_: str = Field(..., alias="From")
    body: str = Field("", alias="Body")
    message_sid: str = Field(..., alias="MessageSid")
    to: str | None = Field(None, alias="To")

    model_config = {"populate_by_name": True, "extra": "ignore"}


def decode_push(body: object) -> PushNotificationData:
    """Parse a push envelope and decode its data. Raises MalformedPushError on any shape problem."""
    try:
        envelope = PubSubPushEnvelope.model_validate(body)
    except ValidationError as e:
        raise MalformedPushError(f"Invalid push envelope: {e.error_count()} error(s)") from e
    data = envelope.message.data
    try:
        raw = base64.b64decode(data + "=" * (-len(data) % 4), altchars=b"-_" if "-" in data or "_" in data else None)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise MalformedPushError(f"Push data is not base64 JSON: {e}") from e
    try:
        return PushNotificationData.model_validate(payload)
    except ValidationError as e:
        raise MalformedPushError("Push data missing emailAddress or historyId") from e
