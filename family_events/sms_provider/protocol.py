"""SMS provider protocol."""

from typing import Awaitable, Protocol, Union

from pydantic import BaseModel


class SmsSendResult(BaseModel):
    sid: str
    status: str = "queued"
    to: str


class SmsProvider(Protocol):
    def send_sms(self, to: str, body: str) -> Union[SmsSendResult, Awaitable[SmsSendResult]]:
        """Send body to an E.164 number. Raises DeliveryError when the carrier refuses it."""
        ...
