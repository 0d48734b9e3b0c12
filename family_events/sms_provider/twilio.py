"""Twilio Programmable Messaging provider (REST over httpx)."""

from typing import Optional

import httpx

from family_events.config import (
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_MESSAGING_SERVICE_SID,
    TWILIO_PHONE_NUMBER,
    TWILIO_TIMEOUT_SECONDS,
)
from family_events.errors import DeliveryError
from family_events.sms_provider.protocol import SmsSendResult
from family_events.utils.logger import get_logger, mask_address

logger = get_logger("family_events.sms_provider.twilio")

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
# Twilio rejects bodies above 1600 characters
MAX_BODY_LENGTH = 1600


class TwilioSmsProvider:
    def __init__(
        self,
        account_sid: str = TWILIO_ACCOUNT_SID,
        auth_token: str = TWILIO_AUTH_TOKEN,
        from_number: str = TWILIO_PHONE_NUMBER,
        messaging_service_sid: str = TWILIO_MESSAGING_SERVICE_SID,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = TWILIO_TIMEOUT_SECONDS,
    ):
        if not account_sid or not auth_token:
            raise ValueError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN are required")
        if not from_number and not messaging_service_sid:
            raise ValueError("TWILIO_PHONE_NUMBER or TWILIO_MESSAGING_SERVICE_SID is required")
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._messaging_service_sid = messaging_service_sid
        self._http = http_client
        self._timeout = timeout

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json"

    async def send_sms(self, to: str, body: str) -> SmsSendResult:
        if not to.startswith("+"):
            raise DeliveryError(f"Phone number must be E.164: {to!r}", channel="sms")
        if len(body) > MAX_BODY_LENGTH:
            body = body[: MAX_BODY_LENGTH - 3] + "..."
        data = {"To": to, "Body": body}
        if self._messaging_service_sid:
            data["MessagingServiceSid"] = self._messaging_service_sid
        else:
            data["From"] = self._from_number

        try:
            if self._http is not None:
                response = await self._http.post(
                    self.messages_url,
                    data=data,
                    auth=(self._account_sid, self._auth_token),
                    timeout=self._timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        self.messages_url,
                        data=data,
                        auth=(self._account_sid, self._auth_token),
                    )
        except httpx.HTTPError as e:
            logger.error("twilio.send_error", to=mask_address(to), error=str(e))
            raise DeliveryError(f"Twilio request failed: {e}", channel="sms") from e

        if response.status_code not in (200, 201):
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            logger.error("twilio.send_rejected", to=mask_address(to), status=response.status_code, detail=detail)
            raise DeliveryError(f"Twilio API error {response.status_code}: {detail}", channel="sms")

        payload = response.json()
        result = SmsSendResult(sid=payload.get("sid", ""), status=payload.get("status", "queued"), to=to)
        logger.info("twilio.sent", to=mask_address(to), sid=result.sid)
        return result
