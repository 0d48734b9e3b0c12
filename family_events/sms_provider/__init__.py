"""SMS provider: protocol, Twilio implementation and mock."""

from family_events.sms_provider.mock import MockSmsProvider
from family_events.sms_provider.protocol import SmsProvider, SmsSendResult
from family_events.sms_provider.twilio import TwilioSmsProvider

__all__ = ["SmsProvider", "SmsSendResult", "MockSmsProvider", "TwilioSmsProvider"]
