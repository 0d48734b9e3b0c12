"""Wiring: build providers, the credential manager, notifier and listeners from configuration."""

from dataclasses import dataclass
from typing import Any, Optional

from family_events.auth.credential_manager import CredentialManager
from family_events.auth.push_verifier import PushVerifier
from family_events.config import (
    GMAIL_PUSH_VERIFY,
    MAIL_PROVIDER,
    MAIL_SENDER_USER_ID,
    MOCK_INBOX_PATH,
    MOCK_SENT_PATH,
    OUTPUT_DIR,
    PROCESSED_CACHE_MAX,
    SMS_PROVIDER,
)
from family_events.mail_provider.gmail_mock import GmailMockProvider
from family_events.mail_provider.gmail_real import GmailProvider
from family_events.notifier import Notifier
from family_events.sms_provider.mock import MockSmsProvider
from family_events.sms_provider.twilio import TwilioSmsProvider
from family_events.utils.logger import get_logger
from family_events.webhook.dedup_store import ProcessedMessageCache
from family_events.webhook.email_listener import EmailReplyListener
from family_events.webhook.family_config import FamilyMember, load_family_members

logger = get_logger("family_events.services")

MOCK_SMS_SENT_PATH = OUTPUT_DIR / "sent_sms.json"


@dataclass
class Services:
    credentials: CredentialManager
    mail_provider: Any
    sms_provider: Any
    notifier: Notifier
    cache: ProcessedMessageCache
    email_listener: EmailReplyListener
    verifier: Optional[PushVerifier]

    async def aclose(self) -> None:
        await self.credentials.aclose()


def build_mail_provider(credentials: CredentialManager, kind: str = MAIL_PROVIDER) -> Any:
    if kind == "gmail":
        return GmailProvider(credentials)
    logger.info("services.mock_mail_provider", inbox_path=str(MOCK_INBOX_PATH))
    return GmailMockProvider(inbox_path=MOCK_INBOX_PATH, sent_path=MOCK_SENT_PATH)


def build_sms_provider(kind: str = SMS_PROVIDER) -> Any:
    if kind == "twilio":
        return TwilioSmsProvider()
    logger.info("services.mock_sms_provider", sent_path=str(MOCK_SMS_SENT_PATH))
    return MockSmsProvider(sent_path=MOCK_SMS_SENT_PATH)


def build_services(
    credentials: Optional[CredentialManager] = None,
    mail_provider: Any = None,
    sms_provider: Any = None,
    members: Optional[list[FamilyMember]] = None,
    verifier: Optional[PushVerifier] = None,
    verify_push: bool = GMAIL_PUSH_VERIFY,
    cache: Optional[ProcessedMessageCache] = None,
    mail_user_id: Optional[int] = MAIL_SENDER_USER_ID,
) -> Services:
    """Any component passed in is used as-is; the rest come from configuration."""
    credentials = credentials or CredentialManager()
    mail_provider = mail_provider if mail_provider is not None else build_mail_provider(credentials)
    sms_provider = sms_provider if sms_provider is not None else build_sms_provider()
    members = members if members is not None else load_family_members()
    if verifier is None and verify_push:
        verifier = PushVerifier()
    cache = cache or ProcessedMessageCache(PROCESSED_CACHE_MAX)
    notifier = Notifier(
        sms_provider=sms_provider,
        mail_provider=mail_provider,
        members=members,
        mail_user_id=mail_user_id,
    )
    listener = EmailReplyListener(notifier, mail_provider, cache, members=members, verifier=verifier)
    logger.info(
        "services.built",
        mail_provider=type(mail_provider).__name__,
        sms_provider=type(sms_provider).__name__,
        members=len(members),
        push_verification=verifier is not None,
    )
    return Services(
        credentials=credentials,
        mail_provider=mail_provider,
        sms_provider=sms_provider,
        notifier=notifier,
        cache=cache,
        email_listener=listener,
        verifier=verifier,
    )
