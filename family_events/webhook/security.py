"""Twilio request signature validation (X-Twilio-Signature)."""

import base64
import hashlib
import hmac
from typing import Mapping

from family_events.utils.logger import get_logger

logger = get_logger("family_events.webhook.security")


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """HMAC-SHA1 over the full URL followed by each POST param name+value in sorted name order, base64."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(
    auth_token: str,
    url: str,
    params: Mapping[str, str],
    signature: str | None,
) -> bool:
    if not auth_token or not signature:
        logger.warning("webhook.sms.signature_missing", has_token=bool(auth_token))
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    if not hmac.compare_digest(expected, signature):
        logger.warning("webhook.sms.signature_mismatch", url=url)
        return False
    return True
