"""Verify that a Gmail push (Pub/Sub) request was signed by Google for this endpoint."""

import asyncio
from typing import Any, Callable, Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from family_events.config import GMAIL_PUSH_AUDIENCE, GMAIL_PUSH_SERVICE_ACCOUNT
from family_events.errors import PushVerificationError
from family_events.utils.logger import get_logger

logger = get_logger("family_events.auth.push_verifier")

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

# (token, audience) -> claims; raises ValueError on a bad signature, audience or expiry
TokenVerifier = Callable[[str, str], dict[str, Any]]


def _google_verify(token: str, audience: str) -> dict[str, Any]:
    """Verify signature, audience and expiry against Google's published certs."""
    return id_token.verify_oauth2_token(token, google_requests.Request(), audience)


class PushVerifier:
    """Checks the bearer OIDC token Pub/Sub attaches to push requests."""

    def __init__(
        self,
        audience: str = GMAIL_PUSH_AUDIENCE,
        service_account: str = GMAIL_PUSH_SERVICE_ACCOUNT,
        verify_token: Optional[TokenVerifier] = None,
    ):
        self.audience = audience
        self.service_account = (service_account or "").strip().lower()
        self._verify_token = verify_token or _google_verify

    @staticmethod
    def _bearer(authorization: Optional[str]) -> str:
        if not authorization:
            raise PushVerificationError("Missing Authorization header")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise PushVerificationError("Authorization header is not a bearer token")
        return token.strip()

    def verify(self, authorization: Optional[str]) -> dict[str, Any]:
        """Return the token claims or raise PushVerificationError (issuer, audience, expiry, signer)."""
        if not self.audience:
            raise PushVerificationError("Push audience is not configured")
        token = self._bearer(authorization)
        try:
            claims = self._verify_token(token, self.audience)
        except ValueError as e:
            raise PushVerificationError(f"Invalid push token: {e}") from e

        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise PushVerificationError(f"Unexpected issuer: {claims.get('iss')!r}")
        if claims.get("aud") != self.audience:
            raise PushVerificationError("Token audience does not match this endpoint")
        if self.service_account:
            email = str(claims.get("email", "")).lower()
            if email != self.service_account or not claims.get("email_verified", False):
                raise PushVerificationError(f"Unexpected push signer: {email!r}")
        return claims

    async def averify(self, authorization: Optional[str]) -> dict[str, Any]:
        """verify() off the event loop (certificate fetch is blocking I/O)."""
        return await asyncio.to_thread(self.verify, authorization)
