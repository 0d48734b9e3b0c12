"""Google OAuth 2.0 web-server flow: authorization URL, code exchange and token refresh."""

from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from family_events.config import (
    GMAIL_SCOPES,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
)
from family_events.db.base import utcnow
from family_events.errors import AuthenticationError
from family_events.utils.logger import get_logger

logger = get_logger("family_events.auth.google_oauth")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Token endpoint errors that mean the grant itself is dead (re-consent required)
FATAL_GRANT_ERRORS = frozenset({"invalid_grant", "unauthorized_client", "invalid_client"})


class OAuthError(AuthenticationError):
    """The token endpoint rejected a code exchange or refresh."""

    def __init__(self, message: str, error: Optional[str] = None, user_id: Optional[int] = None):
        super().__init__(message, user_id=user_id)
        self.error = error

    @property
    def is_fatal(self) -> bool:
        return self.error in FATAL_GRANT_ERRORS


class TokenGrant(BaseModel):
    """Token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    token_type: str = "Bearer"

    model_config = {"extra": "ignore"}

    def expires_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return (now or utcnow()) + timedelta(seconds=self.expires_in)


class GoogleOAuthClient:
    """Talks to Google's OAuth endpoints. One instance is shared by all users; it holds no tokens."""

    def __init__(
        self,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
        redirect_uri: str = GOOGLE_REDIRECT_URI,
        scopes: Optional[list[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes or GMAIL_SCOPES)
        self._http = http_client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str, login_hint: Optional[str] = None) -> str:
        """Consent URL requesting offline access so a refresh token is issued."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        if login_hint:
            params["login_hint"] = login_hint
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        payload = {"client_id": self.client_id, "client_secret": self.client_secret, **data}
        try:
            if self._http is not None:
                response = await self._http.post(GOOGLE_TOKEN_URL, data=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(GOOGLE_TOKEN_URL, data=payload)
        except httpx.HTTPError as e:
            raise OAuthError(f"Token endpoint unreachable: {e}", error="network_error") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            description = body.get("error_description", "") if isinstance(body, dict) else ""
            raise OAuthError(
                f"Token endpoint returned {response.status_code}: {error or 'unknown_error'} {description}".strip(),
                error=error,
            )
        return body

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for access + refresh tokens."""
        body = await self._post_token(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            }
        )
        grant = TokenGrant.model_validate(body)
        logger.info(
            "google_oauth.code_exchanged",
            has_refresh_token=grant.refresh_token is not None,
            expires_in=grant.expires_in,
        )
        return grant

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Use a refresh token to obtain a new access token."""
        if not refresh_token:
            raise OAuthError("No refresh token stored", error="missing_refresh_token")
        body = await self._post_token({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        return TokenGrant.model_validate(body)
