"""Google OAuth, per-user credential lifecycle and push-request verification."""

from family_events.auth.credential_manager import (
    AuthorizationResult,
    AuthorizedClient,
    CredentialManager,
)
from family_events.auth.google_oauth import GoogleOAuthClient, OAuthError, TokenGrant
from family_events.auth.push_verifier import PushVerifier

__all__ = [
    "AuthorizationResult",
    "AuthorizedClient",
    "CredentialManager",
    "GoogleOAuthClient",
    "OAuthError",
    "TokenGrant",
    "PushVerifier",
]
