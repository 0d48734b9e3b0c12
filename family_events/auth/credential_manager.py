"""Per-user authenticated Gmail clients.

The CredentialManager owns an explicit registry of AuthorizedClient objects
keyed by user id. A client is built from the user's stored OAuth credential,
refreshes its access token transparently when it expires, and persists every
rotated token back to the credential store with an audit entry.

Concurrent ``acquire(user_id)`` calls for a user that has no live client share
one in-flight initialization task (single-flight); different users initialize
fully in parallel.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from family_events.auth.google_oauth import GoogleOAuthClient, OAuthError, TokenGrant
from family_events.config import GMAIL_API_TIMEOUT_SECONDS, OAUTH_PROVIDER_GOOGLE
from family_events.db.base import as_utc
from family_events.db.models.oauth import OAuthCredential
from family_events.db.repositories import credential_repo, user_repo
from family_events.errors import AuthenticationError, UserNotFoundError
from family_events.utils.logger import get_logger

logger = get_logger("family_events.auth.credential_manager")

CredentialLoader = Callable[[int], Optional[OAuthCredential]]


class AuthorizedClient:
    """Bearer-token HTTP access to Google APIs for exactly one user."""

    def __init__(
        self,
        user_id: int,
        credential: OAuthCredential,
        oauth: GoogleOAuthClient,
        http_client: httpx.AsyncClient,
    ):
        self.user_id = user_id
        self._access_token = credential.access_token
        self._refresh_token = credential.refresh_token
        self._scope = credential.scope
        self._expires_at = as_utc(credential.expires_at)
        self._oauth = oauth
        self._http = http_client
        self._refresh_lock = asyncio.Lock()
        self.revoked = False

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def _token_expired(self) -> bool:
        return credential_repo.expires_soon(self._expires_at)

    async def access_token(self) -> str:
        if self._token_expired():
            await self.refresh()
        return self._access_token

    async def refresh(self, stale_token: Optional[str] = None) -> None:
        """Rotate the access token once. Concurrent callers wait for the same refresh.

        stale_token: the token a caller saw rejected; if another caller already
        rotated it, no second refresh is made.
        """
        async with self._refresh_lock:
            if stale_token is not None and stale_token != self._access_token:
                return
            if stale_token is None and not self._token_expired():
                return
            log = logger.bind(user_id=self.user_id)
            try:
                grant = await self._oauth.refresh(self._refresh_token or "")
            except OAuthError as e:
                e.user_id = self.user_id
                if e.is_fatal:
                    self.revoked = True
                log.warning("credential_manager.refresh_failed", error=str(e), oauth_error=e.error)
                await asyncio.to_thread(
                    credential_repo.append_audit,
                    self.user_id,
                    credential_repo.ACTION_REFRESH_FAILED,
                    False,
                    str(e),
                )
                raise
            self._apply_grant(grant)
            await self._persist(grant)
            log.info("credential_manager.token_refreshed", expires_at=str(self._expires_at))

    def _apply_grant(self, grant: TokenGrant) -> None:
        self._access_token = grant.access_token
        if grant.refresh_token:
            self._refresh_token = grant.refresh_token
        if grant.scope:
            self._scope = grant.scope
        self._expires_at = grant.expires_at()

    async def _persist(self, grant: TokenGrant) -> None:
        """Upsert the rotated token and audit it. A store failure keeps the in-memory token."""
        try:
            await asyncio.to_thread(
                credential_repo.upsert_credential,
                self.user_id,
                grant.access_token,
                grant.refresh_token,
                self._expires_at,
                grant.scope,
                grant.token_type,
            )
        except Exception as e:
            logger.error("credential_manager.persist_failed", user_id=self.user_id, error=str(e))
            await asyncio.to_thread(
                credential_repo.append_audit,
                self.user_id,
                credential_repo.ACTION_TOKEN_UPDATE_FAILED,
                False,
                str(e),
            )
            return
        await asyncio.to_thread(
            credential_repo.append_audit, self.user_id, credential_repo.ACTION_TOKEN_UPDATED
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authorized request. A 401 triggers one refresh and one retry, then AuthenticationError."""
        token = await self.access_token()
        response = await self._send(method, url, token, **kwargs)
        if response.status_code != 401:
            return response
        logger.info("credential_manager.unauthorized_retry", user_id=self.user_id, url=url)
        await self.refresh(stale_token=token)
        response = await self._send(method, url, self._access_token, **kwargs)
        if response.status_code == 401:
            raise AuthenticationError(
                f"Google rejected refreshed credentials for user {self.user_id}",
                user_id=self.user_id,
            )
        return response

    async def _send(self, method: str, url: str, token: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token}"
        return await self._http.request(method, url, headers=headers, **kwargs)


ClientFactory = Callable[[int, OAuthCredential], AuthorizedClient]


@dataclass(frozen=True)
class AuthorizationResult:
    success: bool
    user_id: int
    expires_at: Optional[datetime] = None
    has_refresh_token: bool = False
    error: Optional[str] = None


def _load_credential(user_id: int) -> Optional[OAuthCredential]:
    return credential_repo.get_credential(user_id, OAUTH_PROVIDER_GOOGLE)


class CredentialManager:
    """Registry of per-user AuthorizedClients with single-flight initialization."""

    def __init__(
        self,
        oauth: Optional[GoogleOAuthClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        credential_loader: Optional[CredentialLoader] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(GMAIL_API_TIMEOUT_SECONDS),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self.oauth = oauth or GoogleOAuthClient(http_client=self._http)
        self._load = credential_loader or _load_credential
        self._client_factory = client_factory or self._default_client
        self._clients: dict[int, AuthorizedClient] = {}
        self._inflight: dict[int, asyncio.Task[AuthorizedClient]] = {}
        # Bumped by invalidate() so an initialization started earlier is not cached
        self._generation: dict[int, int] = {}

    def _default_client(self, user_id: int, credential: OAuthCredential) -> AuthorizedClient:
        return AuthorizedClient(user_id, credential, self.oauth, self._http)

    async def acquire(self, user_id: int) -> AuthorizedClient:
        """Return the live client for user_id, loading and constructing it at most once concurrently."""
        client = self._clients.get(user_id)
        if client is not None and not client.revoked:
            return client
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.create_task(self._initialize(user_id, self._generation.get(user_id, 0)))
            self._inflight[user_id] = task
            logger.debug("credential_manager.init_started", user_id=user_id)
        else:
            logger.debug("credential_manager.init_joined", user_id=user_id)
        # shield: one cancelled waiter must not cancel the shared initialization
        return await asyncio.shield(task)

    async def _initialize(self, user_id: int, generation: int) -> AuthorizedClient:
        try:
            credential = await asyncio.to_thread(self._load, user_id)
            if credential is None:
                raise AuthenticationError(
                    f"No Google credentials stored for user {user_id}; complete OAuth first",
                    user_id=user_id,
                )
            client = self._client_factory(user_id, credential)
            if self._generation.get(user_id, 0) == generation:
                self._clients[user_id] = client
            logger.info("credential_manager.client_ready", user_id=user_id)
            return client
        finally:
            if self._inflight.get(user_id) is asyncio.current_task():
                self._inflight.pop(user_id, None)

    def invalidate(self, user_id: int) -> None:
        """Drop the cached client so the next acquire reloads credentials from the store."""
        self._generation[user_id] = self._generation.get(user_id, 0) + 1
        removed = self._clients.pop(user_id, None)
        self._inflight.pop(user_id, None)
        logger.debug("credential_manager.invalidated", user_id=user_id, had_client=removed is not None)

    async def reinitialize(self, user_id: int) -> AuthorizedClient:
        """Invalidate then acquire again (used once after a provider auth failure)."""
        self.invalidate(user_id)
        return await self.acquire(user_id)

    async def is_authenticated(self, user_id: int) -> bool:
        """True when a credential exists and is unexpired or refreshable."""
        credential = await asyncio.to_thread(self._load, user_id)
        return credential is not None and credential_repo.has_usable_grant(credential)

    def authorization_url(self, user_id: int, login_hint: Optional[str] = None) -> str:
        return self.oauth.authorization_url(state=str(user_id), login_hint=login_hint)

    async def complete_authorization(self, user_id: int, auth_code: str) -> AuthorizationResult:
        """Exchange the code, persist tokens, drop any cached client, and audit the outcome."""
        user = await asyncio.to_thread(user_repo.get_user, user_id)
        if user is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        log = logger.bind(user_id=user_id)
        try:
            grant = await self.oauth.exchange_code(auth_code)
            expires_at = grant.expires_at()
            await asyncio.to_thread(
                credential_repo.upsert_credential,
                user_id,
                grant.access_token,
                grant.refresh_token,
                expires_at,
                grant.scope,
                grant.token_type,
            )
        except Exception as e:
            log.warning("credential_manager.oauth_failed", error=str(e))
            await asyncio.to_thread(
                credential_repo.append_audit,
                user_id,
                credential_repo.ACTION_OAUTH_FAILED,
                False,
                str(e),
            )
            return AuthorizationResult(success=False, user_id=user_id, error=str(e))

        self.invalidate(user_id)
        await asyncio.to_thread(
            credential_repo.append_audit, user_id, credential_repo.ACTION_OAUTH_COMPLETED
        )
        log.info("credential_manager.oauth_completed", has_refresh_token=grant.refresh_token is not None)
        return AuthorizationResult(
            success=True,
            user_id=user_id,
            expires_at=expires_at,
            has_refresh_token=grant.refresh_token is not None,
        )

    async def user_status(self, user_id: int) -> Optional[dict[str, Any]]:
        status = await asyncio.to_thread(credential_repo.user_status, user_id)
        if status is not None:
            status["client_cached"] = user_id in self._clients
        return status

    async def all_statuses(self) -> list[dict[str, Any]]:
        statuses = await asyncio.to_thread(credential_repo.all_user_statuses)
        for status in statuses:
            status["client_cached"] = status["user_id"] in self._clients
        return statuses

    async def aclose(self) -> None:
        self._clients.clear()
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._owns_http:
            await self._http.aclose()
