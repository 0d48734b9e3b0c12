"""OAuth credential store and append-only audit trail."""

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from family_events.config import OAUTH_PROVIDER_GOOGLE, TOKEN_EXPIRY_BUFFER_SECONDS
from family_events.db import get_session
from family_events.db.base import as_utc, utcnow
from family_events.db.models.oauth import CredentialAuditEntry, OAuthCredential
from family_events.db.models.user import User
from family_events.utils.logger import get_logger

logger = get_logger("family_events.db.credential_repo")

ACTION_TOKEN_UPDATED = "token_updated"
ACTION_TOKEN_UPDATE_FAILED = "token_update_failed"
ACTION_REFRESH_FAILED = "refresh_failed"
ACTION_OAUTH_COMPLETED = "oauth_completed"
ACTION_OAUTH_FAILED = "oauth_failed"
ACTION_CLIENT_INVALIDATED = "client_invalidated"


def _insert_for(session):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Credential upsert not supported on dialect {name!r}")


def upsert_credential(
    user_id: int,
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    scope: Optional[str] = None,
    token_type: str = "Bearer",
    provider: str = OAUTH_PROVIDER_GOOGLE,
) -> OAuthCredential:
    """Insert or overwrite the single (user, provider) row atomically.

    A missing refresh_token keeps the stored one (Google omits it on refresh).
    """
    now = utcnow()
    with get_session() as session:
        insert = _insert_for(session)
        stmt = insert(OAuthCredential).values(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=token_type,
            scope=scope,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OAuthCredential.user_id, OAuthCredential.provider],
            set_={
                "access_token": stmt.excluded.access_token,
                "refresh_token": func.coalesce(stmt.excluded.refresh_token, OAuthCredential.refresh_token),
                "token_type": stmt.excluded.token_type,
                "scope": func.coalesce(stmt.excluded.scope, OAuthCredential.scope),
                "expires_at": stmt.excluded.expires_at,
                "updated_at": now,
            },
        )
        session.execute(stmt)
        row = session.scalars(
            select(OAuthCredential)
            .where(OAuthCredential.user_id == user_id)
            .where(OAuthCredential.provider == provider)
        ).one()
        session.refresh(row)
        session.expunge(row)
        return row


def get_credential(user_id: int, provider: str = OAUTH_PROVIDER_GOOGLE) -> Optional[OAuthCredential]:
    with get_session() as session:
        row = session.scalars(
            select(OAuthCredential)
            .where(OAuthCredential.user_id == user_id)
            .where(OAuthCredential.provider == provider)
        ).first()
        if row is not None:
            session.expunge(row)
        return row


def expires_soon(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when expires_at falls within the configured buffer (unknown expiry counts as live)."""
    expires_at = as_utc(expires_at)
    if expires_at is None:
        return False
    now = now or utcnow()
    return expires_at <= now + timedelta(seconds=TOKEN_EXPIRY_BUFFER_SECONDS)


def is_expired(credential: OAuthCredential, now: Optional[datetime] = None) -> bool:
    return expires_soon(credential.expires_at, now)


def has_usable_grant(credential: OAuthCredential, now: Optional[datetime] = None) -> bool:
    """A live access token, or a refresh token that can mint one."""
    return bool(credential.refresh_token) or not is_expired(credential, now)


def append_audit(
    user_id: Optional[int],
    action: str,
    success: bool = True,
    error_message: Optional[str] = None,
    provider: str = OAUTH_PROVIDER_GOOGLE,
) -> None:
    """Append an audit entry. Never raises: a failed audit write is logged and dropped."""
    try:
        with get_session() as session:
            session.add(
                CredentialAuditEntry(
                    user_id=user_id,
                    provider=provider,
                    action=action,
                    success=success,
                    error_message=error_message[:2000] if error_message else None,
                )
            )
    except Exception as e:
        logger.error(
            "credential_audit.write_failed",
            user_id=user_id,
            action=action,
            error=str(e),
        )


def list_audit(user_id: Optional[int] = None, limit: int = 50) -> list[CredentialAuditEntry]:
    """Most recent audit entries first."""
    with get_session() as session:
        q = (
            select(CredentialAuditEntry)
            .order_by(CredentialAuditEntry.created_at.desc(), CredentialAuditEntry.id.desc())
            .limit(limit)
        )
        if user_id is not None:
            q = q.where(CredentialAuditEntry.user_id == user_id)
        rows = list(session.scalars(q).all())
        for row in rows:
            session.expunge(row)
        return rows


def _last_error(session, user_id: int, provider: str) -> Optional[CredentialAuditEntry]:
    return session.scalars(
        select(CredentialAuditEntry)
        .where(CredentialAuditEntry.user_id == user_id)
        .where(CredentialAuditEntry.provider == provider)
        .where(CredentialAuditEntry.success.is_(False))
        .order_by(CredentialAuditEntry.created_at.desc(), CredentialAuditEntry.id.desc())
        .limit(1)
    ).first()


def _status_row(
    user: User,
    credential: Optional[OAuthCredential],
    last_error: Optional[CredentialAuditEntry],
    now: datetime,
) -> dict[str, Any]:
    expires_at = as_utc(credential.expires_at) if credential else None
    updated_at = as_utc(credential.updated_at) if credential else None
    error_at = as_utc(last_error.created_at) if last_error else None
    # Errors older than the last successful write are stale
    if error_at is not None and updated_at is not None and error_at <= updated_at:
        last_error = None
    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "active": user.active,
        "authenticated": credential is not None and has_usable_grant(credential, now),
        "access_token_expired": credential is not None and is_expired(credential, now),
        "has_refresh_token": bool(credential and credential.refresh_token),
        "expires_at": expires_at.isoformat() if expires_at else None,
        "last_updated": updated_at.isoformat() if updated_at else None,
        "error": last_error.error_message if last_error else None,
    }


def user_status(user_id: int, provider: str = OAUTH_PROVIDER_GOOGLE) -> Optional[dict[str, Any]]:
    """Authentication status for one user, or None if the user does not exist."""
    now = utcnow()
    with get_session() as session:
        user = session.get(User, user_id)
        if user is None:
            return None
        credential = session.scalars(
            select(OAuthCredential)
            .where(OAuthCredential.user_id == user_id)
            .where(OAuthCredential.provider == provider)
        ).first()
        return _status_row(user, credential, _last_error(session, user_id, provider), now)


def all_user_statuses(provider: str = OAUTH_PROVIDER_GOOGLE) -> list[dict[str, Any]]:
    """Authentication status for every user (users without tokens included)."""
    now = utcnow()
    with get_session() as session:
        q = (
            select(User, OAuthCredential)
            .outerjoin(
                OAuthCredential,
                (OAuthCredential.user_id == User.id) & (OAuthCredential.provider == provider),
            )
            .order_by(User.id.asc())
        )
        rows = list(session.execute(q).all())
        return [
            _status_row(user, credential, _last_error(session, user.id, provider), now)
            for user, credential in rows
        ]
