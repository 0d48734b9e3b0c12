"""OAuth administration API: start and complete the Google flow, per-user credential status."""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from family_events.auth.credential_manager import AuthorizationResult, CredentialManager
from family_events.db.repositories import user_repo
from family_events.errors import UserNotFoundError
from family_events.utils.logger import get_logger

logger = get_logger("family_events.webhook.oauth_routes")

router = APIRouter(prefix="/oauth", tags=["oauth"])


class CompleteAuthorizationBody(BaseModel):
    user_id: int
    code: str


def _credentials(request: Request) -> CredentialManager:
    manager = getattr(request.app.state, "credentials", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Credential manager not configured")
    return manager


def _result_dict(result: AuthorizationResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "user_id": result.user_id,
        "expires_at": result.expires_at.isoformat() if result.expires_at else None,
        "has_refresh_token": result.has_refresh_token,
        "error": result.error,
    }


async def _complete(manager: CredentialManager, user_id: int, code: str) -> dict[str, Any]:
    if not code or not code.strip():
        raise HTTPException(status_code=400, detail="code is required")
    try:
        result = await manager.complete_authorization(user_id, code.strip())
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error or "authorization failed")
    return _result_dict(result)


@router.get("/google/start")
async def start_google_oauth(
    request: Request,
    user_id: int = Query(..., description="User whose mailbox is being connected"),
) -> dict[str, Any]:
    """Return the Google consent URL for a user (state carries the user id)."""
    manager = _credentials(request)
    if not manager.oauth.configured:
        raise HTTPException(status_code=400, detail="GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not configured")
    user = await asyncio.to_thread(user_repo.get_user, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    url = manager.authorization_url(user_id, login_hint=user.email)
    logger.info("oauth.start", user_id=user_id)
    return {"user_id": user_id, "authorization_url": url}


@router.post("/google/complete")
async def complete_google_oauth(request: Request, body: CompleteAuthorizationBody) -> dict[str, Any]:
    """Exchange an authorization code for a user's tokens."""
    return await _complete(_credentials(request), body.user_id, body.code)


@router.get("/google/callback")
async def google_oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
) -> dict[str, Any]:
    """Redirect target registered with Google; state is the user id from /google/start."""
    if error:
        logger.warning("oauth.callback.denied", error=error, state=state)
        raise HTTPException(status_code=400, detail=f"Authorization denied: {error}")
    if not state or not state.isdigit():
        raise HTTPException(status_code=400, detail="Missing or invalid state")
    return await _complete(_credentials(request), int(state), code or "")


@router.get("/status")
async def oauth_status_all(request: Request) -> dict[str, Any]:
    statuses = await _credentials(request).all_statuses()
    return {
        "users": statuses,
        "authenticated": sum(1 for s in statuses if s["authenticated"]),
        "total": len(statuses),
    }


@router.get("/status/{user_id}")
async def oauth_status_user(request: Request, user_id: int) -> dict[str, Any]:
    status = await _credentials(request).user_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return status
