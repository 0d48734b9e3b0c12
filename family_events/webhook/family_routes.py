"""Family member API: list, add, remove and reload the members whose replies are accepted."""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from family_events.webhook.family_config import (
    FamilyMember,
    is_valid_email,
    load_family_members,
    save_family_members,
)

router = APIRouter(prefix="/family", tags=["family"])


class MemberBody(BaseModel):
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None


def set_members(app, members: list[FamilyMember]) -> None:
    """Swap the member list everywhere it is read (notifier and email listener share it)."""
    app.state.members = members
    notifier = getattr(app.state, "notifier", None)
    if notifier is not None:
        notifier.members = members
    listener = getattr(app.state, "email_listener", None)
    if listener is not None:
        listener.members = members


def _members(request: Request) -> list[FamilyMember]:
    return list(getattr(request.app.state, "members", []))


def _payload(members: list[FamilyMember]) -> list[dict[str, Any]]:
    return [m.model_dump() for m in members]


@router.get("/members")
async def list_members(request: Request) -> dict[str, Any]:
    return {"members": _payload(_members(request))}


@router.post("/members/reload")
async def reload_members(request: Request) -> dict[str, Any]:
    """Reload members from the config file."""
    set_members(request.app, load_family_members())
    return {"members": _payload(_members(request))}


@router.post("/members")
async def add_member(request: Request, body: MemberBody) -> dict[str, Any]:
    """Append a member. Validates email and phone; persists and refreshes the in-memory list."""
    email = (body.email or "").strip().lower() or None
    if email is None and not (body.phone or "").strip():
        raise HTTPException(status_code=400, detail="email or phone is required")
    if email is not None and not is_valid_email(email):
        raise HTTPException(status_code=400, detail=f"Invalid email format: {body.email!r}")
    current = _members(request)
    if email is not None and any(m.email == email for m in current):
        return {"members": _payload(current), "message": "already present"}
    current.append(FamilyMember(name=body.name.strip(), email=email, phone=body.phone))
    try:
        save_family_members(current)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    set_members(request.app, load_family_members())
    return {"members": _payload(_members(request)), "added": email or body.phone}


@router.delete("/members")
async def remove_member(request: Request, email: str) -> dict[str, Any]:
    normalized = email.strip().lower()
    current = _members(request)
    remaining = [m for m in current if m.email != normalized]
    if len(remaining) == len(current):
        raise HTTPException(status_code=404, detail=f"Not a family member: {normalized!r}")
    try:
        save_family_members(remaining)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    set_members(request.app, remaining)
    return {"members": _payload(remaining), "removed": normalized}
