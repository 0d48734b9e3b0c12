"""Family member config: who receives proposals and whose replies are accepted (load/save from JSON)."""

import json
import os
from pathlib import Path
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel

from family_events.config import PROJECT_ROOT
from family_events.utils.logger import get_logger
from family_events.utils.phone import normalize_phone

logger = get_logger("family_events.webhook.family_config")


class FamilyMember(BaseModel):
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None


def get_family_config_path() -> Path:
    """Path to family config file (JSON). Override via FAMILY_CONFIG_PATH env."""
    raw = os.getenv("FAMILY_CONFIG_PATH", "").strip()
    if raw:
        return Path(raw)
    return PROJECT_ROOT / "config" / "family.json"


def is_valid_email(addr: str) -> bool:
    if not addr or not isinstance(addr, str) or not addr.strip():
        return False
    try:
        validate_email(addr.strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _normalize_member(raw: dict, path: Path) -> Optional[FamilyMember]:
    """Lower-case the email and convert the phone to E.164; None (logged) when neither is usable."""
    email = (raw.get("email") or "").strip().lower() or None
    if email is not None and not is_valid_email(email):
        logger.warning("family_config.invalid_email_skipped", email=email, path=str(path))
        email = None
    phone = None
    if raw.get("phone"):
        phone = normalize_phone(str(raw["phone"])) or None
        if phone is None:
            logger.warning("family_config.invalid_phone_skipped", name=raw.get("name"), path=str(path))
    if email is None and phone is None:
        return None
    return FamilyMember(name=str(raw.get("name") or "").strip(), email=email, phone=phone)


def load_family_members(path: Optional[Path] = None) -> list[FamilyMember]:
    """Read members from the config file. Missing or unreadable file yields []."""
    path = path or get_family_config_path()
    if not path.exists():
        logger.debug("family_config.file_missing", path=str(path))
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("family_config.read_error", path=str(path), error=str(e))
        return []
    raw_members = data.get("members") if isinstance(data, dict) else None
    if not isinstance(raw_members, list):
        return []
    members: list[FamilyMember] = []
    seen: set[tuple[Optional[str], Optional[str]]] = set()
    for raw in raw_members:
        if not isinstance(raw, dict):
            continue
        member = _normalize_member(raw, path)
        if member is None or (member.email, member.phone) in seen:
            continue
        seen.add((member.email, member.phone))
        members.append(member)
    return members


def save_family_members(members: list[FamilyMember], path: Optional[Path] = None) -> None:
    """Persist members. Raises ValueError on an invalid email or phone."""
    path = path or get_family_config_path()
    out = []
    for m in members:
        email = (m.email or "").strip().lower() or None
        if email is not None and not is_valid_email(email):
            raise ValueError(f"Invalid email format: {m.email!r}")
        phone = (normalize_phone(m.phone) or None) if m.phone else None
        if m.phone and phone is None:
            raise ValueError(f"Invalid phone number: {m.phone!r}")
        if email is None and phone is None:
            raise ValueError("A family member needs an email or a phone number")
        out.append({"name": m.name, "email": email, "phone": phone})
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"members": out}, indent=2), encoding="utf-8")
    logger.info("family_config.saved", path=str(path), count=len(out))


def member_for_email(members: list[FamilyMember], address: str) -> Optional[FamilyMember]:
    normalized = (address or "").strip().lower()
    return next((m for m in members if m.email and m.email == normalized), None)


def member_for_phone(members: list[FamilyMember], phone: str) -> Optional[FamilyMember]:
    normalized = normalize_phone(phone)
    if not normalized:
        return None
    return next((m for m in members if m.phone == normalized), None)


def primary_recipient(members: list[FamilyMember], channel: str) -> Optional[FamilyMember]:
    """First member reachable on channel (phone for sms, email for email)."""
    for m in members:
        if channel == "sms" and m.phone:
            return m
        if channel == "email" and m.email:
            return m
    return None
