"""Gmail message helpers: headers, addresses, reply-threading ids, body extraction, raw encoding."""

import base64
import re
from email.mime.text import MIMEText
from email.utils import make_msgid, parseaddr
from typing import Optional

from family_events.mail_provider.gmail_models import GmailMessage, GmailMessagePart, OutgoingEmail

_ANGLE_ADDRESS = re.compile(r"<([^<>\s]+@[^<>\s]+)>")
_BARE_ADDRESS = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
_MESSAGE_ID = re.compile(r"<([^<>]+)>")


def header_map(message: GmailMessage) -> dict[str, str]:
    """Top-level headers keyed by lower-cased name (first occurrence wins)."""
    headers: dict[str, str] = {}
    for h in message.payload.headers:
        headers.setdefault(h.name.lower(), h.value)
    return headers


def extract_address(value: Optional[str]) -> str:
    """Return the bare, lower-cased email address from a From/To header value."""
    if not value:
        return ""
    m = _ANGLE_ADDRESS.search(value)
    if m:
        return m.group(1).strip().lower()
    _, addr = parseaddr(value)
    if addr and "@" in addr:
        return addr.strip().lower()
    m = _BARE_ADDRESS.search(value)
    return m.group(0).lower() if m else ""


def normalize_message_id(value: str) -> str:
    """Message-IDs are compared with angle brackets stripped."""
    return value.strip().strip("<>").strip()


def referenced_message_ids(headers: dict[str, str]) -> list[str]:
    """Ids from In-Reply-To then References, brackets stripped, most specific first, no duplicates."""
    ids: list[str] = []
    in_reply_to = headers.get("in-reply-to", "")
    references = headers.get("references", "")
    for raw in (in_reply_to, " ".join(reversed(references.split()))):
        found = _MESSAGE_ID.findall(raw) or raw.split()
        for item in found:
            mid = normalize_message_id(item)
            if mid and mid not in ids:
                ids.append(mid)
    return ids


def decode_base64url(data: Optional[str]) -> str:
    """Decode Gmail's base64url body data (padding optional)."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _find_part(part: GmailMessagePart, mime_type: str) -> Optional[GmailMessagePart]:
    """Depth-first search for the first part with mime_type and inline data."""
    if part.mimeType.lower() == mime_type and part.body.data and not part.filename:
        return part
    for child in part.parts:
        found = _find_part(child, mime_type)
        if found is not None:
            return found
    return None


def extract_body(message: GmailMessage) -> tuple[str, str]:
    """Return (text, content_type) preferring the first text/plain part, then text/html."""
    payload = message.payload
    if not payload.parts and payload.body.data:
        content_type = "html" if payload.mimeType.lower() == "text/html" else "text"
        return decode_base64url(payload.body.data), content_type
    plain = _find_part(payload, "text/plain")
    if plain is not None:
        return decode_base64url(plain.body.data), "text"
    html_part = _find_part(payload, "text/html")
    if html_part is not None:
        return decode_base64url(html_part.body.data), "html"
    return message.snippet or "", "text"


def new_message_id(domain: Optional[str] = None) -> str:
    """RFC 5322 Message-ID with angle brackets, e.g. <170...@family-events>."""
    return make_msgid(idstring="proposal", domain=domain or "family-events.local")


def build_raw_message(email: OutgoingEmail, sender: Optional[str] = None) -> str:
    """MIME-encode an OutgoingEmail into the base64url 'raw' field Gmail's send API takes."""
    msg = MIMEText(email.body, "plain", "utf-8")
    msg["To"] = email.to
    if sender:
        msg["From"] = sender
    msg["Subject"] = email.subject
    msg["Message-ID"] = email.message_id
    if email.in_reply_to:
        msg["In-Reply-To"] = email.in_reply_to
    if email.references:
        msg["References"] = " ".join(email.references)
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
