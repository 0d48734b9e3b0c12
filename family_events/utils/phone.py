"""Phone number normalization to E.164 (North American default)."""

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None, default_country_code: str = "1") -> str:
    """'(415) 555-0100' -> '+14155550100'. Returns '' for input without digits."""
    if not raw:
        return ""
    s = raw.strip()
    digits = _NON_DIGITS.sub("", s)
    if not digits:
        return ""
    if s.startswith("+"):
        return f"+{digits}"
    if s.startswith("00"):
        return f"+{digits[2:]}"
    if len(digits) == 10:
        return f"+{default_country_code}{digits}"
    if len(digits) == 11 and digits.startswith(default_country_code):
        return f"+{digits}"
    return f"+{digits}"
