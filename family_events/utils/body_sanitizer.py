"""Reply body cleaning with a configurable pipeline.

Parents reply from phone mail clients that append the quoted proposal,
signatures and sign-offs; only the first few lines of their own text carry
the answer.

Usage:
    from family_events.utils.body_sanitizer import clean_reply_body

    answer = clean_reply_body(raw_body, content_type="html")
"""

import html
import re
from typing import Callable

from bs4 import BeautifulSoup

# (text, content_type) -> text
Sanitizer = Callable[[str, str], str]

REPLY_MAX_LINES = 3


def html_to_text(text: str, content_type: str) -> str:
    """Convert HTML to plain text, keeping line structure."""
    if content_type.lower() != "html" or not text.strip():
        return text

    soup = BeautifulSoup(text, "lxml")
    for el in soup(["script", "style", "head", "meta", "link"]):
        el.decompose()
    # Gmail wraps the quoted original in this container
    for el in soup.select("div.gmail_quote, blockquote"):
        el.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(["p", "div", "tr", "li"]):
        tag.insert_before("\n")
        tag.insert_after("\n")

    return html.unescape(soup.get_text(separator=" "))


def decode_special_characters(text: str, content_type: str) -> str:
    """Zero-width chars, smart quotes, NBSP and CRLF line endings."""
    text = re.sub(r"[\u200b\u200c\u200d\ufeff]", "", text)
    replacements = {
        "\u2018": "'", "\u2019": "'",
        "\u201c": '"', "\u201d": '"',
        "\u00a0": " ",
        "\r\n": "\n", "\r": "\n",
    }
    for old, new in replacements.items():
        text = text.replace(old, new)
    return text


_QUOTE_START_PATTERNS = [
    re.compile(r"^On\s+.{5,120}\s+wrote:\s*$", re.I),
    re.compile(r"^-{3,}\s*Original\s+Message\s*-{3,}\s*$", re.I),
    re.compile(r"^From:\s+.+$", re.I),
    re.compile(r"^Sent from my \w+", re.I),
]


def remove_quoted_replies(text: str, content_type: str) -> str:
    """Drop '>' quoted lines and everything after a quote header ("On ... wrote:")."""
    result = []
    for line in text.split("\n"):
        stripped = line.strip()
        if any(p.match(stripped) for p in _QUOTE_START_PATTERNS):
            break
        if stripped.startswith(">"):
            continue
        result.append(line)
    return "\n".join(result)


_SIGNOFF_PATTERN = re.compile(
    r"^(best(\s+regards)?|regards|thanks|thank\s+you|cheers|sincerely|(kind|warm)\s+regards)\b[,!.]?",
    re.I,
)


def remove_signatures(text: str, content_type: str) -> str:
    """Cut at a '--' signature delimiter or a sign-off line."""
    lines = text.split("\n")
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped == "--" or line.rstrip() == "-- ":
            return "\n".join(lines[:i])
        # A sign-off on the first line is the answer itself ("Thanks, yes!")
        if i > 0 and _SIGNOFF_PATTERN.match(stripped):
            return "\n".join(lines[:i])
    return text


def normalize_whitespace(text: str, content_type: str) -> str:
    """Collapse horizontal whitespace and drop blank lines."""
    text = re.sub(r"[^\S\n]+", " ", text)
    lines = [line.strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line).strip()


def keep_first_lines(max_lines: int) -> Sanitizer:
    """Return a sanitizer keeping only the first max_lines lines."""
    def _keep(text: str, content_type: str) -> str:
        return "\n".join(text.split("\n")[:max_lines])
    return _keep


REPLY_PIPELINE: list[Sanitizer] = [
    decode_special_characters,
    html_to_text,
    remove_quoted_replies,
    remove_signatures,
    normalize_whitespace,
    keep_first_lines(REPLY_MAX_LINES),
]


def sanitize(text: str, content_type: str = "text", pipeline: list[Sanitizer] | None = None) -> str:
    """Run text through a sanitizer pipeline (REPLY_PIPELINE by default)."""
    if not text:
        return ""
    for sanitizer in (pipeline or REPLY_PIPELINE):
        text = sanitizer(text, content_type)
    return text


def clean_reply_body(text: str, content_type: str = "text") -> str:
    """Extract the parent's own answer from an email reply body."""
    return sanitize(text, content_type=content_type, pipeline=REPLY_PIPELINE)
