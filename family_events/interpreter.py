"""Free-text reply interpretation.

``interpret(text)`` is pure: it maps a parent's SMS or email reply to an
action and a confidence tier. Resolution order, first match wins:

1. exact trivial tokens ("yes", "y", "ok", "no", "0", ...) -> high
2. payment keywords -> payment_confirmed/high
3. hedging ("maybe", "not sure", ...) -> unclear/low, whatever else is present
4. cancellation together with an approval signal -> unclear/low;
   cancellation alone -> cancelled/high
5. rejection phrases ("not interested") suppress single-word approval
6. remaining keywords match whole words; emoji/symbols match by containment
7. approval and rejection both present, or neither -> unclear/low
"""

import re
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel


class ReplyAction(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PAYMENT_CONFIRMED = "payment_confirmed"
    CANCELLED = "cancelled"
    UNCLEAR = "unclear"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Interpretation(BaseModel):
    """Result of interpreting one reply."""

    action: ReplyAction
    confidence: Confidence

    model_config = {"frozen": True}

    @property
    def is_decisive(self) -> bool:
        return self.action is not ReplyAction.UNCLEAR


EXACT_APPROVAL = frozenset(
    {
        "yes", "y", "yeah", "yep", "yup", "yas", "ya", "yea", "sure", "ok", "okay",
        "good", "great", "perfect", "awesome", "approve", "book", "register", "go",
        "1", "true", "accept", "✓", "✔", "👍",
    }
)
EXACT_REJECTION = frozenset(
    {
        "no", "n", "nope", "nah", "na", "nay", "pass", "skip", "reject", "decline",
        "0", "false", "❌", "👎",
    }
)

APPROVAL_WORDS = (
    "yes", "yeah", "yep", "yup", "sure", "ok", "okay", "approve", "approved",
    "book", "register", "accept", "✓", "✔", "👍",
)
APPROVAL_PHRASES = (
    "sounds good", "sure thing", "do it", "lets do it", "let's do it", "love it",
    "want it", "sign us up", "count me in", "count us in", "go for it",
)
REJECTION_WORDS = (
    "no", "nope", "nah", "pass", "skip", "reject", "decline", "❌", "👎",
)
REJECTION_PHRASES = (
    "not interested", "not now", "next time", "not this time",
    "no thanks", "no thank you", "not really", "don't book", "do not book",
)
AMBIGUOUS_WORDS = ("maybe", "perhaps", "possibly", "might", "hmm", "dunno", "unsure", "idk")
AMBIGUOUS_PHRASES = ("not sure", "don't know", "let me think", "let me check")
PAYMENT_WORDS = ("pay", "paid", "payment", "done", "complete", "completed")
CANCEL_WORDS = ("cancel", "cancelled", "canceled", "abort")

_APOSTROPHES = str.maketrans({"\u2018": "'", "\u2019": "'"})

_pattern_cache: dict[str, re.Pattern[str]] = {}


def _term_pattern(term: str) -> re.Pattern[str]:
    pattern = _pattern_cache.get(term)
    if pattern is None:
        pattern = re.compile(r"(?<![\w'])" + re.escape(term) + r"(?![\w'])")
        _pattern_cache[term] = pattern
    return pattern


def _is_symbol(term: str) -> bool:
    return not any(ch.isalnum() for ch in term)


def _contains_term(text: str, term: str) -> bool:
    """Whole-word (or whole-phrase) match; symbols and emoji match anywhere."""
    if _is_symbol(term):
        return term in text
    return _term_pattern(term).search(text) is not None


def _matches_any(text: str, terms: Iterable[str]) -> bool:
    return any(_contains_term(text, t) for t in terms)


def normalize(text: str) -> str:
    """Lower-case, trim, and fold smart apostrophes and trailing punctuation."""
    normalized = text.translate(_APOSTROPHES).strip().lower()
    return normalized.rstrip(".!?,;: ")


_UNCLEAR = Interpretation(action=ReplyAction.UNCLEAR, confidence=Confidence.LOW)


def interpret(text: Any) -> Interpretation:
    """Map a reply to an action and confidence. Non-text or empty input is unclear/low."""
    if not isinstance(text, str):
        return _UNCLEAR
    normalized = normalize(text)
    if not normalized:
        # Reply that was only punctuation, e.g. "?"
        return _UNCLEAR

    if normalized in EXACT_APPROVAL:
        return Interpretation(action=ReplyAction.APPROVED, confidence=Confidence.HIGH)
    if normalized in EXACT_REJECTION:
        return Interpretation(action=ReplyAction.REJECTED, confidence=Confidence.HIGH)

    if _matches_any(normalized, PAYMENT_WORDS):
        return Interpretation(action=ReplyAction.PAYMENT_CONFIRMED, confidence=Confidence.HIGH)

    if _matches_any(normalized, AMBIGUOUS_PHRASES) or _matches_any(normalized, AMBIGUOUS_WORDS):
        return _UNCLEAR

    has_rejection_phrase = _matches_any(normalized, REJECTION_PHRASES)
    has_rejection = has_rejection_phrase or _matches_any(normalized, REJECTION_WORDS)
    has_approval = not has_rejection_phrase and (
        _matches_any(normalized, APPROVAL_PHRASES) or _matches_any(normalized, APPROVAL_WORDS)
    )
    has_cancel = _matches_any(normalized, CANCEL_WORDS)

    if has_cancel:
        if has_approval:
            return _UNCLEAR
        return Interpretation(action=ReplyAction.CANCELLED, confidence=Confidence.HIGH)

    if has_approval and has_rejection:
        return _UNCLEAR
    if has_approval:
        return Interpretation(action=ReplyAction.APPROVED, confidence=Confidence.MEDIUM)
    if has_rejection:
        return Interpretation(action=ReplyAction.REJECTED, confidence=Confidence.MEDIUM)
    return _UNCLEAR
