"""Cheap document-level quality gates applied right after extraction."""

from typing import Optional

MIN_TEXT_CHARS = 300
MAX_BOILERPLATE_RATIO = 0.3

CHROME_WORDS = frozenset(['home', 'about', 'contact', 'menu', 'navigation', 'footer', 'copyright'])

REJECT_TOO_SHORT = 'too_short'
REJECT_BOILERPLATE = 'boilerplate'


def boilerplate_ratio(text: str) -> float:
    """Fraction of whitespace-separated tokens that are navigation/chrome words."""
    words = text.split()
    if not words:
        return 0.0
    chrome = sum(1 for word in words if word.lower() in CHROME_WORDS)
    return chrome / len(words)


def quality_rejection_reason(text: str, min_chars: int = MIN_TEXT_CHARS,
                             max_boilerplate: float = MAX_BOILERPLATE_RATIO) -> Optional[str]:
    """Return why a document fails the quality gates, or None if it passes."""
    if len(text) < min_chars:
        return REJECT_TOO_SHORT
    if boilerplate_ratio(text) > max_boilerplate:
        return REJECT_BOILERPLATE
    return None


def is_quality_content(text: str, min_chars: int = MIN_TEXT_CHARS,
                       max_boilerplate: float = MAX_BOILERPLATE_RATIO) -> bool:
    return quality_rejection_reason(text, min_chars, max_boilerplate) is None
