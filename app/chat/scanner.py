"""
Crisis keyword scanner.

Flags text that contains self-harm or suicide language so the pipeline can
raise an alert for human review. Detection only: severity is decided by
the people who triage alerts.

Usage:
    from chat.scanner import scan

    result = scan("I want to die")
    if result:
        result.category  # "suicide"
        result.keyword   # "want to die"

Design Decisions:
    - Plain case-insensitive substring matching. Recall matters more than
      precision here, so "cutting" in "cutting class" still matches.
    - The keyword table is configuration (CHAT_CRISIS_KEYWORDS), falling
      back to CRISIS_CONFIG.DEFAULT_KEYWORDS.
    - scan() never raises; malformed input is treated as no match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings

from chat.constants import CRISIS_CONFIG

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrisisScanResult:
    """Outcome of a scan. Truthy when a keyword matched."""

    matched: bool
    category: str | None = None
    keyword: str | None = None

    def __bool__(self) -> bool:
        return self.matched


NO_MATCH = CrisisScanResult(matched=False)


def get_crisis_keywords() -> dict[str, tuple[str, ...]]:
    """Return the configured category -> phrases table."""
    keywords = getattr(settings, "CHAT_CRISIS_KEYWORDS", None)
    return keywords or CRISIS_CONFIG.DEFAULT_KEYWORDS


def _normalize(text: str) -> str:
    # Collapse runs of whitespace so "want  to\ndie" still matches
    return " ".join(text.casefold().split())


def scan(text, keywords: dict[str, tuple[str, ...]] | None = None) -> CrisisScanResult:
    """
    Check text for crisis keywords.

    Args:
        text: Message content; anything that is not a str is no match
        keywords: Optional category -> phrases table overriding settings

    Returns:
        CrisisScanResult with the first matching category and phrase
    """
    if not isinstance(text, str) or not text:
        return NO_MATCH

    try:
        haystack = _normalize(text)
        for category, phrases in (keywords or get_crisis_keywords()).items():
            for phrase in phrases:
                needle = _normalize(phrase)
                if needle and needle in haystack:
                    return CrisisScanResult(matched=True, category=category, keyword=phrase)
    except (AttributeError, TypeError):
        logger.exception("Crisis keyword table is malformed")
    return NO_MATCH


def is_crisis(text) -> bool:
    return scan(text).matched
