"""Conservative-language policy for any prose surfaced to readers.

Text is rejected when it contains an absolute or causal claim, and is only
accepted when it also carries at least one hedged or evidence-attributing
marker. Matching is a case-insensitive substring test.
"""
from __future__ import annotations

import logging
from typing import List

from core.errors import ConservativeLanguageViolation

logger = logging.getLogger(__name__)

BANNED_PHRASES = (
    "proves",
    "definitely",
    "always",
    "never",
    "caused by",
    "confirms",
    "demonstrates conclusively",
    "all patients",
    "establishes",
    "the consensus",
)

HEDGE_MARKERS = (
    "suggests",
    "may indicate",
    "appears to",
    "evidence supports",
    "study",
    "studies",
    "paper",
    "papers",
    "found",
    "research shows",
)

MISSING_HEDGE = "missing hedged or evidentiary marker"


def find_violations(text: str) -> List[str]:
    lower = (text or "").lower()
    violations = [f"banned phrase: {phrase}" for phrase in BANNED_PHRASES if phrase in lower]
    if not any(marker in lower for marker in HEDGE_MARKERS):
        violations.append(MISSING_HEDGE)
    return violations


def validate_conservative_language(text: str) -> bool:
    return not find_violations(text)


def check_conservative_language(text: str) -> str:
    violations = find_violations(text)
    if violations:
        raise ConservativeLanguageViolation(text, violations)
    return text


def enforce_conservative_language(text: str, placeholder: str, context: str = "") -> str:
    """Return ``text`` if it passes, otherwise log the violation and return ``placeholder``."""
    try:
        return check_conservative_language(text)
    except ConservativeLanguageViolation as exc:
        logger.warning("[language] %s: %s; substituting placeholder. text=%r", context or "prose", exc, text)
        return placeholder
