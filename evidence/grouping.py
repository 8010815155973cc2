from __future__ import annotations

import re
from typing import List, Sequence, Set

from core.models import Consistency, Finding

SIMILARITY_THRESHOLD = 0.6
MIN_WORD_LENGTH = 5


def _normalize(description: str) -> str:
    return re.sub(r"\s+", " ", (description or "").strip().lower())


def _key_words(description: str) -> Set[str]:
    return {word for word in _normalize(description).split(" ") if len(word) >= MIN_WORD_LENGTH}


def is_similar_description(a: str, b: str) -> bool:
    """Shared key words over the smaller key-word count must reach 60%.

    Descriptions without any word longer than four characters only match
    when they are identical after normalization.
    """
    words_a = _key_words(a)
    words_b = _key_words(b)
    if not words_a or not words_b:
        return _normalize(a) == _normalize(b)
    overlap = len(words_a & words_b)
    return overlap / min(len(words_a), len(words_b)) >= SIMILARITY_THRESHOLD


def group_similar_findings(findings: Sequence[Finding]) -> List[List[Finding]]:
    groups: List[List[Finding]] = []
    for finding in findings:
        for group in groups:
            if is_similar_description(finding.description, group[0].description):
                group.append(finding)
                break
        else:
            groups.append([finding])
    return groups


def assess_consistency(findings: Sequence[Finding]) -> Consistency:
    if len(findings) == 1:
        return Consistency.HIGH
    if any(f.has_contradiction for f in findings):
        return Consistency.LOW
    total_papers = sum(len(f.supporting_papers) for f in findings)
    if total_papers == 0:
        return Consistency.LOW
    ratio = sum(f.peer_reviewed_count for f in findings) / total_papers
    if ratio > 0.8:
        return Consistency.HIGH
    if ratio > 0.5:
        return Consistency.MEDIUM
    return Consistency.LOW
