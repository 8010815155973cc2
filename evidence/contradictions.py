from __future__ import annotations

import dataclasses
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from core.models import (
    Consistency,
    Contradiction,
    ContradictionSeverity,
    ContradictionView,
    Finding,
    Paper,
    StudyType,
)

from .language import enforce_conservative_language

logger = logging.getLogger(__name__)

TOPIC_SIMILARITY_THRESHOLD = 0.6

OPPOSING_TERMS = (
    ("increased", "decreased"),
    ("higher", "lower"),
    ("elevated", "reduced"),
    ("improved", "worsened"),
    ("positive", "negative"),
    ("present", "absent"),
    ("found", "not found"),
)

INTERPRETATION_PLACEHOLDER = "Papers on this topic report conflicting results; more research is needed."


def topic_similarity(a: str, b: str) -> float:
    words_a = {w for w in a.lower().split() if len(w) > 3}
    words_b = {w for w in b.lower().split() if len(w) > 3}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def results_conflict(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    lower_a, lower_b = a.lower(), b.lower()
    for term_a, term_b in OPPOSING_TERMS:
        if (term_a in lower_a and term_b in lower_b) or (term_b in lower_a and term_a in lower_b):
            return True
    return False


def _result_text(finding: Finding) -> Optional[str]:
    return finding.quantitative_result or finding.qualitative_result


def _view(finding: Finding) -> ContradictionView:
    return ContradictionView(
        description=finding.description,
        papers=list(finding.supporting_papers),
        evidence=_result_text(finding) or "",
    )


def determine_severity(a: Finding, b: Finding) -> ContradictionSeverity:
    count_a, count_b = len(a.supporting_papers), len(b.supporting_papers)
    if count_a >= 2 and count_b >= 2:
        return ContradictionSeverity.MAJOR
    has_trial = StudyType.CLINICAL_TRIAL in a.study_types or StudyType.CLINICAL_TRIAL in b.study_types
    if has_trial and count_a + count_b >= 3:
        return ContradictionSeverity.MAJOR
    return ContradictionSeverity.MINOR


def methodological_differences(
    a: Finding, b: Finding, papers: Optional[Mapping[str, Paper]] = None
) -> List[str]:
    differences: List[str] = []
    types_a = {t.value for t in a.study_types}
    types_b = {t.value for t in b.study_types}
    if types_a and types_b and not types_a & types_b:
        differences.append(
            f"Different study types: {', '.join(sorted(types_a))} vs {', '.join(sorted(types_b))}"
        )
    if papers:
        years_a = _years(a, papers)
        years_b = _years(b, papers)
        if years_a and years_b:
            avg_a = sum(years_a) / len(years_a)
            avg_b = sum(years_b) / len(years_b)
            if abs(avg_a - avg_b) > 3:
                differences.append(f"Timing difference: studies from ~{round(avg_a)} vs ~{round(avg_b)}")
    return differences


def _years(finding: Finding, papers: Mapping[str, Paper]) -> List[int]:
    years = []
    for pid in finding.supporting_papers:
        paper = papers.get(pid)
        if paper and paper.year.isdigit():
            years.append(int(paper.year))
    return years


def conservative_interpretation(
    majority: ContradictionView, minority: ContradictionView, differences: Sequence[str]
) -> str:
    n_minor = minority.paper_count
    text = (
        f"Most evidence ({majority.paper_count} papers) supports {majority.description.lower().rstrip('.')}, "
        f"however {n_minor} paper{'s' if n_minor != 1 else ''} found {minority.description.lower().rstrip('.')}. "
    )
    if differences:
        text += "The discrepancy may be explained by methodological differences. "
    text += "More research is needed to resolve this contradiction."
    return enforce_conservative_language(text, INTERPRETATION_PLACEHOLDER, context="contradiction interpretation")


def contradiction_between(
    new: Finding, existing: Finding, papers: Optional[Mapping[str, Paper]] = None
) -> Optional[Contradiction]:
    if topic_similarity(new.description, existing.description) < TOPIC_SIMILARITY_THRESHOLD:
        return None
    if not results_conflict(_result_text(new), _result_text(existing)):
        return None

    # Ties go to the newer finding as the majority view.
    if len(new.supporting_papers) >= len(existing.supporting_papers):
        majority, minority = _view(new), _view(existing)
    else:
        majority, minority = _view(existing), _view(new)
    differences = methodological_differences(new, existing, papers)
    contradiction = Contradiction(
        finding_id=existing.id,
        topic=existing.description,
        majority_view=majority,
        minority_view=minority,
        severity=determine_severity(new, existing),
        methodological_differences=differences,
        conservative_interpretation=conservative_interpretation(majority, minority, differences),
    )
    logger.info(
        "[contradictions] %r: severity=%s majority=%d minority=%d",
        contradiction.topic,
        contradiction.severity.value,
        majority.paper_count,
        minority.paper_count,
    )
    return contradiction


def detect_contradictions(
    new_finding: Finding,
    existing: Sequence[Finding],
    papers: Optional[Mapping[str, Paper]] = None,
) -> List[Contradiction]:
    """Compare ``new_finding`` against each existing finding on the same topic."""
    found = []
    for other in existing:
        contradiction = contradiction_between(new_finding, other, papers)
        if contradiction is not None:
            found.append(contradiction)
    return found


def flag_contradictions(
    findings: Sequence[Finding], papers: Optional[Mapping[str, Paper]] = None
) -> Tuple[List[Finding], List[Contradiction]]:
    """Return flagged copies of ``findings`` plus every contradiction between them.

    Each pair is compared once. Flagged copies carry low consistency. The
    inputs are left untouched.
    """
    contradicting: Dict[str, List[str]] = {f.id: [] for f in findings}
    contradictions: List[Contradiction] = []
    for idx, finding in enumerate(findings):
        for other in findings[:idx]:
            contradiction = contradiction_between(finding, other, papers)
            if contradiction is None:
                continue
            contradictions.append(contradiction)
            contradicting[finding.id].extend(other.supporting_papers)
            contradicting[other.id].extend(finding.supporting_papers)

    flagged = []
    for finding in findings:
        others = list(dict.fromkeys(contradicting[finding.id]))
        if others:
            finding = dataclasses.replace(
                finding,
                has_contradiction=True,
                contradicting_papers=others,
                consistency=Consistency.LOW,
            )
        flagged.append(finding)
    return flagged, contradictions
