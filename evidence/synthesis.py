from __future__ import annotations

import logging
from typing import List, Sequence

from core.models import Consistency, EvidenceSynthesis, Finding, FindingSummary, StudyType

from .grouping import assess_consistency, group_similar_findings
from .language import enforce_conservative_language

logger = logging.getLogger(__name__)

NO_EVIDENCE_SUMMARY = "No papers in collection address this question yet."
PENDING_REVIEW_PLACEHOLDER = "Evidence extraction pending review."
INSUFFICIENT_EVIDENCE = "Insufficient evidence"
NEED_MORE_RESEARCH = "Need more research on this topic"
LOW_CONSISTENCY = "Low consistency across studies"
SMALL_SAMPLES = "Small sample sizes"
GAP_FEW_STUDIES = "Limited number of studies on this topic"
GAP_NO_RCT = "No randomized controlled trials found"
GAP_NO_LARGE_STUDY = "No large-scale studies (>100 participants) found"

GROUP_CONFIDENCE_CAP = 0.9


def _plural(count: int, noun: str = "paper") -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def finding_limitations(finding: Finding) -> List[str]:
    limitations: List[str] = []
    if finding.preprint_count > 0:
        limitations.append(f"{finding.preprint_count} preprint(s) not yet peer-reviewed")
    if finding.consistency == Consistency.LOW:
        limitations.append(LOW_CONSISTENCY)
    if finding.sample_sizes:
        if sum(finding.sample_sizes) / len(finding.sample_sizes) < 30:
            limitations.append(SMALL_SAMPLES)
    return limitations


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def summarize_group(group: Sequence[Finding]) -> FindingSummary:
    papers = _unique([pid for f in group for pid in f.supporting_papers])
    first = group[0]
    return FindingSummary(
        description=first.description,
        paper_count=len(papers),
        papers=papers,
        consistency=assess_consistency(group),
        evidence=first.quantitative_result or first.qualitative_result or "",
        limitations=_unique([item for f in group for item in finding_limitations(f)]),
        confidence=0.0,
    )


def group_confidence(summary: FindingSummary) -> float:
    score = 0.5
    if summary.paper_count >= 5:
        score += 0.2
    elif summary.paper_count >= 3:
        score += 0.1
    if summary.consistency == Consistency.HIGH:
        score += 0.2
    elif summary.consistency == Consistency.MEDIUM:
        score += 0.1
    return min(GROUP_CONFIDENCE_CAP, score)


def conservative_summary(summaries: Sequence[FindingSummary]) -> str:
    if not summaries:
        return NO_EVIDENCE_SUMMARY
    # A paper backing several groups is counted once.
    total = len({pid for s in summaries for pid in s.papers})
    text = f"Based on {_plural(total)}, "
    if len(summaries) == 1:
        text += f"research suggests {summaries[0].description.lower().rstrip('.')}"
    else:
        text += "evidence indicates multiple findings: " + "; ".join(
            f"({i}) {_plural(s.paper_count)} found {s.description.lower().rstrip('.')}"
            for i, s in enumerate(summaries, start=1)
        )
    text += "."
    return enforce_conservative_language(text, PENDING_REVIEW_PLACEHOLDER, context="synthesis summary")


def identify_gaps(findings: Sequence[Finding]) -> List[str]:
    gaps: List[str] = []
    if len(findings) < 3:
        gaps.append(GAP_FEW_STUDIES)
    if not any(StudyType.CLINICAL_TRIAL in f.study_types for f in findings):
        gaps.append(GAP_NO_RCT)
    if not any(size > 100 for f in findings for size in f.sample_sizes):
        gaps.append(GAP_NO_LARGE_STUDY)
    return gaps


def synthesize_evidence(findings: Sequence[Finding], question: str) -> EvidenceSynthesis:
    """Aggregate findings into one conservatively worded answer.

    Overall confidence is the mean of per-group scores, each capped at 0.9.
    Input findings are never modified.
    """
    if not findings:
        return EvidenceSynthesis(
            summary=NO_EVIDENCE_SUMMARY,
            findings=[],
            confidence=0.0,
            limitations=[INSUFFICIENT_EVIDENCE],
            gaps=[NEED_MORE_RESEARCH],
        )

    summaries = [summarize_group(group) for group in group_similar_findings(findings)]
    for summary in summaries:
        summary.confidence = group_confidence(summary)
    confidence = sum(s.confidence for s in summaries) / len(summaries)

    logger.info(
        "[synthesis] %r: %d findings in %d groups, confidence=%.2f",
        question,
        len(findings),
        len(summaries),
        confidence,
    )
    return EvidenceSynthesis(
        summary=conservative_summary(summaries),
        findings=summaries,
        confidence=confidence,
        limitations=_unique([item for s in summaries for item in s.limitations]),
        gaps=identify_gaps(findings),
    )
