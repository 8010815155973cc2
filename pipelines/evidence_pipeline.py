from __future__ import annotations

import logging
import os
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.invoker import ModelInvoker
from core.models import (
    Consistency,
    ExtractionResult,
    Finding,
    Paper,
    QuestionAnswer,
    QuestionStatus,
    new_finding,
)
from core.openai_client import configure_model_limits
from evidence.contradictions import flag_contradictions
from evidence.extractor import EvidenceExtractor
from evidence.language import validate_conservative_language
from evidence.synthesis import synthesize_evidence
from evidence.tags import PaperContext, TagVocabulary, generate_tags
from evidence.triage import analyze_full_text
from stores.paper_store import PaperStore

logger = logging.getLogger(__name__)

QUESTION_STOP_WORDS = frozenset(
    {
        "what", "where", "when", "why", "how", "does", "is", "are", "the", "a", "an",
        "in", "on", "at", "to", "for", "of", "with", "by", "which", "there", "their",
        "have", "been", "this", "that", "from", "about", "into",
    }
)

ANSWERED_MIN_FINDINGS = 3
ANSWERED_MIN_CONFIDENCE = 0.7


@dataclass
class EvidenceReviewConfig:
    model: str = "gpt-4.1"
    extraction_max_tokens: int = 2000
    extraction_temperature: float = 0.3
    extraction_timeout: float = 60.0
    tag_max_tokens: int = 400
    tag_temperature: float = 0.2
    tag_timeout: float = 30.0
    top_n_tags: int = 6
    chunk_max_chars: int = 1500
    extraction_context_chars: int = 6000
    abstract_max_tokens: int = 800
    max_workers: int = 4
    rereview_batch_size: int = 5
    model_limits: Optional[Dict[str, int]] = None
    raw_response_dir: Optional[Path] = None
    use_model: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EvidenceReviewConfig":
        """Build a config from ``EVIDENCE_<FIELD>`` variables, e.g. ``EVIDENCE_MAX_WORKERS=8``.

        ``EVIDENCE_MODEL_LIMITS`` takes ``model=tpm`` pairs separated by commas.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(f"EVIDENCE_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            default = getattr(defaults, f.name)
            if f.name == "model_limits":
                kwargs[f.name] = _parse_model_limits(raw)
            elif f.name == "raw_response_dir":
                kwargs[f.name] = Path(raw).expanduser()
            elif isinstance(default, bool):
                kwargs[f.name] = raw.strip().lower() in {"1", "true", "yes", "on"}
            elif isinstance(default, int):
                kwargs[f.name] = int(raw)
            elif isinstance(default, float):
                kwargs[f.name] = float(raw)
            else:
                kwargs[f.name] = raw
        return cls(**kwargs)


def _parse_model_limits(raw: str) -> Dict[str, int]:
    limits: Dict[str, int] = {}
    for pair in raw.split(","):
        if not pair.strip():
            continue
        model, _, tpm = pair.partition("=")
        if not tpm:
            raise ValueError(f"Expected model=tpm in EVIDENCE_MODEL_LIMITS, got {pair!r}")
        limits[model.strip()] = int(tpm)
    return limits


@dataclass
class RereviewReport:
    processed: int = 0
    failed: int = 0
    sectioned: int = 0
    tagged: int = 0
    failed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "sectioned": self.sectioned,
            "tagged": self.tagged,
            "failed_ids": list(self.failed_ids),
        }


def extract_keywords(text: str) -> List[str]:
    words = (w.strip("?.,;:!\"'()") for w in (text or "").lower().split())
    return list(dict.fromkeys(w for w in words if len(w) > 3 and w not in QUESTION_STOP_WORDS))


def _paper_search_text(paper: Paper) -> str:
    return f"{paper.title} {paper.abstract}".lower()


def question_status(findings: Sequence[Finding], confidence: float) -> QuestionStatus:
    if not findings:
        return QuestionStatus.UNANSWERED
    if len(findings) < ANSWERED_MIN_FINDINGS or confidence < ANSWERED_MIN_CONFIDENCE:
        return QuestionStatus.PARTIAL
    return QuestionStatus.ANSWERED


class EvidenceReviewPipeline:
    """Question answering and library re-review over an injected paper store."""

    def __init__(
        self,
        store: PaperStore,
        config: Optional[EvidenceReviewConfig] = None,
        invoker: Optional[ModelInvoker] = None,
    ) -> None:
        self.store = store
        self.config = config or EvidenceReviewConfig()
        if self.config.model_limits:
            configure_model_limits(self.config.model_limits)
        self.invoker = invoker or ModelInvoker(self.config.model, raw_response_dir=self.config.raw_response_dir)
        if not self.config.use_model:
            self.invoker.go_offline("disabled by configuration")
        self.extractor = EvidenceExtractor(
            self.invoker,
            max_tokens=self.config.extraction_max_tokens,
            temperature=self.config.extraction_temperature,
            timeout=self.config.extraction_timeout,
            chunk_max_chars=self.config.chunk_max_chars,
            context_chars=self.config.extraction_context_chars,
            abstract_max_tokens=self.config.abstract_max_tokens,
        )

    # ------ Search ------
    def search_papers(self, question: str) -> List[Paper]:
        keywords = extract_keywords(question)
        if not keywords:
            return []
        matches = [p for p in self.store.list() if any(k in _paper_search_text(p) for k in keywords)]
        logger.info("[search] %d papers match %r", len(matches), question)
        return matches

    def find_relevant_questions(self, paper: Paper, questions: Iterable[str]) -> List[str]:
        text = _paper_search_text(paper)
        return [q for q in questions if any(k in text for k in extract_keywords(q))]

    # ------ Extraction ------
    def _safe_extract(self, paper: Paper, question: str) -> Optional[ExtractionResult]:
        try:
            return self.extractor.extract(paper, question)
        except Exception as exc:
            logger.exception("[extract] %s failed: %s", paper.id, exc)
            return None

    def _extract_all(self, papers: Sequence[Paper], question: str) -> List[Optional[ExtractionResult]]:
        if not papers:
            return []
        workers = max(1, min(self.config.max_workers, len(papers)))
        if workers == 1:
            return [self._safe_extract(p, question) for p in papers]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            # map() yields results in submission order.
            return list(pool.map(lambda p: self._safe_extract(p, question), papers))

    def extract_findings(self, question_id: str, question: str, papers: Sequence[Paper]) -> List[Finding]:
        findings: List[Finding] = []
        for paper, result in zip(papers, self._extract_all(papers, question)):
            if result is None or not result.relevant or not result.finding:
                continue
            finding = new_finding(
                question_id,
                result.finding,
                [paper.id],
                peer_reviewed_count=0 if paper.is_preprint else 1,
                preprint_count=1 if paper.is_preprint else 0,
                study_types=[result.study_type] if result.study_type else [],
                sample_sizes=[result.sample_size] if result.sample_size else [],
                quantitative_result=result.evidence,
                quality_assessment=f"Confidence: {result.confidence:.2f}",
            )
            if not validate_conservative_language(finding.description):
                logger.warning("[extract] dropping finding from %s: fails conservative language check", paper.id)
                continue
            findings.append(finding)
        logger.info("[extract] %d relevant findings from %d papers", len(findings), len(papers))
        return findings

    # ------ Question answering ------
    def _assemble(
        self, question_id: str, question: str, findings: Sequence[Finding], paper_count: int
    ) -> QuestionAnswer:
        papers = {p.id: p for p in self.store.bulk_get(pid for f in findings for pid in f.supporting_papers)}
        flagged, contradictions = flag_contradictions(findings, papers)
        synthesis = synthesize_evidence(flagged, question)
        answer = QuestionAnswer(
            question_id=question_id,
            question=question,
            findings=flagged,
            synthesis=synthesis,
            status=question_status(flagged, synthesis.confidence),
            paper_count=paper_count,
            contradictions=contradictions,
        )
        logger.info(
            "[answer] %s: status=%s findings=%d confidence=%.2f",
            question_id,
            answer.status.value,
            len(flagged),
            synthesis.confidence,
        )
        return answer

    def answer_question(self, question: str, question_id: Optional[str] = None) -> QuestionAnswer:
        start = time.time()
        question_id = question_id or new_question_id()
        papers = self.search_papers(question)
        findings = self.extract_findings(question_id, question, papers)
        answer = self._assemble(question_id, question, findings, len(papers))
        logger.info("[time] answer_question: %.1fs", time.time() - start)
        return answer

    def update_question_with_new_papers(self, answer: QuestionAnswer, new_papers: Sequence[Paper]) -> QuestionAnswer:
        """Re-synthesize ``answer`` with findings from ``new_papers`` added.

        Papers already supporting a finding are skipped. Returns a new answer.
        """
        known = {pid for f in answer.findings for pid in f.supporting_papers}
        fresh = [p for p in new_papers if p.id not in known]
        added = self.extract_findings(answer.question_id, answer.question, fresh)
        # Earlier contradiction flags are recomputed over the combined set.
        base = [
            replace(f, has_contradiction=False, contradicting_papers=[], consistency=Consistency.HIGH)
            for f in answer.findings
        ]
        return self._assemble(answer.question_id, answer.question, base + added, answer.paper_count + len(fresh))

    # ------ Re-review ------
    def rereview_all_papers(self, analyze_full_text: bool = True, generate_tags: bool = True) -> RereviewReport:
        papers = self.store.list()
        # One vocabulary snapshot per run; tags created mid-run are not reused.
        vocabulary: Tuple[str, ...] = tuple(tag for p in papers for tag in p.tags)
        vocab = TagVocabulary(vocabulary)
        report = RereviewReport()
        batch_size = max(1, self.config.rereview_batch_size)
        start = time.time()
        for batch_start in range(0, len(papers), batch_size):
            batch = papers[batch_start : batch_start + batch_size]
            for paper in batch:
                try:
                    self._rereview_paper(paper, vocab, analyze_full_text, generate_tags, report)
                except Exception as exc:
                    report.failed += 1
                    report.failed_ids.append(paper.id)
                    logger.exception("[rereview] %s failed: %s", paper.id, exc)
                    continue
                report.processed += 1
            logger.info("[rereview] %d/%d papers done", min(batch_start + batch_size, len(papers)), len(papers))
        logger.info(
            "[rereview] processed=%d failed=%d in %.1fs", report.processed, report.failed, time.time() - start
        )
        return report

    def _rereview_paper(
        self,
        paper: Paper,
        vocabulary: TagVocabulary,
        do_sections: bool,
        do_tags: bool,
        report: RereviewReport,
    ) -> None:
        updates: Dict[str, Any] = {}
        if do_sections and not paper.sections and paper.full_text:
            sections = analyze_full_text(paper)
            if sections:
                updates["sections"] = sections
                paper = replace(paper, sections=sections)
                report.sectioned += 1
        if do_tags and not paper.tags:
            tags = generate_tags(
                PaperContext.from_paper(paper),
                vocabulary,
                top_n=self.config.top_n_tags,
                invoker=self.invoker,
                max_tokens=self.config.tag_max_tokens,
                temperature=self.config.tag_temperature,
                timeout=self.config.tag_timeout,
            )
            if tags:
                updates["tags"] = [t.tag for t in tags]
                updates["auto_tags"] = tags
                report.tagged += 1
        if updates:
            self.store.update(paper.id, updates)


def new_question_id() -> str:
    return str(uuid.uuid4())
