from __future__ import annotations

import logging
import math
from typing import Any, List, Optional

from core.chunking import chunk_section
from core.errors import ConfigurationError, TransportError, ValidationError
from core.invoker import ModelInvoker, Payload
from core.models import ExtractionResult, Paper, StudyType
from core.sections import ensure_sections
from core.tokens import truncate_to_tokens
from core.utils import clamp_unit

from .language import find_violations
from .prompts import CONSERVATIVE_SYSTEM_PROMPT, EXTRACTION_USER_TEMPLATE

logger = logging.getLogger(__name__)

EXCERPT_SECTIONS = ("results", "discussion", "conclusion")


def _first(payload: Payload, *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _is_number(value: Any) -> bool:
    # JSON allows Infinity and NaN; neither maps onto a count or a confidence.
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_extraction_payload(payload: Payload) -> bool:
    if not isinstance(payload.get("relevant"), bool):
        return False
    if not _is_number(payload.get("confidence")):
        return False
    limitations = payload.get("limitations", [])
    if limitations is not None and not isinstance(limitations, list):
        return False
    if payload["relevant"]:
        finding = payload.get("finding")
        if not isinstance(finding, str) or not finding.strip():
            return False
    sample_size = _first(payload, "sampleSize", "sample_size")
    if sample_size is not None and not _is_number(sample_size):
        return False
    return True


def extraction_from_payload(payload: Payload) -> ExtractionResult:
    relevant = bool(payload["relevant"])
    sample_size = _first(payload, "sampleSize", "sample_size")
    evidence = payload.get("evidence")
    return ExtractionResult(
        relevant=relevant,
        finding=payload["finding"].strip() if relevant else None,
        evidence=str(evidence) if relevant and evidence else None,
        study_type=StudyType.coerce(_first(payload, "studyType", "study_type")),
        sample_size=int(sample_size) if sample_size is not None and sample_size >= 0 else None,
        limitations=[str(item) for item in payload.get("limitations") or [] if item],
        confidence=clamp_unit(payload["confidence"]),
    )


class EvidenceExtractor:
    """Turns one (paper, question) pair into an ``ExtractionResult``.

    Never raises for model trouble: an unconfigured model yields the
    "model unavailable" result, and transport or shape failures yield ``None``
    so the caller can skip the paper.
    """

    SYSTEM_PROMPT = CONSERVATIVE_SYSTEM_PROMPT
    USER_TEMPLATE = EXTRACTION_USER_TEMPLATE

    def __init__(
        self,
        invoker: ModelInvoker,
        *,
        max_tokens: int = 2000,
        temperature: float = 0.3,
        timeout: float = 60.0,
        chunk_max_chars: int = 1500,
        context_chars: int = 6000,
        abstract_max_tokens: int = 800,
    ) -> None:
        self.invoker = invoker
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.chunk_max_chars = chunk_max_chars
        self.context_chars = context_chars
        self.abstract_max_tokens = abstract_max_tokens

    def _excerpts(self, paper: Paper) -> str:
        sections = ensure_sections(paper.sections, paper.full_text)
        lines: List[str] = []
        used = 0
        for key in EXCERPT_SECTIONS:
            body = sections.get(key)
            if not body:
                continue
            for chunk in chunk_section(body, key, self.chunk_max_chars):
                if used + len(chunk.text) > self.context_chars:
                    return "\n".join(lines)
                lines.append(f"[{chunk.section} #{chunk.index}] {chunk.text}")
                used += len(chunk.text)
        return "\n".join(lines)

    def build_prompt(self, paper: Paper, question: str) -> str:
        return self.USER_TEMPLATE.format(
            question=question,
            title=paper.title,
            authors=", ".join(paper.authors) or "Unknown",
            publication_date=paper.publication_date or "Unknown",
            journal=paper.journal or "Unknown",
            abstract=truncate_to_tokens(paper.abstract, self.abstract_max_tokens, self.invoker.model),
            excerpts=self._excerpts(paper) or "(no full-text sections available)",
        )

    def extract(self, paper: Paper, question: str) -> Optional[ExtractionResult]:
        if not self.invoker.available:
            logger.warning("[extract] model not configured; skipping %r", paper.title)
            return ExtractionResult.unavailable()

        logger.info("[extract] %s: %r", paper.id, paper.title)
        try:
            payload = self.invoker.invoke(
                self.build_prompt(paper, question),
                validate=is_extraction_payload,
                system_prompt=self.SYSTEM_PROMPT,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
                context=f"extract-{paper.id}",
            )
            result = extraction_from_payload(payload)
        except ConfigurationError as exc:
            logger.warning("[extract] model credentials rejected (%s); skipping %r", exc, paper.title)
            return ExtractionResult.unavailable()
        except (TransportError, ValidationError) as exc:
            logger.error("[extract] failed for %s: %s", paper.id, exc)
            return None

        if result.relevant and result.finding:
            violations = find_violations(result.finding)
            if violations:
                logger.error(
                    "[extract] conservative language violation in finding for %s: %s",
                    paper.id,
                    "; ".join(violations),
                )
        logger.info(
            "[extract] %s: relevant=%s confidence=%.2f study_type=%s",
            paper.id,
            result.relevant,
            result.confidence,
            result.study_type.value if result.study_type else None,
        )
        return result
