from __future__ import annotations

import logging
from typing import Dict, Optional

from core.chunking import split_sentences
from core.errors import TransportError, ValidationError
from core.invoker import ModelInvoker, Payload
from core.models import Paper
from core.sections import ensure_sections

from .language import enforce_conservative_language
from .prompts import CONSERVATIVE_SYSTEM_PROMPT, TRIAGE_USER_TEMPLATE

logger = logging.getLogger(__name__)


def meta_line(paper: Paper) -> str:
    authors = ", ".join(paper.authors) or "Unknown authors"
    return f"{paper.title} ({authors}, {paper.year or 'n.d.'})"


def _is_summary_payload(payload: Payload) -> bool:
    summary = payload.get("summary")
    return isinstance(summary, str) and bool(summary.strip())


def heuristic_summary(paper: Paper) -> str:
    return " ".join(split_sentences(paper.abstract)[:2])


def summarize_abstract(
    paper: Paper,
    invoker: Optional[ModelInvoker] = None,
    *,
    max_tokens: int = 600,
    temperature: float = 0.2,
    timeout: float = 45.0,
) -> str:
    """Stage-one triage: metadata line plus a short conservative summary."""
    header = meta_line(paper)
    fallback = heuristic_summary(paper)
    if invoker is not None and invoker.available:
        try:
            payload = invoker.invoke(
                TRIAGE_USER_TEMPLATE.format(title=paper.title, abstract=paper.abstract),
                validate=_is_summary_payload,
                system_prompt=CONSERVATIVE_SYSTEM_PROMPT,
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=timeout,
                context=f"triage-{paper.id}",
            )
            summary = enforce_conservative_language(
                payload["summary"].strip(), fallback, context=f"triage summary for {paper.id}"
            )
            return f"{header}\n{summary}"
        except (TransportError, ValidationError) as exc:
            logger.warning("[triage] model summary failed for %s (%s); using abstract", paper.id, exc)
    return f"{header}\n{fallback}"


def analyze_full_text(paper: Paper) -> Dict[str, str]:
    """Stage-two triage: the paper's sections, split from full text when not cached."""
    return ensure_sections(paper.sections, paper.full_text)
