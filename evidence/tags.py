from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from core.errors import TransportError, ValidationError
from core.invoker import ModelInvoker, Payload
from core.models import AutoTag, Paper, TagSource
from core.utils import clamp_unit

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8
CONTEXT_CHAR_LIMIT = 8000
PROMPT_CONTEXT_CHARS = 3000

STOP_WORDS = frozenset(
    {
        "with", "that", "this", "from", "were", "have", "been", "between", "into",
        "about", "over", "under", "such", "their", "these", "those", "which", "there",
        "than", "also", "more", "most", "other", "some", "after", "before", "during",
        "while", "where", "when", "what", "will", "would", "could", "should", "each",
        "both", "only", "very", "then", "they", "them", "here", "however", "whereas",
    }
)


def normalize_tag(tag: str) -> str:
    return re.sub(r"\s+", " ", (tag or "").strip().lower())


def jaccard(a: str, b: str) -> float:
    a_tokens = set(a.split(" "))
    b_tokens = set(b.split(" "))
    union = a_tokens | b_tokens
    if not union:
        return 0.0
    return len(a_tokens & b_tokens) / len(union)


class TagVocabulary:
    """Immutable, de-duplicated tag vocabulary keyed by normalized form.

    Each normalized entry remembers the casing of the first occurrence, which
    is what reused tags are snapped back to.
    """

    def __init__(self, entries: Iterable[str] = ()) -> None:
        originals: Dict[str, str] = {}
        for entry in entries:
            norm = normalize_tag(entry)
            if norm and norm not in originals:
                originals[norm] = entry.strip()
        self._originals = originals
        self.normalized: Tuple[str, ...] = tuple(originals)

    def __len__(self) -> int:
        return len(self.normalized)

    def __contains__(self, tag: str) -> bool:
        return normalize_tag(tag) in self._originals

    def entries(self) -> List[str]:
        return list(self._originals.values())

    def best_match(self, candidate: str) -> Tuple[Optional[str], float]:
        norm = normalize_tag(candidate)
        best: Optional[str] = None
        best_sim = 0.0
        for entry in self.normalized:
            sim = jaccard(norm, entry)
            if sim > best_sim:
                best, best_sim = entry, sim
        return (self._originals[best] if best else None), best_sim

    def snap(self, candidate: str) -> Tuple[str, bool]:
        """Return ``(tag, is_new)``; close matches come back in vocabulary casing."""
        match, sim = self.best_match(candidate)
        if match is not None and sim >= SIMILARITY_THRESHOLD:
            return match, False
        return re.sub(r"\s+", " ", candidate.strip()), True


@dataclass(frozen=True)
class PaperContext:
    title: str
    abstract: str = ""
    sections: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_paper(cls, paper: Paper) -> "PaperContext":
        return cls(title=paper.title, abstract=paper.abstract, sections=dict(paper.sections or {}))

    def text(self, limit: int = CONTEXT_CHAR_LIMIT) -> str:
        return "\n".join([self.title, self.abstract, " ".join(self.sections.values())])[:limit]


TAG_PROMPT_TEMPLATE = """
You assign tags to biomedical papers. Prefer existing tags; only create a new tag when no existing tag is suitable.
Return up to {top_n} tags as JSON: {{"tags": [{{"tag": "<tag>", "confidence": <0-1>}}]}}

Existing tags: {existing}
Title: {title}
Abstract/Sections: {context}
"""


def is_tag_payload(payload: Payload) -> bool:
    tags = payload.get("tags")
    if not isinstance(tags, list):
        return False
    for item in tags:
        if not isinstance(item, dict):
            return False
        if not isinstance(item.get("tag"), str) or not item["tag"].strip():
            return False
        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            return False
    return True


def _dedupe(tags: Iterable[AutoTag], top_n: int) -> List[AutoTag]:
    out: List[AutoTag] = []
    seen = set()
    for tag in tags:
        key = normalize_tag(tag.tag)
        if key in seen:
            continue
        seen.add(key)
        out.append(tag)
        if len(out) >= top_n:
            break
    return out


def model_tags(
    context: PaperContext,
    vocabulary: TagVocabulary,
    top_n: int,
    invoker: ModelInvoker,
    *,
    max_tokens: int = 400,
    temperature: float = 0.2,
    timeout: float = 30.0,
) -> List[AutoTag]:
    prompt = TAG_PROMPT_TEMPLATE.format(
        top_n=top_n,
        existing=", ".join(vocabulary.entries()) or "(none)",
        title=context.title,
        context=context.text()[:PROMPT_CONTEXT_CHARS],
    )
    payload = invoker.invoke(
        prompt,
        validate=is_tag_payload,
        max_tokens=max_tokens,
        temperature=temperature,
        timeout=timeout,
        context="tag-generator",
    )
    suggestions: List[AutoTag] = []
    for item in payload["tags"][:top_n]:
        tag, is_new = vocabulary.snap(item["tag"])
        suggestions.append(
            AutoTag(tag=tag, confidence=clamp_unit(item["confidence"]), source=TagSource.MODEL, is_new=is_new)
        )
    return _dedupe(suggestions, top_n)


def heuristic_tags(context: PaperContext, vocabulary: TagVocabulary, top_n: int) -> List[AutoTag]:
    """Frequency-ranked keywords; identical input always yields identical tags."""
    text = re.sub(r"[^a-z0-9\s]", " ", context.text().lower())
    freq: Dict[str, int] = {}
    for word in text.split():
        if len(word) > 3 and word not in STOP_WORDS:
            freq[word] = freq.get(word, 0) + 1
    # sorted() is stable, so ties keep first-occurrence order.
    ranked = sorted(freq.items(), key=lambda kv: -kv[1])[: top_n * 2]

    suggestions: List[AutoTag] = []
    for word, count in ranked:
        tag, is_new = vocabulary.snap(word)
        confidence = 0.5 + min(0.4, count / 20)
        suggestions.append(AutoTag(tag=tag, confidence=confidence, source=TagSource.HEURISTIC, is_new=is_new))
    return _dedupe(suggestions, top_n)


def generate_tags(
    context: PaperContext,
    vocabulary: Union[TagVocabulary, Iterable[str]],
    top_n: int = 6,
    invoker: Optional[ModelInvoker] = None,
    **model_options: Any,
) -> List[AutoTag]:
    """Suggest up to ``top_n`` tags, reusing existing vocabulary where it is close enough.

    The model path runs only when an invoker is given and configured; any
    transport or shape failure drops to the deterministic keyword heuristic.
    """
    if top_n <= 0:
        return []
    vocab = vocabulary if isinstance(vocabulary, TagVocabulary) else TagVocabulary(vocabulary)
    if invoker is not None and invoker.available:
        try:
            tags = model_tags(context, vocab, top_n, invoker, **model_options)
            if tags:
                return tags
            logger.info("[tags] model returned no tags for %r; using heuristic", context.title)
        except (TransportError, ValidationError) as exc:
            logger.warning("[tags] model path failed for %r (%s); using heuristic", context.title, exc)
    return heuristic_tags(context, vocab, top_n)
