from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from core.invoker import ModelInvoker
from core.models import Finding, Paper, StudyType, new_finding
from stores.paper_store import InMemoryPaperStore

Reply = Union[str, Exception]


class ScriptedTransport:
    """Stands in for ``call_model``: returns (or raises) queued replies in order."""

    def __init__(self, replies: Sequence[Reply] = ()) -> None:
        self.replies: List[Reply] = list(replies)
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def __call__(self, **kwargs: Any) -> str:
        with self._lock:
            self.calls.append(kwargs)
            if not self.replies:
                raise AssertionError("transport called more times than scripted")
            reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class RoutingTransport:
    """Picks a reply by looking for a marker substring in the user prompt."""

    def __init__(self, routes: Dict[str, Reply], default: Optional[Reply] = None) -> None:
        self.routes = routes
        self.default = default
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def __call__(self, **kwargs: Any) -> str:
        with self._lock:
            self.calls.append(kwargs)
        prompt = kwargs["user_prompt"]
        reply = next((r for marker, r in self.routes.items() if marker in prompt), self.default)
        if reply is None:
            raise AssertionError(f"no route for prompt: {prompt[:80]!r}")
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_invoker(transport: Callable[..., str], available: bool = True) -> ModelInvoker:
    return ModelInvoker("gpt-4.1", transport=transport, is_configured=lambda: available)


def extraction_reply(
    finding: str,
    *,
    relevant: bool = True,
    evidence: Optional[str] = None,
    study_type: str = "observational",
    sample_size: Optional[int] = 40,
    confidence: float = 0.8,
) -> str:
    return json.dumps(
        {
            "relevant": relevant,
            "finding": finding if relevant else None,
            "evidence": evidence,
            "studyType": study_type,
            "sampleSize": sample_size,
            "limitations": ["single site"],
            "confidence": confidence,
        }
    )


def finding(
    description: str,
    papers: Sequence[str] = ("p1",),
    *,
    peer_reviewed: Optional[int] = None,
    preprints: int = 0,
    study_types: Sequence[StudyType] = (),
    sample_sizes: Sequence[int] = (),
    quantitative: Optional[str] = None,
    contradiction: bool = False,
) -> Finding:
    return new_finding(
        "q1",
        description,
        list(papers),
        peer_reviewed_count=len(papers) - preprints if peer_reviewed is None else peer_reviewed,
        preprint_count=preprints,
        study_types=list(study_types),
        sample_sizes=list(sample_sizes),
        quantitative_result=quantitative,
        has_contradiction=contradiction,
    )


@pytest.fixture
def sample_papers() -> List[Paper]:
    return [
        Paper(
            id="p1",
            title="Natural killer cell activity in chronic fatigue",
            abstract="This study measured NK cell cytotoxicity in 40 patients. Activity was reduced compared with controls.",
            authors=["A. Smith", "B. Jones"],
            publication_date="2019-04-01",
            journal="Immunology Letters",
            tags=["Immunology", "NK cells"],
            full_text=(
                "Abstract\nNK cell cytotoxicity was measured.\n\n"
                "Methods\nForty patients were recruited.\n\n"
                "Results\nCytotoxicity was reduced in patients. The effect size was moderate.\n\n"
                "Discussion\nThe reduction may indicate immune dysregulation."
            ),
        ),
        Paper(
            id="p2",
            title="Sleep architecture in chronic fatigue",
            abstract="Polysomnography of 25 patients suggests fragmented sleep.",
            authors=["C. Lee"],
            publication_date="2021-09-12",
            is_preprint=True,
        ),
        Paper(
            id="p3",
            title="Cytokine profiles after exertion",
            abstract="Elevated cytokines were observed after exercise in a cohort of 120 participants.",
            authors=["D. Patel", "E. Wong"],
            publication_date="2022-01-20",
            sections={"results": "Cytokines were elevated after exertion.", "discussion": "Findings suggest immune activation."},
        ),
    ]


@pytest.fixture
def store(sample_papers: List[Paper]) -> InMemoryPaperStore:
    return InMemoryPaperStore(sample_papers)
