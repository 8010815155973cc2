from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StudyType(str, Enum):
    CLINICAL_TRIAL = "clinical_trial"
    OBSERVATIONAL = "observational"
    REVIEW = "review"
    META_ANALYSIS = "meta_analysis"
    CASE_STUDY = "case_study"
    LABORATORY = "laboratory"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> Optional["StudyType"]:
        if value is None or value == "":
            return None
        if isinstance(value, StudyType):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == key:
                return member
        return cls.OTHER


class Consistency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TagSource(str, Enum):
    MODEL = "model"
    HEURISTIC = "heuristic"


class QuestionStatus(str, Enum):
    UNANSWERED = "unanswered"
    PARTIAL = "partial"
    ANSWERED = "answered"


class ContradictionSeverity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Paper:
    id: str
    title: str
    abstract: str = ""
    authors: List[str] = field(default_factory=list)
    publication_date: Optional[str] = None
    journal: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    sections: Optional[Dict[str, str]] = None
    full_text: Optional[str] = None
    study_type: Optional[StudyType] = None
    is_preprint: bool = False
    auto_tags: List["AutoTag"] = field(default_factory=list)

    @property
    def year(self) -> str:
        return (self.publication_date or "")[:4]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Paper":
        authors: List[str] = []
        for author in data.get("authors") or []:
            if isinstance(author, dict):
                name = str(author.get("name", "")).strip()
            else:
                name = str(author).strip()
            if name:
                authors.append(name)
        sections = data.get("sections")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            abstract=str(data.get("abstract") or ""),
            authors=authors,
            publication_date=data.get("publication_date") or data.get("publicationDate"),
            journal=data.get("journal"),
            tags=[str(t) for t in data.get("tags") or []],
            sections={str(k): str(v) for k, v in sections.items()} if sections else None,
            full_text=data.get("full_text") or data.get("fullText"),
            study_type=StudyType.coerce(data.get("study_type") or data.get("studyType")),
            is_preprint=bool(data.get("is_preprint", False)),
            auto_tags=[AutoTag.from_dict(t) for t in data.get("auto_tags") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "abstract": self.abstract,
            "authors": list(self.authors),
            "publication_date": self.publication_date,
            "journal": self.journal,
            "tags": list(self.tags),
            "sections": dict(self.sections) if self.sections is not None else None,
            "full_text": self.full_text,
            "study_type": self.study_type.value if self.study_type else None,
            "is_preprint": self.is_preprint,
            "auto_tags": [t.to_dict() for t in self.auto_tags],
        }


@dataclass
class Chunk:
    section: str
    text: str
    index: int


@dataclass
class ExtractionResult:
    relevant: bool
    limitations: List[str] = field(default_factory=list)
    confidence: float = 0.0
    finding: Optional[str] = None
    evidence: Optional[str] = None
    study_type: Optional[StudyType] = None
    sample_size: Optional[int] = None

    @classmethod
    def unavailable(cls) -> "ExtractionResult":
        return cls(relevant=False, limitations=["model unavailable"], confidence=0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relevant": self.relevant,
            "finding": self.finding,
            "evidence": self.evidence,
            "study_type": self.study_type.value if self.study_type else None,
            "sample_size": self.sample_size,
            "limitations": list(self.limitations),
            "confidence": self.confidence,
        }


@dataclass
class Finding:
    id: str
    question_id: str
    description: str
    supporting_papers: List[str]
    peer_reviewed_count: int = 0
    preprint_count: int = 0
    study_types: List[StudyType] = field(default_factory=list)
    sample_sizes: List[int] = field(default_factory=list)
    consistency: Consistency = Consistency.HIGH
    has_contradiction: bool = False
    contradicting_papers: List[str] = field(default_factory=list)
    quantitative_result: Optional[str] = None
    qualitative_result: Optional[str] = None
    quality_assessment: Optional[str] = None
    user_notes: Optional[str] = None
    date_created: str = field(default_factory=utcnow_iso)

    def __post_init__(self) -> None:
        if not self.supporting_papers:
            raise ValueError("a finding needs at least one supporting paper")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question_id": self.question_id,
            "description": self.description,
            "supporting_papers": list(self.supporting_papers),
            "peer_reviewed_count": self.peer_reviewed_count,
            "preprint_count": self.preprint_count,
            "study_types": [s.value for s in self.study_types],
            "sample_sizes": list(self.sample_sizes),
            "consistency": self.consistency.value,
            "has_contradiction": self.has_contradiction,
            "contradicting_papers": list(self.contradicting_papers),
            "quantitative_result": self.quantitative_result,
            "qualitative_result": self.qualitative_result,
            "quality_assessment": self.quality_assessment,
            "user_notes": self.user_notes,
            "date_created": self.date_created,
        }


def new_finding(question_id: str, description: str, supporting_papers: List[str], **kwargs: Any) -> Finding:
    return Finding(
        id=str(uuid.uuid4()),
        question_id=question_id,
        description=description,
        supporting_papers=list(supporting_papers),
        **kwargs,
    )


@dataclass
class FindingSummary:
    description: str
    paper_count: int
    papers: List[str]
    consistency: Consistency
    evidence: str
    limitations: List[str]
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "paper_count": self.paper_count,
            "papers": list(self.papers),
            "consistency": self.consistency.value,
            "evidence": self.evidence,
            "limitations": list(self.limitations),
            "confidence": self.confidence,
        }


@dataclass
class EvidenceSynthesis:
    summary: str
    findings: List[FindingSummary]
    confidence: float
    limitations: List[str]
    gaps: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "findings": [f.to_dict() for f in self.findings],
            "confidence": self.confidence,
            "limitations": list(self.limitations),
            "gaps": list(self.gaps),
        }


@dataclass
class AutoTag:
    tag: str
    confidence: float
    source: TagSource
    is_new: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoTag":
        return cls(
            tag=str(data["tag"]),
            confidence=float(data.get("confidence", 0.0)),
            source=TagSource(data.get("source", TagSource.HEURISTIC.value)),
            is_new=bool(data.get("is_new", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "confidence": self.confidence,
            "source": self.source.value,
            "is_new": self.is_new,
        }


@dataclass
class ContradictionView:
    description: str
    papers: List[str]
    evidence: str

    @property
    def paper_count(self) -> int:
        return len(self.papers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "papers": list(self.papers),
            "evidence": self.evidence,
            "paper_count": self.paper_count,
        }


@dataclass
class Contradiction:
    finding_id: str
    topic: str
    majority_view: ContradictionView
    minority_view: ContradictionView
    severity: ContradictionSeverity = ContradictionSeverity.MINOR
    methodological_differences: List[str] = field(default_factory=list)
    conservative_interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finding_id": self.finding_id,
            "topic": self.topic,
            "majority_view": self.majority_view.to_dict(),
            "minority_view": self.minority_view.to_dict(),
            "severity": self.severity.value,
            "methodological_differences": list(self.methodological_differences),
            "conservative_interpretation": self.conservative_interpretation,
        }


@dataclass
class QuestionAnswer:
    question_id: str
    question: str
    findings: List[Finding]
    synthesis: EvidenceSynthesis
    status: QuestionStatus
    paper_count: int
    contradictions: List[Contradiction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question": self.question,
            "status": self.status.value,
            "paper_count": self.paper_count,
            "findings": [f.to_dict() for f in self.findings],
            "contradictions": [c.to_dict() for c in self.contradictions],
            "synthesis": self.synthesis.to_dict(),
        }
