"""
Data model for Legal Lens.

Documents are split into ordered clauses; each clause gets an immutable,
versioned analysis and may be referenced by risk alerts. Clauses are further
split into chunks which are embedded into a document-scoped vector index.
Answers to questions are persisted as append-only history.

All records serialize with ``to_dict()`` / ``from_dict()`` so that they can
be stored in the key-value persistence layer.
"""

import uuid
import hashlib
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


# Namespace for deterministic clause/chunk/alert ids
LEGAL_LENS_NAMESPACE = uuid.UUID("6f1c2a34-5d7e-4b8a-9c0d-1e2f3a4b5c6d")


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def stable_id(*parts) -> str:
    """Deterministic UUID built from the given parts."""
    return str(uuid.uuid5(LEGAL_LENS_NAMESPACE, ":".join(str(p) for p in parts)))


def text_digest(text: str, length: int = 16) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


# =============================================================================
# Enumerations
# =============================================================================

class DocumentType(str, Enum):
    """Closed set of document types; selects pattern tables and terminology."""
    RENTAL = "rental"
    EMPLOYMENT = "employment"
    LOAN = "loan"
    GOVERNMENT = "government"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "DocumentType":
        """Parse a tag, mapping anything unrecognised to UNKNOWN."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class DocumentState(str, Enum):
    """Lifecycle state of a document."""
    INGESTED = "ingested"
    SEGMENTED = "segmented"
    ANALYZED = "analyzed"
    INDEXED = "indexed"
    READY = "ready"
    PROCESSING_FAILED = "processing_failed"
    DELETE_IN_PROGRESS = "delete_in_progress"
    DELETE_FAILED = "delete_failed"
    DELETED = "deleted"

    @property
    def is_deleting(self) -> bool:
        return self in (
            DocumentState.DELETE_IN_PROGRESS,
            DocumentState.DELETE_FAILED,
            DocumentState.DELETED,
        )


_RISK_RANK = {"low": 0, "medium": 1, "high": 2}


class RiskLevel(str, Enum):
    """Ordered risk level, used for clause risk and alert severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self.value]

    @classmethod
    def parse(cls, value, default: "RiskLevel" = None) -> Optional["RiskLevel"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default

    @classmethod
    def highest(cls, levels) -> Optional["RiskLevel"]:
        """Highest level in an iterable, ignoring None. None if empty."""
        best = None
        for level in levels:
            if level is None:
                continue
            if best is None or level.rank > best.rank:
                best = level
        return best


class AnalysisStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


class SummaryStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    INSUFFICIENT_DATA = "insufficient_data"


# =============================================================================
# Documents and clauses
# =============================================================================

@dataclass
class PageSpan:
    """Character range of one page in the extracted text."""
    page_number: int
    start_char: int
    end_char: int

    def to_dict(self) -> dict:
        return {
            "page_number": self.page_number,
            "start_char": self.start_char,
            "end_char": self.end_char,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PageSpan":
        return cls(
            page_number=int(data["page_number"]),
            start_char=int(data["start_char"]),
            end_char=int(data["end_char"]),
        )


@dataclass
class Document:
    """A document handed over by the text-extraction collaborator."""
    document_id: str
    text: str
    document_type: DocumentType = DocumentType.UNKNOWN
    state: DocumentState = DocumentState.INGESTED
    user_id: Optional[str] = None
    title: Optional[str] = None
    page_metadata: list[PageSpan] = field(default_factory=list)
    text_hash: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    last_error: Optional[str] = None

    def __post_init__(self):
        self.document_type = DocumentType.parse(self.document_type)
        self.state = DocumentState(self.state)
        if not self.text_hash:
            self.text_hash = text_digest(self.text)

    def pages_for_span(self, start: int, end: int) -> list[int]:
        """Page numbers overlapping the character range [start, end)."""
        return [
            page.page_number for page in self.page_metadata
            if page.start_char < end and start < page.end_char
        ]

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "text": self.text,
            "document_type": self.document_type.value,
            "state": self.state.value,
            "user_id": self.user_id,
            "title": self.title,
            "page_metadata": [p.to_dict() for p in self.page_metadata],
            "text_hash": self.text_hash,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        return cls(
            document_id=data["document_id"],
            text=data["text"],
            document_type=DocumentType.parse(data.get("document_type")),
            state=DocumentState(data.get("state", "ingested")),
            user_id=data.get("user_id"),
            title=data.get("title"),
            page_metadata=[PageSpan.from_dict(p) for p in data.get("page_metadata", [])],
            text_hash=data.get("text_hash", ""),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
            last_error=data.get("last_error"),
        )


@dataclass
class Clause:
    """An ordered, addressable span of a document."""
    clause_id: str
    document_id: str
    position: int
    text: str
    start_char: int
    end_char: int
    clause_type: str = "general"
    heading: Optional[str] = None
    page_numbers: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "clause_id": self.clause_id,
            "document_id": self.document_id,
            "position": self.position,
            "text": self.text,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "clause_type": self.clause_type,
            "heading": self.heading,
            "page_numbers": list(self.page_numbers),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Clause":
        return cls(
            clause_id=data["clause_id"],
            document_id=data["document_id"],
            position=int(data["position"]),
            text=data["text"],
            start_char=int(data["start_char"]),
            end_char=int(data["end_char"]),
            clause_type=data.get("clause_type", "general"),
            heading=data.get("heading"),
            page_numbers=list(data.get("page_numbers", [])),
        )


@dataclass(frozen=True)
class ClauseAnalysis:
    """
    Simplified explanation of one clause.

    Immutable: re-analysis produces a new version rather than mutating an
    existing record.
    """
    clause_id: str
    document_id: str
    position: int
    explanation: str
    key_points: tuple[str, ...] = ()
    obligations: tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW
    status: AnalysisStatus = AnalysisStatus.OK
    needs_manual_review: bool = False
    version: int = 1
    error_type: Optional[str] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    @property
    def is_degraded(self) -> bool:
        return self.status == AnalysisStatus.DEGRADED

    def to_dict(self) -> dict:
        return {
            "clause_id": self.clause_id,
            "document_id": self.document_id,
            "position": self.position,
            "explanation": self.explanation,
            "key_points": list(self.key_points),
            "obligations": list(self.obligations),
            "risk_level": self.risk_level.value,
            "status": self.status.value,
            "needs_manual_review": self.needs_manual_review,
            "version": self.version,
            "error_type": self.error_type,
            "error": self.error,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClauseAnalysis":
        return cls(
            clause_id=data["clause_id"],
            document_id=data["document_id"],
            position=int(data["position"]),
            explanation=data.get("explanation", ""),
            key_points=tuple(data.get("key_points", [])),
            obligations=tuple(data.get("obligations", [])),
            risk_level=RiskLevel.parse(data.get("risk_level"), RiskLevel.LOW),
            status=AnalysisStatus(data.get("status", "ok")),
            needs_manual_review=bool(data.get("needs_manual_review", False)),
            version=int(data.get("version", 1)),
            error_type=data.get("error_type"),
            error=data.get("error"),
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class RiskAlert:
    """A severity-tagged risk referencing one or more clauses."""
    alert_id: str
    document_id: str
    clause_ids: list[str]
    risk_type: str
    severity: RiskLevel
    description: str
    recommendation: str
    source: str = "pattern"  # "pattern", "classifier" or "pattern+classifier"

    @property
    def dedup_key(self) -> tuple[frozenset, str]:
        return frozenset(self.clause_ids), self.risk_type

    def to_dict(self) -> dict:
        return {
            "alert_id": self.alert_id,
            "document_id": self.document_id,
            "clause_ids": list(self.clause_ids),
            "risk_type": self.risk_type,
            "severity": self.severity.value,
            "description": self.description,
            "recommendation": self.recommendation,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskAlert":
        return cls(
            alert_id=data["alert_id"],
            document_id=data["document_id"],
            clause_ids=list(data["clause_ids"]),
            risk_type=data["risk_type"],
            severity=RiskLevel(data["severity"]),
            description=data.get("description", ""),
            recommendation=data.get("recommendation", ""),
            source=data.get("source", "pattern"),
        )


# =============================================================================
# Chunks and retrieval
# =============================================================================

@dataclass
class Chunk:
    """A contiguous span of one clause, sized for embedding."""
    chunk_id: str
    document_id: str
    clause_id: str
    clause_position: int
    chunk_index: int
    content: str
    start_char: int
    end_char: int
    token_count: int = 0
    page_numbers: list[int] = field(default_factory=list)

    def payload(self) -> dict:
        """Payload stored next to the vector in the index."""
        return {
            "clause_id": self.clause_id,
            "clause_position": self.clause_position,
            "chunk_index": self.chunk_index,
            "content": self.content,
        }

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "clause_id": self.clause_id,
            "clause_position": self.clause_position,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "token_count": self.token_count,
            "page_numbers": list(self.page_numbers),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        return cls(
            chunk_id=data["chunk_id"],
            document_id=data["document_id"],
            clause_id=data["clause_id"],
            clause_position=int(data["clause_position"]),
            chunk_index=int(data["chunk_index"]),
            content=data["content"],
            start_char=int(data["start_char"]),
            end_char=int(data["end_char"]),
            token_count=int(data.get("token_count", 0)),
            page_numbers=list(data.get("page_numbers", [])),
        )


@dataclass
class ChunkIndexStatus:
    """Whether a chunk made it into the vector index."""
    chunk_id: str
    document_id: str
    indexed: bool
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "indexed": self.indexed,
            "attempts": self.attempts,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChunkIndexStatus":
        return cls(
            chunk_id=data["chunk_id"],
            document_id=data["document_id"],
            indexed=bool(data["indexed"]),
            attempts=int(data.get("attempts", 0)),
            error=data.get("error"),
        )


@dataclass
class RetrievedContext:
    """A ranked (chunk, score) pair for one query. Never persisted."""
    chunk_id: str
    document_id: str
    clause_id: str
    clause_position: int
    content: str
    score: float
    rank: int = 0
    page_numbers: list[int] = field(default_factory=list)


@dataclass
class Citation:
    """Link from an answer to the chunk and clause that support it."""
    chunk_id: str
    clause_id: str
    clause_position: int
    document_id: str
    excerpt: str
    relevance_score: float
    page_numbers: list[int] = field(default_factory=list)

    def short_format(self) -> str:
        """Format as [Clause N, p. X]."""
        parts = [f"Clause {self.clause_position + 1}"]
        if self.page_numbers:
            if len(self.page_numbers) == 1:
                parts.append(f"p. {self.page_numbers[0]}")
            else:
                parts.append(f"pp. {self.page_numbers[0]}-{self.page_numbers[-1]}")
        return "[" + ", ".join(parts) + "]"

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "clause_id": self.clause_id,
            "clause_position": self.clause_position,
            "document_id": self.document_id,
            "excerpt": self.excerpt,
            "relevance_score": self.relevance_score,
            "page_numbers": list(self.page_numbers),
            "short_citation": self.short_format(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Citation":
        return cls(
            chunk_id=data["chunk_id"],
            clause_id=data["clause_id"],
            clause_position=int(data["clause_position"]),
            document_id=data["document_id"],
            excerpt=data.get("excerpt", ""),
            relevance_score=float(data.get("relevance_score", 0.0)),
            page_numbers=list(data.get("page_numbers", [])),
        )


@dataclass
class AnswerResponse:
    """Answer to one question. Persisted append-only as Q&A history."""
    answer_id: str
    document_id: str
    question: str
    answer: str
    answerable: bool
    confidence: float
    citations: list[Citation] = field(default_factory=list)
    limitation: Optional[str] = None
    user_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "answer_id": self.answer_id,
            "document_id": self.document_id,
            "question": self.question,
            "answer": self.answer,
            "answerable": self.answerable,
            "confidence": self.confidence,
            "citations": [c.to_dict() for c in self.citations],
            "limitation": self.limitation,
            "user_id": self.user_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnswerResponse":
        return cls(
            answer_id=data["answer_id"],
            document_id=data["document_id"],
            question=data["question"],
            answer=data["answer"],
            answerable=bool(data["answerable"]),
            confidence=float(data["confidence"]),
            citations=[Citation.from_dict(c) for c in data.get("citations", [])],
            limitation=data.get("limitation"),
            user_id=data.get("user_id"),
            created_at=data.get("created_at") or utc_now(),
        )


# =============================================================================
# Derived outputs
# =============================================================================

@dataclass
class DocumentSummary:
    """Document-level aggregate of clause analyses and risk alerts."""
    document_id: str
    status: SummaryStatus
    risk_posture: Optional[RiskLevel]
    narrative: str
    clause_count: int = 0
    analyzed_count: int = 0
    alert_counts: dict = field(default_factory=dict)
    top_risks: list[dict] = field(default_factory=list)
    degraded_clause_ids: list[str] = field(default_factory=list)
    unindexed_chunk_ids: list[str] = field(default_factory=list)
    generated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "status": self.status.value,
            "risk_posture": self.risk_posture.value if self.risk_posture else None,
            "narrative": self.narrative,
            "clause_count": self.clause_count,
            "analyzed_count": self.analyzed_count,
            "alert_counts": dict(self.alert_counts),
            "top_risks": list(self.top_risks),
            "degraded_clause_ids": list(self.degraded_clause_ids),
            "unindexed_chunk_ids": list(self.unindexed_chunk_ids),
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentSummary":
        posture = data.get("risk_posture")
        return cls(
            document_id=data["document_id"],
            status=SummaryStatus(data["status"]),
            risk_posture=RiskLevel(posture) if posture else None,
            narrative=data.get("narrative", ""),
            clause_count=int(data.get("clause_count", 0)),
            analyzed_count=int(data.get("analyzed_count", 0)),
            alert_counts=dict(data.get("alert_counts", {})),
            top_risks=list(data.get("top_risks", [])),
            degraded_clause_ids=list(data.get("degraded_clause_ids", [])),
            unindexed_chunk_ids=list(data.get("unindexed_chunk_ids", [])),
            generated_at=data.get("generated_at") or utc_now(),
        )


@dataclass
class DeletionResult:
    """Outcome of a delete request. Callers retry until ``success``."""
    document_id: str
    success: bool
    state: DocumentState
    vectors_remaining: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "success": self.success,
            "state": self.state.value,
            "vectors_remaining": self.vectors_remaining,
            "error": self.error,
        }


@dataclass
class IndexReport:
    """Reconciliation of vector index contents against chunk records."""
    document_id: str
    vector_count: int
    chunk_count: int
    orphan_vectors: list[str] = field(default_factory=list)
    missing_vectors: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.orphan_vectors and not self.missing_vectors

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "vector_count": self.vector_count,
            "chunk_count": self.chunk_count,
            "orphan_vectors": list(self.orphan_vectors),
            "missing_vectors": list(self.missing_vectors),
            "consistent": self.consistent,
        }
