"""
Typed access to pipeline records on top of a KeyValueStore.
"""

import logging
import threading
from dataclasses import replace
from typing import Optional

from .models import (
    AnswerResponse,
    Chunk,
    ChunkIndexStatus,
    Clause,
    ClauseAnalysis,
    Document,
    DocumentSummary,
    RiskAlert,
    utc_now,
)
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

DOCUMENTS = "documents"
CLAUSES = "clauses"
CHUNKS = "chunks"
CHUNK_STATUS = "chunk_status"
ANALYSES = "analyses"
ALERTS = "alerts"
ANSWERS = "answers"
SUMMARIES = "summaries"

DERIVED_NAMESPACES = [CLAUSES, CHUNKS, CHUNK_STATUS, ANALYSES, ALERTS, ANSWERS, SUMMARIES]


class DocumentRepository:
    """Stores documents and everything derived from them."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._version_lock = threading.Lock()

    # =========================================================================
    # Documents
    # =========================================================================

    def save_document(self, document: Document) -> None:
        document.updated_at = utc_now()
        self._store.put(
            DOCUMENTS, document.document_id, document.to_dict(),
            document_id=document.document_id, user_id=document.user_id,
        )

    def get_document(self, document_id: str) -> Optional[Document]:
        data = self._store.get(DOCUMENTS, document_id)
        return Document.from_dict(data) if data else None

    def list_documents(self, user_id: Optional[str] = None) -> list[Document]:
        return [Document.from_dict(d) for d in self._store.list(DOCUMENTS, user_id=user_id)]

    # =========================================================================
    # Clauses and chunks
    # =========================================================================

    def _replace(self, namespace: str, document_id: str, records: dict[str, dict]) -> None:
        """Make the namespace hold exactly ``records`` for this document."""
        for key, value in records.items():
            self._store.put(namespace, key, value, document_id=document_id)
        for existing in self._store.list(namespace, document_id=document_id):
            key = _record_key(namespace, existing)
            if key not in records:
                self._store.delete(namespace, key)

    def replace_clauses(self, document_id: str, clauses: list[Clause]) -> None:
        self._replace(CLAUSES, document_id, {c.clause_id: c.to_dict() for c in clauses})

    def get_clauses(self, document_id: str) -> list[Clause]:
        clauses = [Clause.from_dict(d) for d in self._store.list(CLAUSES, document_id=document_id)]
        return sorted(clauses, key=lambda c: c.position)

    def replace_chunks(self, document_id: str, chunks: list[Chunk]) -> None:
        self._replace(CHUNKS, document_id, {c.chunk_id: c.to_dict() for c in chunks})

    def get_chunks(self, document_id: str) -> list[Chunk]:
        chunks = [Chunk.from_dict(d) for d in self._store.list(CHUNKS, document_id=document_id)]
        return sorted(chunks, key=lambda c: (c.clause_position, c.chunk_index))

    def get_chunk_map(self, document_id: str) -> dict[str, Chunk]:
        return {c.chunk_id: c for c in self.get_chunks(document_id)}

    def replace_chunk_statuses(self, document_id: str, statuses: list[ChunkIndexStatus]) -> None:
        self._replace(CHUNK_STATUS, document_id, {s.chunk_id: s.to_dict() for s in statuses})

    def get_chunk_statuses(self, document_id: str) -> list[ChunkIndexStatus]:
        return [
            ChunkIndexStatus.from_dict(d)
            for d in self._store.list(CHUNK_STATUS, document_id=document_id)
        ]

    # =========================================================================
    # Analyses (immutable, versioned)
    # =========================================================================

    def analysis_versions(self, clause_id: str, document_id: str) -> list[ClauseAnalysis]:
        versions = [
            ClauseAnalysis.from_dict(d)
            for d in self._store.list(ANALYSES, document_id=document_id)
            if d["clause_id"] == clause_id
        ]
        return sorted(versions, key=lambda a: a.version)

    def add_analysis(self, analysis: ClauseAnalysis) -> ClauseAnalysis:
        """
        Persist an analysis as the next version for its clause.

        Returns:
            The stored analysis with its assigned version.
        """
        with self._version_lock:
            existing = self.analysis_versions(analysis.clause_id, analysis.document_id)
            version = existing[-1].version + 1 if existing else 1
            stored = replace(analysis, version=version)
            self._store.put(
                ANALYSES, f"{analysis.clause_id}:{version:05d}", stored.to_dict(),
                document_id=analysis.document_id,
            )
        return stored

    def latest_analyses(self, document_id: str) -> list[ClauseAnalysis]:
        """Latest analysis per current clause, in clause order."""
        current = {c.clause_id: c.position for c in self.get_clauses(document_id)}
        latest: dict[str, ClauseAnalysis] = {}
        for data in self._store.list(ANALYSES, document_id=document_id):
            analysis = ClauseAnalysis.from_dict(data)
            if analysis.clause_id not in current:
                continue
            prior = latest.get(analysis.clause_id)
            if prior is None or analysis.version > prior.version:
                latest[analysis.clause_id] = analysis
        return sorted(latest.values(), key=lambda a: current[a.clause_id])

    # =========================================================================
    # Alerts, summaries and Q&A history
    # =========================================================================

    def replace_alerts(self, document_id: str, alerts: list[RiskAlert]) -> None:
        self._replace(ALERTS, document_id, {a.alert_id: a.to_dict() for a in alerts})

    def get_alerts(self, document_id: str) -> list[RiskAlert]:
        return [RiskAlert.from_dict(d) for d in self._store.list(ALERTS, document_id=document_id)]

    def save_summary(self, summary: DocumentSummary) -> None:
        self._store.put(
            SUMMARIES, summary.document_id, summary.to_dict(), document_id=summary.document_id,
        )

    def get_summary(self, document_id: str) -> Optional[DocumentSummary]:
        data = self._store.get(SUMMARIES, document_id)
        return DocumentSummary.from_dict(data) if data else None

    def delete_summary(self, document_id: str) -> bool:
        return self._store.delete(SUMMARIES, document_id)

    def append_answer(self, answer: AnswerResponse) -> None:
        """Append to Q&A history. Existing entries are never overwritten."""
        if self._store.get(ANSWERS, answer.answer_id) is not None:
            raise ValueError(f"Answer {answer.answer_id} already recorded")
        self._store.put(
            ANSWERS, answer.answer_id, answer.to_dict(),
            document_id=answer.document_id, user_id=answer.user_id,
        )

    def get_history(self, document_id: str) -> list[AnswerResponse]:
        return [AnswerResponse.from_dict(d) for d in self._store.list(ANSWERS, document_id=document_id)]

    def get_user_history(self, user_id: str) -> list[AnswerResponse]:
        return [AnswerResponse.from_dict(d) for d in self._store.list(ANSWERS, user_id=user_id)]

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_document_records(self, document_id: str) -> int:
        """Remove every record derived from a document; the document record itself stays."""
        deleted = self._store.delete_document(document_id, namespaces=DERIVED_NAMESPACES)
        logger.info(f"Deleted {deleted} records for document {document_id}")
        return deleted


def _record_key(namespace: str, data: dict) -> str:
    if namespace == CLAUSES:
        return data["clause_id"]
    if namespace == ALERTS:
        return data["alert_id"]
    return data["chunk_id"]
