"""
Error taxonomy for the Legal Lens pipeline.

Upstream errors are raised by wrappers around external AI services and are
handled at the smallest unit of work (one clause, one chunk). Index and
deletion faults are operator-visible and are never turned into a successful
response. "No relevant context" is deliberately absent: an empty retrieval
result is a normal outcome, not an error.
"""

from typing import Optional


class LegalLensError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


class UpstreamError(LegalLensError):
    """An external service call did not produce a usable result."""

    def __init__(self, service: str, message: str, attempts: int = 1):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.attempts = attempts


class UpstreamUnavailable(UpstreamError):
    """Service down, erroring or timed out after all retries."""

    retryable = True


class UpstreamDegraded(UpstreamError):
    """Service responded but its output failed validation."""


class IndexInconsistent(LegalLensError):
    """Vector index and persisted chunk records disagree."""

    def __init__(
        self,
        document_id: str,
        orphan_vectors: Optional[list[str]] = None,
        missing_vectors: Optional[list[str]] = None,
    ):
        self.document_id = document_id
        self.orphan_vectors = sorted(orphan_vectors or [])
        self.missing_vectors = sorted(missing_vectors or [])
        super().__init__(
            f"Index inconsistent for document {document_id}: "
            f"{len(self.orphan_vectors)} vectors without chunk records, "
            f"{len(self.missing_vectors)} indexed chunks without vectors"
        )


class CascadeDeleteIncomplete(LegalLensError):
    """Vectors for a deleted document are still retrievable."""

    retryable = True

    def __init__(self, document_id: str, remaining: int, message: Optional[str] = None):
        super().__init__(
            message or f"Cascade delete incomplete for {document_id}: {remaining} vectors remain"
        )
        self.document_id = document_id
        self.remaining = remaining


class ProcessingFailed(LegalLensError):
    """Every upstream call of a processing run failed."""

    retryable = True

    def __init__(self, document_id: str, reason: str):
        super().__init__(f"Processing failed for {document_id}: {reason}")
        self.document_id = document_id
        self.reason = reason


class DocumentNotFound(LegalLensError):
    """No live document with the given id."""

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class StaleGeneration(LegalLensError):
    """Work for a document was superseded by a newer run or a deletion."""

    def __init__(self, document_id: str, token: int, current: int):
        super().__init__(
            f"Stale work for document {document_id}: token {token}, current {current}"
        )
        self.document_id = document_id
        self.token = token
        self.current = current
