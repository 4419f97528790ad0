"""
Context Retriever for Legal Lens

Embeds a question with the same embedding service used for indexing and
searches only the target document's vectors. Matches below the similarity
floor are discarded even when they are among the top k, so an empty result
is a normal outcome meaning "nothing in this document is relevant".

A vector whose chunk record is missing is an index inconsistency: it is
logged and counted, excluded from the results, and raised when no
consistent match remains.
"""

import logging
from typing import Optional

from .config import PipelineConfig
from .errors import IndexInconsistent
from .models import RetrievedContext
from .repository import DocumentRepository
from .upstream import UpstreamCaller
from .vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


class ContextRetriever:
    """Document-scoped semantic retrieval with a similarity floor."""

    def __init__(
        self,
        embedding_service,
        vector_store: BaseVectorStore,
        repository: DocumentRepository,
        upstream: UpstreamCaller,
        config: Optional[PipelineConfig] = None,
        metrics=None,
    ):
        self._embeddings = embedding_service
        self._store = vector_store
        self._repository = repository
        self._upstream = upstream
        self.config = config or PipelineConfig()
        self._metrics = metrics

    def retrieve(self, query: str, document_id: str, k: Optional[int] = None) -> list[RetrievedContext]:
        """
        Retrieve the most relevant chunks of one document.

        Args:
            query: Free-text question
            document_id: Document to search
            k: Number of results (defaults to config.top_k)

        Returns:
            Contexts ranked by score descending, possibly empty

        Raises:
            UpstreamUnavailable: The question could not be embedded
            IndexInconsistent: Every match pointed at a missing chunk record
        """
        k = k or self.config.top_k
        vector = self._upstream.call(
            "embedding", self._embeddings.embed_query, query, document_id=document_id,
        )
        matches = self._store.search(document_id, vector, k)
        matches = sorted(matches, key=lambda m: m.score, reverse=True)[:k]

        chunks = self._repository.get_chunk_map(document_id)
        contexts = []
        orphans = []
        for match in matches:
            if match.document_id != document_id:
                logger.warning(f"Ignoring match {match.chunk_id} from document {match.document_id}")
                continue
            if match.score < self.config.similarity_floor:
                continue
            chunk = chunks.get(match.chunk_id)
            if chunk is None:
                orphans.append(match.chunk_id)
                continue
            contexts.append(RetrievedContext(
                chunk_id=chunk.chunk_id,
                document_id=document_id,
                clause_id=chunk.clause_id,
                clause_position=chunk.clause_position,
                content=chunk.content,
                score=match.score,
                rank=len(contexts) + 1,
                page_numbers=list(chunk.page_numbers),
            ))

        if orphans:
            logger.error(
                f"Index inconsistent for document {document_id}: "
                f"{len(orphans)} vectors without chunk records"
            )
            if self._metrics is not None:
                self._metrics.record_fault("IndexInconsistent")
            if not contexts:
                raise IndexInconsistent(document_id, orphan_vectors=orphans)

        logger.info(
            f"Retrieved {len(contexts)} contexts for document {document_id} "
            f"({len(matches)} matches, floor {self.config.similarity_floor})"
        )
        return contexts
