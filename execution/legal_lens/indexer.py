"""
Embedding Indexer for Legal Lens

Embeds chunks and upserts them into the document-scoped vector index.
Each chunk is independent: a chunk whose embedding call keeps failing is
marked unindexed and the rest of the document carries on. Upserts only land
while the processing run's generation token is current.
"""

import logging

from .cancellation import GenerationRegistry
from .errors import UpstreamError
from .models import Chunk, ChunkIndexStatus
from .upstream import UpstreamCaller
from .vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


class EmbeddingIndexer:
    """Computes and stores one embedding per chunk."""

    def __init__(
        self,
        embedding_service,
        vector_store: BaseVectorStore,
        upstream: UpstreamCaller,
        registry: GenerationRegistry,
    ):
        self._embeddings = embedding_service
        self._store = vector_store
        self._upstream = upstream
        self._registry = registry

    def index_chunk(self, chunk: Chunk, token: int) -> ChunkIndexStatus:
        """
        Embed and upsert one chunk.

        Raises:
            StaleGeneration: The run was superseded before the write
        """
        self._registry.check(chunk.document_id, token)
        try:
            vector = self._upstream.call(
                "embedding",
                self._embeddings.embed,
                chunk.content,
                document_id=chunk.document_id,
            )
        except UpstreamError as e:
            logger.warning(
                f"Chunk {chunk.chunk_id} of {chunk.document_id} left unindexed: {e}"
            )
            return ChunkIndexStatus(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                indexed=False,
                attempts=getattr(e, "attempts", 1),
                error=str(e),
            )

        with self._registry.write_guard(chunk.document_id, token):
            self._store.upsert(chunk.document_id, chunk.chunk_id, vector, chunk.payload())
        return ChunkIndexStatus(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            indexed=True,
            attempts=1,
        )

    def remove_stale(self, document_id: str, keep_chunk_ids: set[str], token: int) -> int:
        """Delete vectors of chunks that no longer exist after re-chunking."""
        stale = sorted(self._store.chunk_ids(document_id) - set(keep_chunk_ids))
        if not stale:
            return 0
        with self._registry.write_guard(document_id, token):
            removed = self._store.delete_chunks(document_id, stale)
        logger.info(f"Removed {removed} stale vectors for document {document_id}")
        return removed
