"""
Document-scoped vector index.

Two implementations share one contract:

- ``InMemoryVectorStore``: numpy cosine similarity, for tests and single
  process deployments.
- ``PgVectorStore``: PostgreSQL + pgvector, for production.

Searches never cross documents. Reads may run concurrently with upserts of
other chunks; writes to the same chunk id are serialized so re-indexing a
chunk replaces its vector without tearing.
"""

import json
import logging
import threading
from typing import Optional
from dataclasses import dataclass, field

import numpy as np

from .db import PostgresDatabase

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    """A single search hit with cosine similarity score."""
    chunk_id: str
    document_id: str
    score: float
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "score": self.score,
            "payload": self.payload,
        }


class BaseVectorStore:
    """Contract for a document-scoped vector index."""

    def upsert(self, document_id: str, chunk_id: str, vector: list[float], payload: dict) -> None:
        raise NotImplementedError

    def search(self, document_id: str, vector: list[float], k: int) -> list[VectorMatch]:
        """Top ``k`` matches within one document, highest score first."""
        raise NotImplementedError

    def delete_by_document(self, document_id: str) -> int:
        """Remove every vector of a document. Returns the number removed."""
        raise NotImplementedError

    def delete_chunks(self, document_id: str, chunk_ids: list[str]) -> int:
        raise NotImplementedError

    def count(self, document_id: str) -> int:
        raise NotImplementedError

    def chunk_ids(self, document_id: str) -> set[str]:
        raise NotImplementedError


def _cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query against each row; zero vectors score 0."""
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    dots = matrix @ query
    return np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)


class InMemoryVectorStore(BaseVectorStore):
    """Thread-safe in-process vector index."""

    def __init__(self):
        self._vectors: dict[str, dict[str, tuple[np.ndarray, dict]]] = {}
        self._lock = threading.Lock()
        self._chunk_locks: dict[str, threading.Lock] = {}

    def _chunk_lock(self, chunk_id: str) -> threading.Lock:
        with self._lock:
            lock = self._chunk_locks.get(chunk_id)
            if lock is None:
                lock = threading.Lock()
                self._chunk_locks[chunk_id] = lock
            return lock

    def upsert(self, document_id: str, chunk_id: str, vector: list[float], payload: dict) -> None:
        array = np.asarray(vector, dtype=np.float64)
        with self._chunk_lock(chunk_id):
            with self._lock:
                self._vectors.setdefault(document_id, {})[chunk_id] = (array, dict(payload))

    def search(self, document_id: str, vector: list[float], k: int) -> list[VectorMatch]:
        with self._lock:
            snapshot = list(self._vectors.get(document_id, {}).items())
        if not snapshot or k <= 0:
            return []

        matrix = np.vstack([entry[0] for _, entry in snapshot])
        scores = _cosine_scores(np.asarray(vector, dtype=np.float64), matrix)
        order = np.argsort(-scores, kind="stable")[:k]
        return [
            VectorMatch(
                chunk_id=snapshot[i][0],
                document_id=document_id,
                score=float(scores[i]),
                payload=dict(snapshot[i][1][1]),
            )
            for i in order
        ]

    def delete_by_document(self, document_id: str) -> int:
        with self._lock:
            removed = self._vectors.pop(document_id, {})
            for chunk_id in removed:
                self._chunk_locks.pop(chunk_id, None)
        if removed:
            logger.info(f"Deleted {len(removed)} vectors for document {document_id}")
        return len(removed)

    def delete_chunks(self, document_id: str, chunk_ids: list[str]) -> int:
        removed = 0
        with self._lock:
            vectors = self._vectors.get(document_id, {})
            for chunk_id in chunk_ids:
                if vectors.pop(chunk_id, None) is not None:
                    removed += 1
                self._chunk_locks.pop(chunk_id, None)
        return removed

    def count(self, document_id: str) -> int:
        with self._lock:
            return len(self._vectors.get(document_id, {}))

    def chunk_ids(self, document_id: str) -> set[str]:
        with self._lock:
            return set(self._vectors.get(document_id, {}))


class PgVectorStore(BaseVectorStore):
    """
    PostgreSQL vector index with pgvector.

    Features:
    - Cosine similarity search (``<=>`` operator)
    - Idempotent upsert keyed by chunk id
    - Document-scoped filtering on every query
    """

    def __init__(
        self,
        db: Optional[PostgresDatabase] = None,
        table_name: str = "legal_lens_vectors",
        dimensions: int = 1024,
    ):
        self._db = db or PostgresDatabase()
        self.table_name = table_name
        self.dimensions = dimensions

    def initialize_schema(self) -> None:
        """Create the vector table and indexes if they don't exist."""
        self._db.execute_script(f"""
        CREATE TABLE IF NOT EXISTS {self.table_name} (
            chunk_id TEXT PRIMARY KEY,
            document_id TEXT NOT NULL,
            embedding VECTOR({self.dimensions}) NOT NULL,
            payload JSONB DEFAULT '{{}}',
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_{self.table_name}_document
            ON {self.table_name}(document_id);
        """, label="vector schema")

    def upsert(self, document_id: str, chunk_id: str, vector: list[float], payload: dict) -> None:
        sql = f"""
        INSERT INTO {self.table_name} (chunk_id, document_id, embedding, payload)
        VALUES (%s, %s, %s::vector, %s)
        ON CONFLICT (chunk_id) DO UPDATE SET
            document_id = EXCLUDED.document_id,
            embedding = EXCLUDED.embedding,
            payload = EXCLUDED.payload,
            updated_at = NOW()
        """
        params = (chunk_id, document_id, list(vector), json.dumps(payload))

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
            conn.commit()

        self._db.execute_with_retry(_op, "vector_upsert")

    def search(self, document_id: str, vector: list[float], k: int) -> list[VectorMatch]:
        sql = f"""
        SELECT
            chunk_id,
            document_id,
            payload,
            1 - (embedding <=> %s::vector) AS score
        FROM {self.table_name}
        WHERE document_id = %s
        ORDER BY embedding <=> %s::vector
        LIMIT %s
        """
        query = list(vector)
        params = (query, document_id, query, k)

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            return [
                VectorMatch(
                    chunk_id=str(row["chunk_id"]),
                    document_id=str(row["document_id"]),
                    score=float(row["score"]),
                    payload=row["payload"] or {},
                )
                for row in rows
            ]

        return self._db.execute_with_retry(_op, "vector_search")

    def delete_by_document(self, document_id: str) -> int:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self.table_name} WHERE document_id = %s", (document_id,))
                deleted = cur.rowcount
            conn.commit()
            return deleted

        deleted = self._db.execute_with_retry(_op, "vector_delete_document")
        logger.info(f"Deleted {deleted} vectors for document {document_id}")
        return deleted

    def delete_chunks(self, document_id: str, chunk_ids: list[str]) -> int:
        if not chunk_ids:
            return 0

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.table_name} WHERE document_id = %s AND chunk_id = ANY(%s)",
                    (document_id, list(chunk_ids)),
                )
                deleted = cur.rowcount
            conn.commit()
            return deleted

        return self._db.execute_with_retry(_op, "vector_delete_chunks")

    def count(self, document_id: str) -> int:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT COUNT(*) AS n FROM {self.table_name} WHERE document_id = %s",
                    (document_id,),
                )
                return int(cur.fetchone()["n"])

        return self._db.execute_with_retry(_op, "vector_count")

    def chunk_ids(self, document_id: str) -> set[str]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT chunk_id FROM {self.table_name} WHERE document_id = %s",
                    (document_id,),
                )
                return {str(row["chunk_id"]) for row in cur.fetchall()}

        return self._db.execute_with_retry(_op, "vector_chunk_ids")
