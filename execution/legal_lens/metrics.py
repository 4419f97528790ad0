"""
Metrics Collection for Legal Lens

Tracks question answering, document processing, upstream failures and
operator-visible faults (index inconsistencies, incomplete deletions).
"""

import time
import uuid
import logging
import threading
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class QueryMetrics:
    """Metrics for a single question."""
    query_id: str
    document_id: str
    question: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    contexts: int = 0
    answerable: bool = False
    confidence: float = 0.0
    low_confidence: bool = False
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Aggregated system metrics."""
    # Query metrics
    total_queries: int = 0
    answered_queries: int = 0
    unanswerable_queries: int = 0
    low_confidence_queries: int = 0
    failed_queries: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    # Processing metrics
    documents_processed: int = 0
    documents_failed: int = 0
    clauses_analyzed: int = 0
    degraded_clauses: int = 0
    chunks_indexed: int = 0
    unindexed_chunks: int = 0
    alerts_emitted: int = 0
    total_processing_time_ms: float = 0
    documents_deleted: int = 0

    # Failures
    upstream_failures: dict = field(default_factory=lambda: defaultdict(int))
    faults_by_type: dict = field(default_factory=lambda: defaultdict(int))
    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        """Calculate average question latency."""
        if self.total_queries == 0:
            return 0
        return self.total_latency_ms / self.total_queries

    @property
    def p95_latency_ms(self) -> float:
        """Calculate 95th percentile latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def answer_rate(self) -> float:
        """Share of successful questions that produced an answer."""
        total = self.answered_queries + self.unanswerable_queries
        if total == 0:
            return 0
        return self.answered_queries / total

    @property
    def degraded_clause_rate(self) -> float:
        if self.clauses_analyzed == 0:
            return 0
        return self.degraded_clauses / self.clauses_analyzed

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "queries": {
                "total": self.total_queries,
                "answered": self.answered_queries,
                "unanswerable": self.unanswerable_queries,
                "low_confidence": self.low_confidence_queries,
                "failed": self.failed_queries,
                "answer_rate": f"{self.answer_rate:.2%}",
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "processing": {
                "documents": self.documents_processed,
                "failed": self.documents_failed,
                "deleted": self.documents_deleted,
                "clauses": self.clauses_analyzed,
                "degraded_clauses": self.degraded_clauses,
                "degraded_rate": f"{self.degraded_clause_rate:.2%}",
                "chunks_indexed": self.chunks_indexed,
                "unindexed_chunks": self.unindexed_chunks,
                "alerts": self.alerts_emitted,
                "avg_time_ms": round(
                    self.total_processing_time_ms / max(self.documents_processed, 1), 2
                ),
            },
            "upstream_failures": dict(self.upstream_failures),
            "faults": dict(self.faults_by_type),
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates system metrics.

    Usage:
        collector = get_metrics_collector()

        with collector.track_query(document_id, question) as tracker:
            response = pipeline.ask(document_id, question)
            tracker.set_result(response.answerable, response.confidence, contexts=3)

        metrics = collector.get_metrics()
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern for global metrics collection."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.metrics = SystemMetrics()
        self._query_history: list[QueryMetrics] = []
        self._max_history = 1000
        self._start_time = datetime.now()
        self._lock = threading.Lock()
        self._initialized = True

    def reset(self):
        """Reset all metrics (for testing)."""
        with self._lock:
            self.metrics = SystemMetrics()
            self._query_history = []
            self._start_time = datetime.now()

    class QueryTracker:
        """Context manager for tracking question metrics."""

        def __init__(self, collector: 'MetricsCollector', document_id: str, question: str):
            self.collector = collector
            self.query = QueryMetrics(
                query_id=f"q_{uuid.uuid4().hex[:12]}",
                document_id=document_id,
                question=question[:200],
                start_time=time.time(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.query.end_time = time.time()
            self.query.latency_ms = (self.query.end_time - self.query.start_time) * 1000

            if exc_type:
                self.query.error = str(exc_val)
                self.collector._record_error(exc_type.__name__)

            self.collector._record_query(self.query)
            return False

        def set_result(
            self,
            answerable: bool,
            confidence: float,
            contexts: int = 0,
            low_confidence: bool = False,
        ):
            """Set answer metadata."""
            self.query.answerable = answerable
            self.query.confidence = confidence
            self.query.contexts = contexts
            self.query.low_confidence = low_confidence

    def track_query(self, document_id: str, question: str) -> QueryTracker:
        """Create a question tracker context manager."""
        return self.QueryTracker(self, document_id, question)

    def _record_query(self, query: QueryMetrics):
        with self._lock:
            m = self.metrics
            m.total_queries += 1

            if query.error:
                m.failed_queries += 1
            elif query.answerable:
                m.answered_queries += 1
                if query.low_confidence:
                    m.low_confidence_queries += 1
            else:
                m.unanswerable_queries += 1

            m.total_latency_ms += query.latency_ms
            m.min_latency_ms = min(m.min_latency_ms, query.latency_ms)
            m.max_latency_ms = max(m.max_latency_ms, query.latency_ms)
            m.latencies.append(query.latency_ms)
            if len(m.latencies) > self._max_history:
                m.latencies = m.latencies[-self._max_history:]

            self._query_history.append(query)
            if len(self._query_history) > self._max_history:
                self._query_history = self._query_history[-self._max_history:]

    def _record_error(self, error_type: str):
        with self._lock:
            self.metrics.errors_by_type[error_type] += 1

    def record_processing(
        self,
        document_id: str,
        clauses: int,
        degraded_clauses: int,
        chunks_indexed: int,
        unindexed_chunks: int,
        alerts: int,
        duration_ms: float,
        failed: bool = False,
    ):
        """Record one processing run."""
        with self._lock:
            m = self.metrics
            if failed:
                m.documents_failed += 1
            else:
                m.documents_processed += 1
            m.clauses_analyzed += clauses
            m.degraded_clauses += degraded_clauses
            m.chunks_indexed += chunks_indexed
            m.unindexed_chunks += unindexed_chunks
            m.alerts_emitted += alerts
            m.total_processing_time_ms += duration_ms
        logger.debug(f"Recorded processing of {document_id} in {duration_ms:.0f}ms")

    def record_deletion(self, document_id: str):
        with self._lock:
            self.metrics.documents_deleted += 1

    def record_upstream_failure(self, service: str):
        """Record a call that exhausted its retries."""
        with self._lock:
            self.metrics.upstream_failures[service] += 1

    def record_fault(self, fault_type: str):
        """Record an operator-visible fault (IndexInconsistent, CascadeDeleteIncomplete)."""
        with self._lock:
            self.metrics.faults_by_type[fault_type] += 1

    def get_metrics(self) -> SystemMetrics:
        """Get current metrics."""
        return self.metrics

    def get_metrics_dict(self) -> dict:
        """Get metrics as a dictionary."""
        with self._lock:
            return self.metrics.to_dict()

    def get_recent_queries(self, limit: int = 10) -> list[QueryMetrics]:
        """Get most recent questions."""
        return self._query_history[-limit:]

    def get_uptime(self) -> timedelta:
        """Get system uptime."""
        return datetime.now() - self._start_time


# Global metrics collector instance
_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
