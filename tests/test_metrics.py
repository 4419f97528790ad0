"""
Tests for execution/legal_lens/metrics.py

Covers: SystemMetrics (aggregation properties), MetricsCollector singleton,
        QueryTracker context manager, processing/upstream/fault counters,
        and the get_metrics_collector factory.
"""

import pytest


# ---------------------------------------------------------------------------
# SystemMetrics aggregation properties
# ---------------------------------------------------------------------------

class TestSystemMetrics:
    """Tests for SystemMetrics computed properties."""

    def test_avg_latency_zero_queries(self):
        from execution.legal_lens.metrics import SystemMetrics
        assert SystemMetrics().avg_latency_ms == 0

    def test_avg_latency_with_queries(self):
        from execution.legal_lens.metrics import SystemMetrics
        m = SystemMetrics(total_queries=4, total_latency_ms=400.0)
        assert m.avg_latency_ms == 100.0

    def test_p95_latency(self):
        from execution.legal_lens.metrics import SystemMetrics
        m = SystemMetrics(latencies=list(range(1, 101)))
        assert m.p95_latency_ms == 96

    def test_answer_rate_ignores_failed(self):
        from execution.legal_lens.metrics import SystemMetrics
        m = SystemMetrics(answered_queries=3, unanswerable_queries=1, failed_queries=10)
        assert m.answer_rate == 0.75

    def test_degraded_clause_rate(self):
        from execution.legal_lens.metrics import SystemMetrics
        assert SystemMetrics().degraded_clause_rate == 0
        assert SystemMetrics(clauses_analyzed=4, degraded_clauses=1).degraded_clause_rate == 0.25

    def test_to_dict_empty(self):
        from execution.legal_lens.metrics import SystemMetrics
        d = SystemMetrics().to_dict()
        assert set(d) == {"queries", "latency_ms", "processing", "upstream_failures", "faults", "errors"}
        assert d["latency_ms"]["min"] == 0
        assert d["processing"]["avg_time_ms"] == 0


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

class TestMetricsCollector:

    def test_singleton(self):
        from execution.legal_lens.metrics import MetricsCollector, get_metrics_collector
        assert MetricsCollector() is MetricsCollector()
        assert get_metrics_collector() is get_metrics_collector()

    def test_track_answered_query(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        with collector.track_query("doc-1", "When is rent due?") as tracker:
            tracker.set_result(True, 0.8, contexts=3)

        m = collector.get_metrics()
        assert m.total_queries == 1
        assert m.answered_queries == 1
        assert collector.get_recent_queries()[0].contexts == 3

    def test_track_low_confidence_and_unanswerable(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        with collector.track_query("doc-1", "q1") as tracker:
            tracker.set_result(True, 0.45, low_confidence=True)
        with collector.track_query("doc-1", "q2") as tracker:
            tracker.set_result(False, 0.0)

        m = collector.get_metrics()
        assert m.low_confidence_queries == 1
        assert m.unanswerable_queries == 1

    def test_exception_is_recorded_and_propagated(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        with pytest.raises(KeyError):
            with collector.track_query("doc-1", "q"):
                raise KeyError("boom")

        m = collector.get_metrics()
        assert m.failed_queries == 1
        assert m.errors_by_type["KeyError"] == 1

    def test_question_is_truncated(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        with collector.track_query("doc-1", "x" * 500):
            pass
        assert len(collector.get_recent_queries()[0].question) == 200

    def test_record_processing(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        collector.record_processing("doc-1", clauses=5, degraded_clauses=1, chunks_indexed=7,
                                    unindexed_chunks=0, alerts=2, duration_ms=120.0)
        collector.record_processing("doc-2", clauses=0, degraded_clauses=0, chunks_indexed=0,
                                    unindexed_chunks=3, alerts=0, duration_ms=30.0, failed=True)

        d = collector.get_metrics_dict()["processing"]
        assert d["documents"] == 1
        assert d["failed"] == 1
        assert d["clauses"] == 5
        assert d["unindexed_chunks"] == 3
        assert d["alerts"] == 2
        assert d["avg_time_ms"] == 150.0

    def test_failure_counters(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        collector.record_upstream_failure("embedding")
        collector.record_upstream_failure("embedding")
        collector.record_fault("IndexInconsistent")
        collector.record_deletion("doc-1")

        d = collector.get_metrics_dict()
        assert d["upstream_failures"] == {"embedding": 2}
        assert d["faults"] == {"IndexInconsistent": 1}
        assert d["processing"]["deleted"] == 1

    def test_reset(self):
        from execution.legal_lens.metrics import get_metrics_collector

        collector = get_metrics_collector()
        collector.record_fault("CascadeDeleteIncomplete")
        collector.reset()
        assert collector.get_metrics_dict()["faults"] == {}
        assert collector.get_recent_queries() == []
        assert collector.get_uptime().total_seconds() >= 0
