"""
Tests for execution/legal_lens/config.py

Covers: PipelineConfig defaults and validation, UpstreamPolicy backoff,
        and environment overrides.
"""

import pytest


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    """Keep a developer's local .env out of these tests."""
    monkeypatch.setattr("execution.legal_lens.config.load_dotenv", lambda *a, **kw: False)


class TestPipelineConfig:

    def test_defaults(self):
        from execution.legal_lens.config import PipelineConfig

        cfg = PipelineConfig()
        assert cfg.confidence_threshold == 0.4
        assert cfg.similarity_floor == 0.25
        assert cfg.top_k == 5
        assert cfg.upstream.max_attempts == 3

    @pytest.mark.parametrize("kwargs", [
        {"confidence_threshold": 1.5},
        {"confidence_threshold": -0.1},
        {"similarity_floor": 2.0},
        {"chunk_target_chars": 100, "chunk_overlap_chars": 100},
        {"max_workers": 0},
        {"max_calls_per_document": 0},
    ])
    def test_invalid_values(self, kwargs):
        from execution.legal_lens.config import PipelineConfig
        with pytest.raises(ValueError):
            PipelineConfig(**kwargs)


class TestUpstreamPolicy:

    def test_backoff_doubles_and_caps(self):
        from execution.legal_lens.config import UpstreamPolicy

        policy = UpstreamPolicy(backoff_base_seconds=1.0, backoff_max_seconds=5.0)
        assert [policy.backoff(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestFromEnv:

    def test_no_overrides(self, monkeypatch):
        from execution.legal_lens.config import PipelineConfig

        monkeypatch.delenv("LEGAL_LENS_CONFIDENCE_THRESHOLD", raising=False)
        assert PipelineConfig.from_env().confidence_threshold == 0.4

    def test_overrides(self, monkeypatch):
        from execution.legal_lens.config import PipelineConfig

        monkeypatch.setenv("LEGAL_LENS_CONFIDENCE_THRESHOLD", "0.55")
        monkeypatch.setenv("LEGAL_LENS_TOP_K", "8")
        monkeypatch.setenv("LEGAL_LENS_USE_LOCAL_EMBEDDINGS", "true")
        monkeypatch.setenv("LEGAL_LENS_EMBEDDING_PROVIDER", "cohere")
        monkeypatch.setenv("LEGAL_LENS_UPSTREAM_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("LEGAL_LENS_UPSTREAM_MAX_ATTEMPTS", "2")

        cfg = PipelineConfig.from_env()
        assert cfg.confidence_threshold == 0.55
        assert cfg.top_k == 8
        assert cfg.use_local_embeddings is True
        assert cfg.embedding_provider == "cohere"
        assert cfg.upstream.timeout_seconds == 5.0
        assert cfg.upstream.max_attempts == 2

    def test_invalid_value_is_ignored(self, monkeypatch):
        from execution.legal_lens.config import PipelineConfig

        monkeypatch.setenv("LEGAL_LENS_TOP_K", "many")
        assert PipelineConfig.from_env().top_k == 5

    def test_custom_prefix(self, monkeypatch):
        from execution.legal_lens.config import PipelineConfig

        monkeypatch.setenv("LL_SIMILARITY_FLOOR", "0.3")
        assert PipelineConfig.from_env(prefix="LL_").similarity_floor == 0.3
