"""
Tests for execution/legal_lens/embeddings.py

Covers: EmbeddingConfig, Voyage/Cohere services with mocked clients,
        dimension checks, caching, batching and the factory.

All external API calls are mocked.
"""

from unittest.mock import patch, MagicMock

import pytest


def _response(*vectors):
    response = MagicMock()
    response.embeddings = [list(v) for v in vectors]
    return response


def _voyage(monkeypatch, dimensions=3, **config):
    from execution.legal_lens.embeddings import EmbeddingConfig, VoyageEmbeddingService

    monkeypatch.setenv("VOYAGE_API_KEY", "fake-key")
    mock_voyage = MagicMock()
    with patch.dict("sys.modules", {"voyageai": mock_voyage}):
        svc = VoyageEmbeddingService(EmbeddingConfig(dimensions=dimensions, **config))
    return svc, mock_voyage.Client.return_value


# ---------------------------------------------------------------------------
# EmbeddingConfig and dimension checks
# ---------------------------------------------------------------------------

class TestEmbeddingConfig:
    """Tests for EmbeddingConfig dataclass."""

    def test_defaults(self):
        from execution.legal_lens.embeddings import EmbeddingConfig
        cfg = EmbeddingConfig()
        assert cfg.provider == "voyage"
        assert cfg.model == "voyage-law-2"
        assert cfg.dimensions == 1024
        assert cfg.use_cache is True

    def test_check_dimensions(self):
        from execution.legal_lens.embeddings import check_dimensions
        from execution.legal_lens.errors import UpstreamDegraded

        assert check_dimensions([1, 2], 2, "test") == [1.0, 2.0]
        with pytest.raises(UpstreamDegraded):
            check_dimensions([1, 2, 3], 2, "test")


# ---------------------------------------------------------------------------
# API-backed services
# ---------------------------------------------------------------------------

class TestVoyageEmbeddingService:
    """Voyage provider with a mocked client."""

    def test_embed_uses_document_input_type(self, monkeypatch):
        svc, client = _voyage(monkeypatch, use_cache=False)
        client.embed.return_value = _response([0.1, 0.2, 0.3])

        assert svc.embed("The tenant pays rent.") == [0.1, 0.2, 0.3]
        assert client.embed.call_args.kwargs["input_type"] == "document"

    def test_embed_query_uses_query_input_type(self, monkeypatch):
        svc, client = _voyage(monkeypatch, use_cache=False)
        client.embed.return_value = _response([0.1, 0.2, 0.3])

        svc.embed_query("When is rent due?")
        assert client.embed.call_args.kwargs["input_type"] == "query"

    def test_wrong_dimensions_are_degraded(self, monkeypatch):
        from execution.legal_lens.errors import UpstreamDegraded

        svc, client = _voyage(monkeypatch, use_cache=False)
        client.embed.return_value = _response([0.1, 0.2])
        with pytest.raises(UpstreamDegraded):
            svc.embed("text")

    def test_missing_vectors_are_degraded(self, monkeypatch):
        from execution.legal_lens.errors import UpstreamDegraded

        svc, client = _voyage(monkeypatch, use_cache=False)
        client.embed.return_value = _response()
        with pytest.raises(UpstreamDegraded):
            svc.embed("text")

    def test_client_errors_propagate(self, monkeypatch):
        svc, client = _voyage(monkeypatch, use_cache=False)
        client.embed.side_effect = ConnectionError("down")
        with pytest.raises(ConnectionError):
            svc.embed("text")

    def test_memory_cache(self, monkeypatch):
        svc, client = _voyage(monkeypatch)
        client.embed.return_value = _response([1.0, 0.0, 0.0])

        svc.embed("same text")
        svc.embed("same text")
        assert client.embed.call_count == 1

    def test_file_cache(self, monkeypatch, tmp_path):
        svc, client = _voyage(monkeypatch, cache_dir=str(tmp_path))
        client.embed.return_value = _response([1.0, 0.0, 0.0])
        svc.embed("cached text")

        fresh, fresh_client = _voyage(monkeypatch, cache_dir=str(tmp_path))
        assert fresh.embed("cached text") == [1.0, 0.0, 0.0]
        fresh_client.embed.assert_not_called()

    def test_raises_without_client(self, monkeypatch):
        from execution.legal_lens.embeddings import EmbeddingConfig, VoyageEmbeddingService

        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
        svc = VoyageEmbeddingService(EmbeddingConfig())
        with pytest.raises(RuntimeError, match="VOYAGE_API_KEY"):
            svc.embed_query("hello")

    def test_batches_respect_size(self, monkeypatch):
        svc, client = _voyage(monkeypatch, use_cache=False, batch_size=2)
        client.embed.side_effect = lambda texts, **kw: _response(*[[1.0, 0.0, 0.0]] * len(texts))

        vectors = svc.embed_documents(["a", "b", "c", "d", "e"])
        assert len(vectors) == 5
        assert client.embed.call_count == 3
        assert svc.embed_documents([]) == []


class TestCohereEmbeddingService:

    def test_cohere_input_types(self, monkeypatch):
        from execution.legal_lens.embeddings import CohereEmbeddingService, EmbeddingConfig

        monkeypatch.setenv("COHERE_API_KEY", "fake-key")
        mock_cohere = MagicMock()
        with patch.dict("sys.modules", {"cohere": mock_cohere}):
            svc = CohereEmbeddingService(EmbeddingConfig(dimensions=2, use_cache=False))
        client = mock_cohere.Client.return_value
        client.embed.return_value = _response([0.5, 0.5])

        svc.embed_query("q")
        assert client.embed.call_args.kwargs["input_type"] == "search_query"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestFactory:

    def test_voyage_default(self, monkeypatch):
        from execution.legal_lens.embeddings import VoyageEmbeddingService, get_embedding_service

        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
        svc = get_embedding_service()
        assert isinstance(svc, VoyageEmbeddingService)
        assert svc.dimensions == 1024

    def test_cohere(self, monkeypatch):
        from execution.legal_lens.embeddings import CohereEmbeddingService, get_embedding_service

        monkeypatch.delenv("COHERE_API_KEY", raising=False)
        svc = get_embedding_service(provider="cohere")
        assert isinstance(svc, CohereEmbeddingService)
        assert svc.config.model == "embed-english-v3.0"

    def test_local(self):
        from execution.legal_lens.embeddings import LocalEmbeddingService, get_embedding_service

        mock_st = MagicMock()
        model = mock_st.SentenceTransformer.return_value
        model.get_sentence_embedding_dimension.return_value = 2
        model.encode.return_value = [[0.6, 0.8]]
        with patch.dict("sys.modules", {"sentence_transformers": mock_st}):
            svc = get_embedding_service(use_local=True)

        assert isinstance(svc, LocalEmbeddingService)
        assert svc.embed_query("q") == [0.6, 0.8]
        assert svc.dimensions == 2
