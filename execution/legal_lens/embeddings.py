"""
Embedding Service for Legal Lens

Provides embeddings via Voyage AI (voyage-law-2), Cohere, or a local
sentence-transformers model. Every provider exposes the same narrow contract:

    embed(text) -> vector         (chunks, at indexing time)
    embed_query(text) -> vector   (questions, at retrieval time)

Vectors always have ``dimensions`` entries; a provider returning a vector of
another size is treated as degraded output.

Architecture:
    BaseEmbeddingService  -- shared caching, batching, dimension checks
        CohereEmbeddingService    -- Cohere embed-v3 provider
        VoyageEmbeddingService    -- Voyage AI voyage-law-2 provider
    LocalEmbeddingService -- local sentence-transformers (no caching needed)
"""

import os
import json
import hashlib
import logging
import threading
from typing import Optional, Union
from dataclasses import dataclass
from pathlib import Path

from .errors import UpstreamDegraded

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "voyage"  # "voyage" or "cohere"
    model: str = "voyage-law-2"
    dimensions: int = 1024
    batch_size: int = 128
    max_tokens_per_batch: int = 100000
    chars_per_token: float = 2.0  # Voyage tokenizer is more aggressive than LLM tokenizers
    cache_dir: Optional[str] = None
    use_cache: bool = True


def check_dimensions(vector, expected: int, provider: str) -> list[float]:
    """Return the vector as a list of floats or raise if its size is wrong."""
    values = [float(v) for v in vector]
    if len(values) != expected:
        raise UpstreamDegraded(
            "embedding",
            f"{provider} returned {len(values)} dimensions, expected {expected}",
        )
    return values


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Subclasses implement ``_init_client()`` and set:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable name for the API key
    - _doc_input_type / _query_input_type: provider input type strings
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache = {}
        self._cache_lock = threading.Lock()

        if self.config.cache_dir:
            self._cache_path = Path(self.config.cache_dir)
            self._cache_path.mkdir(parents=True, exist_ok=True)
        else:
            self._cache_path = None

        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific API client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _require_client(self):
        if not self._client:
            raise RuntimeError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches respecting both item count and token limits."""
        batches = []
        current_batch = []
        current_tokens = 0
        cpt = self.config.chars_per_token

        for text in texts:
            est_tokens = len(text) / cpt
            if current_batch and (
                len(current_batch) >= self.config.batch_size
                or current_tokens + est_tokens > self.config.max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0
            current_batch.append(text)
            current_tokens += est_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def embed(self, text: str) -> list[float]:
        """
        Embed one chunk of document text.

        Args:
            text: Chunk content

        Returns:
            Embedding vector of ``dimensions`` floats
        """
        self._require_client()
        return self._embed_batch([text], input_type=self._doc_input_type)[0]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many chunks, batched to respect provider limits."""
        if not texts:
            return []
        self._require_client()

        batches = self._create_batches(texts)
        logger.info(
            f"Embedding {len(texts)} chunks in {len(batches)} batches"
            f" with {self._provider_name}"
        )

        embeddings = []
        for batch in batches:
            embeddings.extend(self._embed_batch(batch, input_type=self._doc_input_type))
        return embeddings

    def embed_query(self, query: str) -> list[float]:
        """
        Embed a question.

        Uses the provider's query input type for better query-document matching.
        """
        self._require_client()
        return self._embed_batch([query], input_type=self._query_input_type)[0]

    def _embed_batch(self, texts: list[str], input_type: str = "document") -> list[list[float]]:
        """Embed a batch of texts using the provider API, serving cached vectors first."""
        results = []
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cached = self._get_cached(self._get_cache_key(text, input_type))
            if cached is not None:
                results.append((i, cached))
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        if uncached_texts:
            try:
                response = self._client.embed(
                    texts=uncached_texts,
                    model=self.config.model,
                    input_type=input_type,
                )
            except Exception as e:
                logger.error(f"{self._provider_name} embedding failed: {e}")
                raise

            if len(response.embeddings) != len(uncached_texts):
                raise UpstreamDegraded(
                    "embedding",
                    f"{self._provider_name} returned {len(response.embeddings)} vectors "
                    f"for {len(uncached_texts)} texts",
                )
            for idx, embedding in zip(uncached_indices, response.embeddings):
                vector = check_dimensions(embedding, self.dimensions, self._provider_name)
                self._set_cached(self._get_cache_key(texts[idx], input_type), vector)
                results.append((idx, vector))

        results.sort(key=lambda x: x[0])
        return [emb for _, emb in results]

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Generate cache key for text."""
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        """Get cached embedding from memory, then from the file cache."""
        if not self.config.use_cache:
            return None

        with self._cache_lock:
            if key in self._cache:
                return self._cache[key]

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            if cache_file.exists():
                try:
                    with open(cache_file) as f:
                        embedding = json.load(f)
                except (OSError, ValueError) as e:
                    logger.debug(f"Failed to read embedding cache file {cache_file}: {e}")
                    return None
                with self._cache_lock:
                    self._cache[key] = embedding
                return embedding

        return None

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        """Cache an embedding."""
        if not self.config.use_cache:
            return

        with self._cache_lock:
            self._cache[key] = embedding

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            try:
                with open(cache_file, 'w') as f:
                    json.dump(embedding, f)
            except OSError as e:
                logger.warning(f"Failed to cache embedding: {e}")

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class CohereEmbeddingService(BaseEmbeddingService):
    """Embeddings from Cohere's embed-v3 model (1024 dimensions)."""

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _doc_input_type = "search_document"
    _query_input_type = "search_query"

    def _init_client(self):
        """Initialize the Cohere client."""
        api_key = os.getenv("COHERE_API_KEY")

        if not api_key:
            logger.warning(
                "COHERE_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        import cohere
        self._client = cohere.Client(api_key)
        logger.info(f"Cohere client initialized with model {self.config.model}")


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embeddings from Voyage AI's voyage-law-2 model.

    voyage-law-2 is tuned for legal text and returns 1024-dimensional vectors
    with separate input types for documents and queries.
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        api_key = os.getenv("VOYAGE_API_KEY")

        if not api_key:
            logger.warning(
                "VOYAGE_API_KEY not found. Embeddings will fail. "
                "Get an API key at https://dash.voyageai.com/"
            )
            return

        import voyageai
        self._client = voyageai.Client(api_key=api_key)
        logger.info(f"Voyage AI client initialized with model {self.config.model}")


class LocalEmbeddingService:
    """
    Embedding service backed by a local sentence-transformers model.

    Useful for development and for deployments without an embedding API.
    """

    def __init__(self, model_name: str = "BAAI/bge-m3"):
        from sentence_transformers import SentenceTransformer
        self._model = SentenceTransformer(model_name)
        self._dimensions = self._model.get_sentence_embedding_dimension()
        self._lock = threading.Lock()
        logger.info(f"Local embedding model loaded: {model_name}")

    def _encode(self, texts: list[str]):
        with self._lock:
            return self._model.encode(texts, normalize_embeddings=True)

    def embed(self, text: str) -> list[float]:
        return check_dimensions(self._encode([text])[0], self._dimensions, "local")

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [check_dimensions(v, self._dimensions, "local") for v in self._encode(texts)]

    def embed_query(self, query: str) -> list[float]:
        return self.embed(query)

    @property
    def dimensions(self) -> int:
        return self._dimensions


def get_embedding_service(
    provider: str = "voyage",
    use_local: bool = False,
    model: Optional[str] = None,
) -> Union[VoyageEmbeddingService, CohereEmbeddingService, LocalEmbeddingService]:
    """
    Factory function to get the configured embedding service.

    Args:
        provider: "voyage" (default, tuned for legal text) or "cohere"
        use_local: If True, use a local sentence-transformers model
        model: Optional model name override

    Returns:
        Configured embedding service
    """
    if use_local:
        return LocalEmbeddingService(model or "BAAI/bge-m3")

    if provider == "voyage":
        return VoyageEmbeddingService(EmbeddingConfig(
            provider="voyage",
            model=model or "voyage-law-2",
            dimensions=1024,
            batch_size=128,
        ))

    return CohereEmbeddingService(EmbeddingConfig(
        provider="cohere",
        model=model or "embed-english-v3.0",
        dimensions=1024,
        batch_size=96,
        chars_per_token=4.0,
    ))
