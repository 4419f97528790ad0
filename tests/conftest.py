"""
Shared fixtures and test utilities for Legal Lens tests.

Provides deterministic fakes for the embedding, generation and
classification services, sample documents, and in-memory stores so that all
tests run without API keys, databases, or external network access.
"""

import re
import sys
import json
import threading
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from execution.legal_lens.patterns import STOPWORDS  # noqa: E402

# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------
SAMPLE_RENTAL = "A tenant shall pay rent on the 1st of each month or incur a 5% late fee"

SAMPLE_LEASE = """RESIDENTIAL LEASE AGREEMENT

1. Rent. The tenant shall pay rent of 1,200 dollars on the first day of each month. A late fee of 50 dollars applies after the fifth day.

2. Deposit. The tenant shall pay a security deposit of 2,400 dollars. The deposit is non-refundable if the tenant leaves before the end of the term.

3. Entry. The landlord may enter the premises without notice to carry out inspections.

4. Pets. No pets are allowed in the apartment without written consent from the landlord.
"""

SAMPLE_EMPLOYMENT = """EMPLOYMENT CONTRACT

1. Position. The employee is hired as a software engineer. The salary is 60,000 per year.

2. Restrictions. The employee shall not work for a competitor for two years after leaving.
"""

SAMPLE_UNSTRUCTURED = (
    "The parties agree to cooperate in good faith. Each party will keep the other "
    "informed of relevant developments. Notices must be given in writing"
)

_TOKEN = re.compile(r"[a-z0-9]+")
_CLAUSE_IN_PROMPT = re.compile(r'Clause:\n"""\n(.*?)\n"""', re.DOTALL)


# ---------------------------------------------------------------------------
# Deterministic service fakes
# ---------------------------------------------------------------------------

class VocabularyEmbeddingService:
    """
    Bag-of-words embedding: each distinct content word gets its own dimension.

    Cosine similarity between two texts is then the normalized word overlap,
    which makes retrieval scores predictable in tests.
    """

    def __init__(self, dimensions: int = 1024):
        self._dimensions = dimensions
        self._vocabulary: dict[str, int] = {}
        self._lock = threading.Lock()
        self.calls = []

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def tokens(self, text: str) -> set[str]:
        return {t for t in _TOKEN.findall(text.lower()) if t not in STOPWORDS}

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self._dimensions
        with self._lock:
            for token in sorted(self.tokens(text)):
                if token not in self._vocabulary:
                    self._vocabulary[token] = len(self._vocabulary) % self._dimensions
                vector[self._vocabulary[token]] = 1.0
        return vector

    def embed_query(self, query: str) -> list[float]:
        return self.embed(query)


class FailingEmbeddingService(VocabularyEmbeddingService):
    """Embedding service that fails for texts containing a marker (or always)."""

    def __init__(self, marker: str = None, dimensions: int = 1024):
        super().__init__(dimensions)
        self.marker = marker

    def embed(self, text: str) -> list[float]:
        if self.marker is None or self.marker in text:
            self.calls.append(text)
            raise ConnectionError("embedding service unreachable")
        return super().embed(text)


class FakeGenerator:
    """
    Scripted text generation.

    Analysis prompts get an explanation built only from the clause's own
    words; answer prompts get ``answer_payload`` as JSON.
    """

    def __init__(self, risk_level: str = "medium", answer_payload=None, analysis_payload=None):
        self.risk_level = risk_level
        self.answer_payload = answer_payload or {
            "answer": "The tenant must pay a late fee if rent is not paid on time [1].",
            "citations": [1],
            "confidence": 0.9,
            "answerable": True,
        }
        self.analysis_payload = analysis_payload
        self.fail_answers = False
        self.fail_analysis = False
        self.calls = []
        self._lock = threading.Lock()

    def complete(self, prompt: str, constraints=None) -> str:
        with self._lock:
            self.calls.append(prompt)
        if "SOURCES:" in prompt:
            if self.fail_answers:
                raise ConnectionError("generation service unreachable")
            if isinstance(self.answer_payload, str):
                return self.answer_payload
            return json.dumps(self.answer_payload)
        if "Clause:" in prompt:
            if self.fail_analysis:
                raise ConnectionError("generation service unreachable")
            clause = _CLAUSE_IN_PROMPT.search(prompt).group(1)
            return json.dumps(self.analysis_payload or self.analysis_for(clause))
        return "none"

    def analysis_for(self, clause: str) -> dict:
        words = clause.split()
        return {
            "explanation": "In plain terms: " + " ".join(words[:25]),
            "key_points": [" ".join(words[:12])],
            "obligations": [],
            "risk_level": self.risk_level,
        }

    @property
    def answer_calls(self) -> int:
        return sum(1 for p in self.calls if "SOURCES:" in p)


class FailingGenerator(FakeGenerator):
    """Every generation call fails."""

    def __init__(self):
        super().__init__()
        self.fail_answers = True
        self.fail_analysis = True


class FakeClassifier:
    """
    Scripted classifier.

    Risk taxonomies (which contain "none") get ``label``; the document type
    taxonomy gets ``document_type``.
    """

    def __init__(self, label: str = "none", document_type: str = "unknown"):
        self.label = label
        self.document_type = document_type
        self.calls = []
        self._lock = threading.Lock()

    def classify(self, text: str, taxonomy: list[str]) -> str:
        with self._lock:
            self.calls.append((text, tuple(taxonomy)))
        if "none" in taxonomy:
            return self.label
        return self.document_type


class FailingClassifier(FakeClassifier):
    def classify(self, text: str, taxonomy: list[str]) -> str:
        with self._lock:
            self.calls.append((text, tuple(taxonomy)))
        raise TimeoutError("classification service timed out")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics():
    """Give every test a fresh metrics singleton."""
    from execution.legal_lens import metrics
    metrics.MetricsCollector._instance = None
    metrics._collector = None
    yield
    metrics.MetricsCollector._instance = None
    metrics._collector = None


@pytest.fixture
def fast_policy():
    """Upstream policy without backoff delays."""
    from execution.legal_lens.config import UpstreamPolicy
    return UpstreamPolicy(
        timeout_seconds=5.0, max_attempts=2, backoff_base_seconds=0.0, backoff_max_seconds=0.0,
    )


@pytest.fixture
def config(fast_policy):
    from execution.legal_lens.config import PipelineConfig
    return PipelineConfig(upstream=fast_policy, max_workers=4)


@pytest.fixture
def upstream(fast_policy):
    from execution.legal_lens.upstream import UpstreamCaller
    caller = UpstreamCaller(fast_policy, sleep=lambda seconds: None)
    yield caller
    caller.shutdown()


@pytest.fixture
def embedding_service():
    return VocabularyEmbeddingService()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def kv_store():
    from execution.legal_lens.storage import InMemoryKeyValueStore
    return InMemoryKeyValueStore()


@pytest.fixture
def vector_store():
    from execution.legal_lens.vector_store import InMemoryVectorStore
    return InMemoryVectorStore()


@pytest.fixture
def repository(kv_store):
    from execution.legal_lens.repository import DocumentRepository
    return DocumentRepository(kv_store)


@pytest.fixture
def make_pipeline(repository, vector_store, embedding_service, generator, classifier, config):
    """Factory for pipelines; any collaborator can be overridden."""
    from execution.legal_lens.pipeline import DocumentPipeline

    created = []

    def _make(**overrides):
        kwargs = {
            "repository": repository,
            "vector_store": vector_store,
            "embedding_service": embedding_service,
            "generator": generator,
            "classifier": classifier,
            "config": config,
            "sleep": lambda seconds: None,
        }
        kwargs.update(overrides)
        pipeline = DocumentPipeline(**kwargs)
        created.append(pipeline)
        return pipeline

    yield _make
    for pipeline in created:
        pipeline.close()


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()


@pytest.fixture
def rental_pipeline(pipeline):
    """Pipeline with the one-sentence rental document registered and processed."""
    pipeline.register_document("rental-1", SAMPLE_RENTAL, user_id="user-1")
    pipeline.process_document("rental-1")
    return pipeline
