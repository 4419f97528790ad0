"""
Pipeline Configuration for Legal Lens

Every tunable used by the pipeline lives here: retrieval thresholds,
segmentation and chunk sizes, worker pool bounds and the timeout/retry
policy applied to external AI calls.

Values can be overridden from the environment (or a local .env file) using
the ``LEGAL_LENS_`` prefix, e.g. ``LEGAL_LENS_CONFIDENCE_THRESHOLD=0.5`` or
``LEGAL_LENS_UPSTREAM_TIMEOUT_SECONDS=10``.
"""

import os
import logging
from dataclasses import dataclass, field, fields
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "LEGAL_LENS_"

DEFAULT_LLM_BASE_URL = "https://integrate.api.nvidia.com/v1"
DEFAULT_LLM_MODEL = "qwen/qwen3-235b-a22b"


@dataclass
class UpstreamPolicy:
    """Timeout and retry policy for one class of external call."""
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), capped."""
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)


@dataclass
class PipelineConfig:
    """Configuration for the document analysis and Q&A pipeline."""
    # Retrieval and answering
    confidence_threshold: float = 0.4
    similarity_floor: float = 0.25
    top_k: int = 5
    ambiguity_margin: float = 0.02
    generation_confidence_weight: float = 0.4

    # Segmentation
    max_clause_chars: int = 1500
    paragraph_blank_lines: int = 1

    # Chunking
    chunk_target_chars: int = 800
    chunk_overlap_chars: int = 150
    chars_per_token: float = 4.0

    # Clause analysis sanity bounds
    analysis_length_ratio: float = 4.0
    analysis_min_length_bound: int = 1200
    analysis_max_tokens: int = 700

    # Concurrency
    max_workers: int = 8
    max_calls_per_document: int = 4

    # Deletion saga
    delete_max_attempts: int = 3

    # External services
    upstream: UpstreamPolicy = field(default_factory=UpstreamPolicy)
    llm_model: str = DEFAULT_LLM_MODEL
    llm_base_url: str = DEFAULT_LLM_BASE_URL
    embedding_provider: str = "voyage"
    use_local_embeddings: bool = False

    def __post_init__(self):
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if not -1.0 <= self.similarity_floor <= 1.0:
            raise ValueError(
                f"similarity_floor must be in [-1, 1], got {self.similarity_floor}"
            )
        if self.chunk_overlap_chars >= self.chunk_target_chars:
            raise ValueError("chunk_overlap_chars must be smaller than chunk_target_chars")
        if self.max_workers < 1 or self.max_calls_per_document < 1:
            raise ValueError("worker and per-document call limits must be at least 1")

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "PipelineConfig":
        """
        Build a config from defaults plus environment overrides.

        Args:
            prefix: Environment variable prefix

        Returns:
            PipelineConfig with overrides applied
        """
        load_dotenv()
        values = _read_overrides(cls(), prefix)
        upstream = _read_overrides(UpstreamPolicy(), f"{prefix}UPSTREAM_")
        return cls(upstream=UpstreamPolicy(**upstream), **values)


def _coerce(raw: str, current):
    """Cast an environment string to the type of the current default."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _read_overrides(defaults, prefix: str) -> dict:
    overrides = {}
    for f in fields(defaults):
        current = getattr(defaults, f.name)
        if isinstance(current, UpstreamPolicy):
            continue
        raw: Optional[str] = os.getenv(f"{prefix}{f.name.upper()}")
        if raw is None or raw == "":
            continue
        try:
            overrides[f.name] = _coerce(raw, current)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {prefix}{f.name.upper()}: {raw!r}")
    return overrides
