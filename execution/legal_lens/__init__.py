"""
Legal Lens - Clause Analysis and Grounded Q&A for Legal Documents

This module provides:
- Clause segmentation of extracted document text
- Plain-language clause explanations with faithfulness checks
- Risk alerts from document-type pattern tables and a classifier
- A per-document vector index for questions answered with citations
- Document summaries with an overall risk posture

External AI services (embedding, generation, classification) sit behind
narrow interfaces with timeouts, retries and graceful degradation.
"""

from .config import PipelineConfig, UpstreamPolicy
from .models import (
    AnswerResponse,
    Clause,
    ClauseAnalysis,
    DocumentState,
    DocumentSummary,
    DocumentType,
    RiskAlert,
    RiskLevel,
)
from .pipeline import DocumentPipeline
from .repository import DocumentRepository
from .storage import InMemoryKeyValueStore
from .vector_store import InMemoryVectorStore

__all__ = [
    "PipelineConfig",
    "UpstreamPolicy",
    "AnswerResponse",
    "Clause",
    "ClauseAnalysis",
    "DocumentState",
    "DocumentSummary",
    "DocumentType",
    "RiskAlert",
    "RiskLevel",
    "DocumentPipeline",
    "DocumentRepository",
    "InMemoryKeyValueStore",
    "InMemoryVectorStore",
]

__version__ = "0.1.0"
