"""
Document type identification.

Pattern scoring first; if it is inconclusive the classification service
picks a label. Anything that cannot be decided is ``unknown``, which selects
only the common risk patterns and neutral terminology.
"""

import re
import logging
from typing import Optional

from .errors import UpstreamError
from .llm import ClassificationService
from .models import DocumentType
from .patterns import DOCTYPE_PATTERNS
from .upstream import UpstreamCaller

logger = logging.getLogger(__name__)

MIN_PATTERN_SCORE = 2
SAMPLE_CHARS = 4000

_COMPILED = {
    doc_type: [re.compile(p) for p in patterns]
    for doc_type, patterns in DOCTYPE_PATTERNS.items()
}


def score_document_type(text: str) -> dict[DocumentType, int]:
    """Number of distinct indicator patterns each type matches in the text."""
    return {
        doc_type: sum(1 for p in patterns if p.search(text))
        for doc_type, patterns in _COMPILED.items()
    }


class DocumentTypeIdentifier:
    """Resolves a missing document type tag."""

    def __init__(
        self,
        classifier: Optional[ClassificationService] = None,
        upstream: Optional[UpstreamCaller] = None,
    ):
        self._classifier = classifier
        self._upstream = upstream

    def identify(self, text: str, document_id: Optional[str] = None) -> DocumentType:
        scores = score_document_type(text)
        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        best, best_score = ranked[0]
        runner_up = ranked[1][1] if len(ranked) > 1 else 0

        if best_score >= MIN_PATTERN_SCORE and best_score > runner_up:
            logger.info(f"Identified {document_id} as {best.value} (pattern score {best_score})")
            return best

        if self._classifier is not None and self._upstream is not None:
            taxonomy = [t.value for t in DocumentType]
            try:
                label = self._upstream.call(
                    "classification",
                    self._classifier.classify,
                    text[:SAMPLE_CHARS],
                    taxonomy,
                    document_id=document_id,
                )
                doc_type = DocumentType.parse(label)
                logger.info(f"Classified {document_id} as {doc_type.value}")
                return doc_type
            except UpstreamError as e:
                logger.warning(f"Document type classification failed for {document_id}: {e}")

        if best_score > runner_up:
            return best
        return DocumentType.UNKNOWN
