"""
Clause Analyzer for Legal Lens

Produces a plain-language explanation, key points and obligations for one
clause using a text generation call, with the document type steering the
terminology.

Generated output is checked before it is accepted:
- it must be non-empty JSON with an explanation
- it must stay within a length bound relative to the clause (runaway output)
- the explanation may not contain figures that are absent from the clause
- key points and obligations without support in the clause text are dropped

A failed call or a failed check is retried once with a shortened clause.
If that also fails the clause gets a degraded analysis flagged for manual
review instead of failing the document.
"""

import re
import logging
from typing import Optional

from .cancellation import GenerationRegistry
from .config import PipelineConfig
from .errors import UpstreamDegraded, UpstreamError
from .llm import GenerationConstraints, TextGenerationService, parse_json_response
from .models import AnalysisStatus, Clause, ClauseAnalysis, DocumentType, RiskLevel
from .patterns import LLM_PROMPTS, NUMBER_WORDS, STOPWORDS, TERMINOLOGY
from .segmenter import find_sentence_starts, find_word_starts
from .upstream import UpstreamCaller

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9]+(?:[-'][a-z0-9]+)*")
_DIGITS = re.compile(r"\d+(?:[.,]\d+)*")

MIN_SUPPORT = 0.5


# =============================================================================
# Text comparison helpers
# =============================================================================

def _stem(word: str) -> str:
    for suffix in ("ing", "ed", "es", "s"):
        if len(word) > len(suffix) + 2 and word.endswith(suffix):
            return word[: -len(suffix)]
    return word


def content_words(text: str) -> set[str]:
    """Lower-cased, stemmed words with stopwords removed."""
    return {_stem(w) for w in _WORD.findall(text.lower()) if w not in STOPWORDS}


def content_overlap(candidate: str, source: str) -> float:
    """Share of the candidate's content words that also appear in the source."""
    words = content_words(candidate)
    if not words:
        return 0.0
    return len(words & content_words(source)) / len(words)


def _normalize_number(raw: str) -> str:
    value = raw.replace(",", "")
    if "." in value:
        value = value.rstrip("0").rstrip(".")
    return value


def digit_numbers(text: str) -> set[str]:
    return {_normalize_number(m) for m in _DIGITS.findall(text)}


def all_numbers(text: str) -> set[str]:
    """Numbers written as digits or as number words."""
    numbers = digit_numbers(text)
    for word in _WORD.findall(text.lower()):
        if word in NUMBER_WORDS:
            numbers.add(str(NUMBER_WORDS[word]))
    return numbers


class ClauseAnalyzer:
    """Generates validated, faithful clause analyses."""

    def __init__(
        self,
        generator: TextGenerationService,
        upstream: UpstreamCaller,
        config: Optional[PipelineConfig] = None,
        registry: Optional[GenerationRegistry] = None,
    ):
        self._generator = generator
        self._upstream = upstream
        self.config = config or PipelineConfig()
        self._registry = registry

    def analyze(
        self, clause: Clause, document_type: DocumentType, token: Optional[int] = None,
    ) -> ClauseAnalysis:
        """
        Analyze one clause.

        Args:
            clause: Clause to explain
            document_type: Selects the terminology bias
            token: Generation token of the run; checked before every attempt

        Returns:
            ClauseAnalysis with status "ok", or a degraded one flagged for review
        """
        attempts = [clause.text]
        shortened = shorten_text(clause.text)
        attempts.append(shortened)

        last_error: Optional[UpstreamError] = None
        for attempt, text in enumerate(attempts):
            if token is not None and self._registry is not None:
                self._registry.check(clause.document_id, token)
            try:
                raw = self._upstream.call(
                    "generation",
                    self._generator.complete,
                    self._build_prompt(text, document_type),
                    self._constraints(clause),
                    document_id=clause.document_id,
                )
                return self._validate(raw, clause)
            except UpstreamError as e:
                last_error = e
                logger.warning(
                    f"Analysis of clause {clause.position} in {clause.document_id} "
                    f"failed (attempt {attempt + 1}/{len(attempts)}): {e}"
                )

        return self._degraded(clause, last_error)

    def _build_prompt(self, text: str, document_type: DocumentType) -> str:
        return LLM_PROMPTS["clause_analysis"].format(
            terminology=TERMINOLOGY.get(document_type, TERMINOLOGY[DocumentType.UNKNOWN]),
            clause=text,
        )

    def _length_bound(self, clause: Clause) -> int:
        return max(
            self.config.analysis_min_length_bound,
            int(self.config.analysis_length_ratio * len(clause.text)),
        )

    def _constraints(self, clause: Clause) -> GenerationConstraints:
        return GenerationConstraints(
            max_tokens=self.config.analysis_max_tokens,
            temperature=0.1,
            system_prompt=LLM_PROMPTS["analysis_system"],
            max_chars=self._length_bound(clause),
        )

    def _validate(self, raw: str, clause: Clause) -> ClauseAnalysis:
        """Run sanity and faithfulness checks on a generation result."""
        if raw is None or not raw.strip():
            raise UpstreamDegraded("generation", "empty analysis")
        bound = self._length_bound(clause)
        if len(raw) > bound:
            raise UpstreamDegraded("generation", f"analysis of {len(raw)} chars exceeds bound {bound}")

        data = parse_json_response(raw)
        explanation = str(data.get("explanation") or "").strip()
        if not explanation:
            raise UpstreamDegraded("generation", "analysis has no explanation")

        introduced = digit_numbers(explanation) - all_numbers(clause.text)
        if introduced:
            raise UpstreamDegraded(
                "generation",
                f"explanation introduces figures not in the clause: {sorted(introduced)}",
            )

        return ClauseAnalysis(
            clause_id=clause.clause_id,
            document_id=clause.document_id,
            position=clause.position,
            explanation=explanation,
            key_points=tuple(self._supported(data.get("key_points"), clause.text)),
            obligations=tuple(self._supported(data.get("obligations"), clause.text)),
            risk_level=RiskLevel.parse(data.get("risk_level"), RiskLevel.LOW),
            status=AnalysisStatus.OK,
        )

    def _supported(self, items, clause_text: str) -> list[str]:
        """Keep only items grounded in the clause text."""
        if not isinstance(items, list):
            return []
        clause_numbers = all_numbers(clause_text)
        kept = []
        for item in items:
            text = str(item).strip()
            if not text:
                continue
            if digit_numbers(text) - clause_numbers:
                logger.debug(f"Dropping item with unsupported figures: {text[:80]}")
                continue
            if content_overlap(text, clause_text) < MIN_SUPPORT:
                logger.debug(f"Dropping unsupported item: {text[:80]}")
                continue
            kept.append(text)
        return kept

    def _degraded(self, clause: Clause, error: Optional[UpstreamError]) -> ClauseAnalysis:
        return ClauseAnalysis(
            clause_id=clause.clause_id,
            document_id=clause.document_id,
            position=clause.position,
            explanation="",
            risk_level=RiskLevel.LOW,
            status=AnalysisStatus.DEGRADED,
            needs_manual_review=True,
            error_type=type(error).__name__ if error else None,
            error=str(error) if error else None,
        )


def shorten_text(text: str, ratio: float = 0.5, minimum: int = 200) -> str:
    """
    Shorten a clause for a retry, cutting at a sentence boundary when possible.

    Text already within ``minimum`` characters is returned unchanged.
    """
    limit = max(minimum, int(len(text) * ratio))
    if len(text) <= limit:
        return text
    cuts = [b for b in find_sentence_starts(text, 0, len(text)) if b <= limit]
    if not cuts:
        cuts = [b for b in find_word_starts(text, 0, len(text)) if b <= limit]
    end = cuts[-1] if cuts else limit
    return text[:end].rstrip()
