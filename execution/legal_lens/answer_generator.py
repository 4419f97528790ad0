"""
Answer Generator for Legal Lens

Synthesizes an answer to a question strictly from the retrieved contexts of
one document, with citations and a confidence score.

Outcomes:
- No context: the question is declared unanswerable, confidence 0, no citations.
- The model says the sources do not answer the question: unanswerable as well.
- Low confidence: an answer is still returned but the limitation field warns
  that it may be incomplete or speculative.
- Generation failure: a best-effort extractive answer from the top context,
  with reduced confidence and a limitation.

"Unanswerable" never carries best-effort content; "low confidence" always does.
"""

import re
import uuid
import logging
from typing import Optional

from .citation import MARKER_PATTERN, CitationExtractor
from .config import PipelineConfig
from .errors import UpstreamDegraded, UpstreamError
from .llm import GenerationConstraints, TextGenerationService, parse_json_response
from .models import AnswerResponse, RetrievedContext
from .patterns import INSUFFICIENT_CONTEXT_PATTERNS, LLM_PROMPTS
from .upstream import UpstreamCaller

logger = logging.getLogger(__name__)

UNANSWERABLE_MESSAGE = (
    "This question cannot be answered from the document. "
    "No part of it addresses what you asked."
)
LOW_CONFIDENCE_NOTE = (
    "Low confidence: the document may not fully answer this question, "
    "so this answer may be incomplete or speculative."
)
FALLBACK_NOTE = (
    "I found relevant information but couldn't generate a summary. "
    "The passage shown is quoted from the document."
)
FALLBACK_CONFIDENCE_FACTOR = 0.5

_INSUFFICIENT = [re.compile(p) for p in INSUFFICIENT_CONTEXT_PATTERNS]


def declares_insufficient(text: str) -> bool:
    """True if the text says the sources do not contain the answer."""
    return any(p.search(text) for p in _INSUFFICIENT)


class AnswerGenerator:
    """Grounded answer synthesis with citations and confidence."""

    def __init__(
        self,
        generator: TextGenerationService,
        upstream: UpstreamCaller,
        config: Optional[PipelineConfig] = None,
    ):
        self._generator = generator
        self._upstream = upstream
        self.config = config or PipelineConfig()
        self.citations = CitationExtractor()

    def generate(
        self,
        question: str,
        document_id: str,
        contexts: list[RetrievedContext],
        user_id: Optional[str] = None,
    ) -> AnswerResponse:
        """
        Answer a question from retrieved contexts.

        Args:
            question: The user's question
            document_id: Document the question is about
            contexts: Retrieved contexts, possibly empty
            user_id: Owner of the question, stored with the answer

        Returns:
            AnswerResponse (never raises for "no answer found")
        """
        contexts = sorted(
            (c for c in contexts if c.document_id == document_id),
            key=lambda c: c.score,
            reverse=True,
        )
        if not contexts:
            logger.info(f"No relevant context in {document_id} for question: {question[:80]}")
            return self._unanswerable(question, document_id, user_id)

        selected, ambiguity_note = self._resolve_ambiguity(contexts)

        prompt = LLM_PROMPTS["answer"].format(
            question=question,
            sources=self.citations.format_sources(selected),
        )
        constraints = GenerationConstraints(
            max_tokens=800,
            temperature=0.1,
            system_prompt=LLM_PROMPTS["answer_system"],
        )
        try:
            raw = self._upstream.call(
                "generation", self._generator.complete, prompt, constraints,
                document_id=document_id,
            )
        except UpstreamError as e:
            logger.warning(f"Answer generation failed for {document_id}, using extract: {e}")
            return self._extractive(question, document_id, selected, ambiguity_note, user_id)

        answer, numbers, generation_confidence, answerable = self._parse(raw)
        if not answer:
            logger.warning(f"Empty answer generated for {document_id}, using extract")
            return self._extractive(question, document_id, selected, ambiguity_note, user_id)
        if answerable is False or declares_insufficient(answer):
            logger.info(f"Model found no answer in {document_id} for question: {question[:80]}")
            return self._unanswerable(question, document_id, user_id)

        valid = [n for n in numbers if 1 <= n <= len(selected)]
        if not valid:
            valid = [1]
        citations = self.citations.build(selected, valid, document_id)
        positions = {c.chunk_id: i for i, c in enumerate(citations, start=1)}
        answer = _renumber(answer, {n: positions.get(selected[n - 1].chunk_id) for n in valid})

        retrieval = max(selected[n - 1].score for n in valid)
        confidence = self._combine(retrieval, generation_confidence)

        notes = [ambiguity_note] if ambiguity_note else []
        if confidence < self.config.confidence_threshold:
            notes.append(LOW_CONFIDENCE_NOTE)

        return AnswerResponse(
            answer_id=str(uuid.uuid4()),
            document_id=document_id,
            question=question,
            answer=answer,
            answerable=True,
            confidence=confidence,
            citations=citations,
            limitation=" ".join(notes) or None,
            user_id=user_id,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve_ambiguity(
        self, contexts: list[RetrievedContext]
    ) -> tuple[list[RetrievedContext], Optional[str]]:
        """
        Keep only the top clause when other clauses score (almost) the same.

        Returns:
            Contexts to answer from and a limitation note naming the
            alternatives, or None if the question is not ambiguous.
        """
        top = contexts[0]
        cutoff = top.score - self.config.ambiguity_margin
        alternatives = []
        for ctx in contexts[1:]:
            if ctx.score < cutoff:
                break
            if ctx.clause_id != top.clause_id and ctx.clause_position not in alternatives:
                alternatives.append(ctx.clause_position)
        if not alternatives:
            return contexts, None

        selected = [c for c in contexts if c.clause_id == top.clause_id]
        names = ", ".join(f"Clause {p + 1}" for p in sorted(alternatives))
        note = (
            f"The question could refer to more than one clause. This answer is based on "
            f"Clause {top.clause_position + 1}; {names} may also be relevant."
        )
        return selected, note

    def _parse(self, raw: str) -> tuple[str, list[int], Optional[float], Optional[bool]]:
        """Read answer text, cited source numbers, confidence and answerable flag."""
        try:
            data = parse_json_response(raw)
        except UpstreamDegraded:
            text = (raw or "").strip()
            return text, self.citations.extract_markers(text), None, None

        answer = str(data.get("answer") or "").strip()
        numbers = _as_numbers(data.get("citations"))
        for n in self.citations.extract_markers(answer):
            if n not in numbers:
                numbers.append(n)

        confidence = data.get("confidence")
        try:
            confidence = min(max(float(confidence), 0.0), 1.0) if confidence is not None else None
        except (TypeError, ValueError):
            confidence = None

        answerable = data.get("answerable")
        if isinstance(answerable, str):
            answerable = answerable.strip().lower() not in ("false", "no", "0")
        elif answerable is not None:
            answerable = bool(answerable)
        return answer, numbers, confidence, answerable

    def _combine(self, retrieval: float, generation: Optional[float]) -> float:
        retrieval = min(max(retrieval, 0.0), 1.0)
        if generation is None:
            return round(retrieval, 4)
        w = self.config.generation_confidence_weight
        return round(min(max((1 - w) * retrieval + w * generation, 0.0), 1.0), 4)

    def _unanswerable(self, question: str, document_id: str, user_id: Optional[str]) -> AnswerResponse:
        return AnswerResponse(
            answer_id=str(uuid.uuid4()),
            document_id=document_id,
            question=question,
            answer=UNANSWERABLE_MESSAGE,
            answerable=False,
            confidence=0.0,
            citations=[],
            limitation=None,
            user_id=user_id,
        )

    def _extractive(
        self,
        question: str,
        document_id: str,
        selected: list[RetrievedContext],
        ambiguity_note: Optional[str],
        user_id: Optional[str],
    ) -> AnswerResponse:
        """Best-effort answer quoting the top context."""
        citations = self.citations.build(selected, [1], document_id)
        excerpt = citations[0].excerpt if citations else selected[0].content
        confidence = round(min(max(selected[0].score, 0.0), 1.0) * FALLBACK_CONFIDENCE_FACTOR, 4)

        notes = [FALLBACK_NOTE]
        if ambiguity_note:
            notes.append(ambiguity_note)
        if confidence < self.config.confidence_threshold:
            notes.append(LOW_CONFIDENCE_NOTE)

        return AnswerResponse(
            answer_id=str(uuid.uuid4()),
            document_id=document_id,
            question=question,
            answer=f'The most relevant part of the document says: "{excerpt}" [1]',
            answerable=True,
            confidence=confidence,
            citations=citations,
            limitation=" ".join(notes),
            user_id=user_id,
        )


def _as_numbers(value) -> list[int]:
    """Source numbers from a JSON citations field (ints or "[1]" strings)."""
    if not isinstance(value, list):
        value = [value] if value is not None else []
    numbers = []
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, (int, float)):
            n = int(item)
        else:
            digits = re.search(r"\d+", str(item))
            if not digits:
                continue
            n = int(digits.group())
        if n not in numbers:
            numbers.append(n)
    return numbers


def _renumber(answer: str, mapping: dict[int, Optional[int]]) -> str:
    """Rewrite inline [N] source markers to citation positions; drop unknown ones."""
    def replace(match):
        target = mapping.get(int(match.group(1)))
        return f"[{target}]" if target else ""
    return re.sub(r"[ \t]{2,}", " ", MARKER_PATTERN.sub(replace, answer)).strip()
