"""
Clause Segmenter for Legal Lens

Splits extracted document text into ordered clauses using layered boundary
detection, highest priority first:

1. Headings ("Article 3", "Section 2.1", markdown headings)
2. Numbered markers ("1.", "2.3", "IV.")
3. Lettered markers ("(a)", "b)", "(iv)")
4. Paragraph breaks (at least ``paragraph_blank_lines`` blank lines)
5. Sentence boundaries, only for spans longer than ``max_clause_chars``
6. Word boundaries, only for single sentences still over the limit

A span is split at every boundary of the highest-priority layer found in it;
resulting spans that are still too long are split again with the next layers.
Boundaries are character offsets into the original text, so clauses never
overlap and, joined in order, reproduce the document modulo whitespace.
Text without structure becomes a single clause.
"""

import re
import logging
from typing import Optional

from .config import PipelineConfig
from .models import Clause, Document, stable_id, text_digest
from .patterns import (
    ABBREVIATIONS,
    CLAUSE_MARKERS,
    CLAUSE_TYPE_KEYWORDS,
    MARKER_PRIORITY,
    SENTENCE_BOUNDARY,
)

logger = logging.getLogger(__name__)

_WORD_START = re.compile(r"(?<=\s)(?=\S)")
_PRECEDING_WORD = re.compile(r"([A-Za-z][A-Za-z.]*)\.\s*$")


def find_sentence_starts(text: str, start: int, end: int) -> list[int]:
    """
    Offsets in ``text[start:end]`` where a new sentence begins.

    Skips periods that close common abbreviations ("No. 5", "Mr. Smith").
    """
    starts = []
    for match in SENTENCE_BOUNDARY.finditer(text, start, end):
        boundary = match.end()
        if boundary >= end:
            continue
        preceding = _PRECEDING_WORD.search(text, max(start, match.start() - 12), match.start() + 1)
        if preceding and preceding.group(1).lower() in ABBREVIATIONS:
            continue
        starts.append(boundary)
    return starts


def find_word_starts(text: str, start: int, end: int) -> list[int]:
    return [m.start() for m in _WORD_START.finditer(text, start, end) if start < m.start() < end]


def pack_boundaries(start: int, end: int, candidates: list[int], limit: int) -> list[int]:
    """
    Choose cut points from ``candidates`` so each piece stays within ``limit``
    characters where possible. A piece only exceeds the limit when no
    candidate falls inside it.
    """
    cuts = []
    piece_start = start
    previous = None
    for boundary in candidates + [end]:
        if boundary - piece_start > limit and previous is not None and previous > piece_start:
            cuts.append(previous)
            piece_start = previous
        previous = boundary
    return cuts


class ClauseSegmenter:
    """
    Turns document text into ordered, non-overlapping clauses.

    Segmentation never raises on text input: when structure cannot be found it
    degrades to coarser clauses, down to a single clause for the whole text.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self._marker_patterns = {
            layer: [re.compile(p, re.MULTILINE) for p in CLAUSE_MARKERS[layer]]
            for layer in MARKER_PRIORITY
        }
        blank = max(1, self.config.paragraph_blank_lines)
        self._paragraph_break = re.compile(r"\n(?:[ \t]*\n){%d,}" % blank)
        self._layers = [
            *[self._marker_layer(layer) for layer in MARKER_PRIORITY],
            self._paragraph_layer,
            self._sentence_layer,
            self._word_layer,
        ]

    # =========================================================================
    # Boundary layers
    # =========================================================================

    def _marker_layer(self, layer: str):
        patterns = self._marker_patterns[layer]

        def find(text: str, start: int, end: int) -> list[int]:
            boundaries = set()
            for pattern in patterns:
                for match in pattern.finditer(text, start, end):
                    if start < match.start() < end:
                        boundaries.add(match.start())
            return sorted(boundaries)

        return find

    def _paragraph_layer(self, text: str, start: int, end: int) -> list[int]:
        return [
            m.end() for m in self._paragraph_break.finditer(text, start, end)
            if start < m.end() < end
        ]

    def _sentence_layer(self, text: str, start: int, end: int) -> list[int]:
        if end - start <= self.config.max_clause_chars:
            return []
        return pack_boundaries(
            start, end, find_sentence_starts(text, start, end), self.config.max_clause_chars
        )

    def _word_layer(self, text: str, start: int, end: int) -> list[int]:
        if end - start <= self.config.max_clause_chars:
            return []
        return pack_boundaries(
            start, end, find_word_starts(text, start, end), self.config.max_clause_chars
        )

    def _split(self, text: str, start: int, end: int, layer: int) -> list[tuple[int, int]]:
        for index in range(layer, len(self._layers)):
            boundaries = self._layers[index](text, start, end)
            if not boundaries:
                continue
            spans = []
            edges = [start] + boundaries + [end]
            for span_start, span_end in zip(edges, edges[1:]):
                if span_end - span_start > self.config.max_clause_chars:
                    spans.extend(self._split(text, span_start, span_end, index + 1))
                else:
                    spans.append((span_start, span_end))
            return spans
        return [(start, end)]

    # =========================================================================
    # Public API
    # =========================================================================

    def find_spans(self, text: str) -> list[tuple[int, int]]:
        """Trimmed, non-empty clause spans in document order."""
        if not text or not text.strip():
            return []
        try:
            raw_spans = self._split(text, 0, len(text), 0)
        except (re.error, RecursionError) as e:
            logger.warning(f"Structured segmentation failed, using single clause: {e}")
            raw_spans = [(0, len(text))]

        spans = []
        for start, end in raw_spans:
            segment = text[start:end]
            stripped = segment.strip()
            if not stripped:
                continue
            lead = len(segment) - len(segment.lstrip())
            spans.append((start + lead, start + lead + len(stripped)))
        return spans

    def segment(self, document: Document) -> list[Clause]:
        """
        Split a document into clauses.

        Args:
            document: Document with extracted text and page metadata

        Returns:
            Clauses with contiguous positions starting at 0
        """
        clauses = []
        for position, (start, end) in enumerate(self.find_spans(document.text)):
            clause_text = document.text[start:end]
            clauses.append(Clause(
                clause_id=stable_id(document.document_id, "clause", position, text_digest(clause_text)),
                document_id=document.document_id,
                position=position,
                text=clause_text,
                start_char=start,
                end_char=end,
                clause_type=classify_clause_type(clause_text),
                heading=self._heading(clause_text),
                page_numbers=document.pages_for_span(start, end),
            ))

        logger.info(f"Segmented document {document.document_id} into {len(clauses)} clauses")
        return clauses

    def _heading(self, clause_text: str) -> Optional[str]:
        first_line = clause_text.split("\n", 1)[0].strip()
        if not first_line or len(first_line) > 120:
            return None
        for layer in ("heading", "numbered"):
            for pattern in self._marker_patterns[layer]:
                if pattern.match(first_line):
                    return first_line.lstrip("# ").strip()
        return None


def classify_clause_type(text: str) -> str:
    """Keyword-based clause type tag; "general" when nothing matches."""
    lowered = text.lower()
    best_type = "general"
    best_hits = 0
    for clause_type, keywords in CLAUSE_TYPE_KEYWORDS.items():
        hits = sum(1 for kw in keywords if re.search(r"\b" + re.escape(kw) + r"\b", lowered))
        if hits > best_hits:
            best_type, best_hits = clause_type, hits
    return best_type
