"""
Clause Chunker for Legal Lens

Splits each clause into embedding-sized chunks along sentence boundaries.

- Sentences are packed greedily up to ``chunk_target_chars``.
- Consecutive chunks overlap by whole trailing sentences, up to
  ``chunk_overlap_chars``, so facts spanning a boundary appear in both.
- A single sentence longer than the target is split on word boundaries,
  with word overlap.

Chunk ids are derived from the clause id, chunk index and content, so
re-chunking unchanged text yields the same ids and re-indexing replaces
vectors instead of duplicating them.
"""

import logging
from typing import Optional

from .config import PipelineConfig
from .models import Chunk, Clause, stable_id, text_digest
from .segmenter import find_sentence_starts, find_word_starts

logger = logging.getLogger(__name__)


class ClauseChunker:
    """Sentence-aware, overlapping chunker for clauses."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def chunk(self, clause: Clause) -> list[Chunk]:
        """
        Split one clause into chunks.

        Args:
            clause: Clause to split

        Returns:
            Chunks in reading order; offsets are relative to the document text
        """
        text = clause.text
        if not text.strip():
            return []

        units = self._units(text)
        chunks = []
        for index, (first, last) in enumerate(self._pack(units)):
            start, end = units[first][0], units[last][1]
            content = text[start:end]
            chunks.append(Chunk(
                chunk_id=stable_id(clause.clause_id, "chunk", index, text_digest(content, 12)),
                document_id=clause.document_id,
                clause_id=clause.clause_id,
                clause_position=clause.position,
                chunk_index=index,
                content=content,
                start_char=clause.start_char + start,
                end_char=clause.start_char + end,
                token_count=self._estimate_tokens(content),
                page_numbers=list(clause.page_numbers),
            ))
        return chunks

    def chunk_all(self, clauses: list[Clause]) -> list[Chunk]:
        chunks = []
        for clause in sorted(clauses, key=lambda c: c.position):
            chunks.extend(self.chunk(clause))
        if clauses:
            logger.info(
                f"Created {len(chunks)} chunks from {len(clauses)} clauses "
                f"of document {clauses[0].document_id}"
            )
        return chunks

    def _units(self, text: str) -> list[tuple[int, int]]:
        """Sentence spans, with over-long sentences replaced by word spans."""
        target = self.config.chunk_target_chars
        edges = [0] + find_sentence_starts(text, 0, len(text)) + [len(text)]
        units = []
        for start, end in zip(edges, edges[1:]):
            end = start + len(text[start:end].rstrip())
            if end <= start:
                continue
            if end - start <= target:
                units.append((start, end))
                continue
            word_edges = [start] + find_word_starts(text, start, end) + [end]
            for w_start, w_end in zip(word_edges, word_edges[1:]):
                w_end = w_start + len(text[w_start:w_end].rstrip())
                if w_end > w_start:
                    units.append((w_start, w_end))
        return units

    def _pack(self, units: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """Group unit indices into (first, last) ranges with trailing overlap."""
        target = self.config.chunk_target_chars
        overlap = self.config.chunk_overlap_chars
        groups = []
        i = 0
        while i < len(units):
            j = i
            while j + 1 < len(units) and units[j + 1][1] - units[i][0] <= target:
                j += 1
            groups.append((i, j))
            if j == len(units) - 1:
                break
            # Step back over trailing units that fit in the overlap, never reusing the whole group
            k = j + 1
            while k - 1 > i and units[j][1] - units[k - 1][0] <= overlap:
                k -= 1
            i = k
        return groups

    def _estimate_tokens(self, text: str) -> int:
        """Rough token estimate based on characters per token."""
        return max(1, int(len(text) / self.config.chars_per_token))
