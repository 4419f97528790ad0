"""
Tests for execution/legal_lens/chunker.py

Covers: sentence packing, overlap between consecutive chunks, word fallback
        for run-on sentences, offsets, and deterministic chunk ids.
"""

import pytest

from conftest import SAMPLE_RENTAL


def _clause(text, clause_id="clause-1", start_char=0, position=0):
    from execution.legal_lens.models import Clause
    return Clause(
        clause_id=clause_id,
        document_id="doc-1",
        position=position,
        text=text,
        start_char=start_char,
        end_char=start_char + len(text),
        page_numbers=[3],
    )


def _small_config(target=120, overlap=50):
    from execution.legal_lens.config import PipelineConfig
    return PipelineConfig(chunk_target_chars=target, chunk_overlap_chars=overlap)


LONG_CLAUSE = " ".join(
    f"Sentence {word} sets out a duty of the tenant." for word in
    ["Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot", "Golf", "Hotel"]
)


# ---------------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------------

class TestPacking:
    """Sentence packing and overlap."""

    def test_short_clause_is_one_chunk(self):
        from execution.legal_lens.chunker import ClauseChunker

        chunks = ClauseChunker().chunk(_clause(SAMPLE_RENTAL))
        assert len(chunks) == 1
        assert chunks[0].content == SAMPLE_RENTAL
        assert chunks[0].clause_id == "clause-1"
        assert chunks[0].page_numbers == [3]

    def test_chunks_respect_target(self):
        from execution.legal_lens.chunker import ClauseChunker

        chunks = ClauseChunker(_small_config()).chunk(_clause(LONG_CLAUSE))
        assert len(chunks) > 1
        assert all(len(c.content) <= 120 for c in chunks)

    def test_consecutive_chunks_overlap_by_sentence(self):
        from execution.legal_lens.chunker import ClauseChunker

        chunks = ClauseChunker(_small_config()).chunk(_clause(LONG_CLAUSE))
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_char < previous.end_char
            last_sentence = previous.content.rsplit(". ", 1)[-1]
            assert current.content.startswith(last_sentence)

    def test_every_sentence_is_covered(self):
        from execution.legal_lens.chunker import ClauseChunker

        chunks = ClauseChunker(_small_config()).chunk(_clause(LONG_CLAUSE))
        joined = " ".join(c.content for c in chunks)
        for word in ["Alpha", "Charlie", "Echo", "Hotel"]:
            assert f"Sentence {word}" in joined

    def test_no_overlap_when_sentence_exceeds_overlap(self):
        from execution.legal_lens.chunker import ClauseChunker

        chunks = ClauseChunker(_small_config(target=120, overlap=10)).chunk(_clause(LONG_CLAUSE))
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_char >= previous.end_char

    def test_run_on_sentence_split_on_words(self):
        from execution.legal_lens.chunker import ClauseChunker

        text = " ".join(["covenant"] * 50)
        chunks = ClauseChunker(_small_config(target=100, overlap=20)).chunk(_clause(text))
        assert len(chunks) > 1
        assert all(len(c.content) <= 100 for c in chunks)
        assert chunks[-1].end_char == len(text)


# ---------------------------------------------------------------------------
# Offsets and ids
# ---------------------------------------------------------------------------

class TestChunkIdentity:
    """Offsets relative to the document and stable ids."""

    def test_offsets_relative_to_document(self):
        from execution.legal_lens.chunker import ClauseChunker

        document_text = "Preamble text. " + LONG_CLAUSE
        clause = _clause(LONG_CLAUSE, start_char=15)
        for chunk in ClauseChunker(_small_config()).chunk(clause):
            assert document_text[chunk.start_char:chunk.end_char] == chunk.content

    def test_ids_are_deterministic(self):
        from execution.legal_lens.chunker import ClauseChunker

        first = ClauseChunker(_small_config()).chunk(_clause(LONG_CLAUSE))
        second = ClauseChunker(_small_config()).chunk(_clause(LONG_CLAUSE))
        assert [c.chunk_id for c in first] == [c.chunk_id for c in second]
        assert [c.chunk_index for c in first] == list(range(len(first)))

    def test_chunk_all_keeps_clause_order(self):
        from execution.legal_lens.chunker import ClauseChunker

        clauses = [
            _clause("Second clause text.", clause_id="c2", position=1),
            _clause("First clause text.", clause_id="c1", position=0),
        ]
        chunks = ClauseChunker().chunk_all(clauses)
        assert [c.clause_id for c in chunks] == ["c1", "c2"]

    @pytest.mark.parametrize("text", ["", "   "])
    def test_blank_clause_has_no_chunks(self, text):
        from execution.legal_lens.chunker import ClauseChunker
        assert ClauseChunker().chunk(_clause(text)) == []

    def test_token_estimate(self):
        from execution.legal_lens.chunker import ClauseChunker

        chunk = ClauseChunker().chunk(_clause("x" * 40))[0]
        assert chunk.token_count == 10
