"""
Tests for execution/legal_lens/citation.py

Covers: Citation dataclass (short_format, to_dict/from_dict), source
        numbering, marker extraction, and resolving cited numbers to chunks.
"""

import pytest


def _context(chunk_id, score=0.9, position=0, document_id="doc-1", content=None, pages=None):
    from execution.legal_lens.models import RetrievedContext
    return RetrievedContext(
        chunk_id=chunk_id,
        document_id=document_id,
        clause_id=f"clause-{position}",
        clause_position=position,
        content=content or f"Text of {chunk_id}: the tenant shall pay rent monthly.",
        score=score,
        page_numbers=[position + 1] if pages is None else pages,
    )


# ---------------------------------------------------------------------------
# Citation dataclass
# ---------------------------------------------------------------------------

class TestCitation:
    """Tests for Citation formatting methods."""

    @pytest.fixture
    def citation(self):
        from execution.legal_lens.models import Citation
        return Citation(
            chunk_id="c1",
            clause_id="clause-3",
            clause_position=3,
            document_id="doc-1",
            excerpt="The tenant shall pay a late fee.",
            relevance_score=0.82,
            page_numbers=[4, 5],
        )

    def test_short_format_page_range(self, citation):
        assert citation.short_format() == "[Clause 4, pp. 4-5]"

    def test_short_format_single_page(self, citation):
        citation.page_numbers = [2]
        assert citation.short_format() == "[Clause 4, p. 2]"

    def test_short_format_no_pages(self, citation):
        citation.page_numbers = []
        assert citation.short_format() == "[Clause 4]"

    def test_to_dict_round_trip(self, citation):
        from execution.legal_lens.models import Citation

        data = citation.to_dict()
        assert data["short_citation"] == "[Clause 4, pp. 4-5]"
        assert Citation.from_dict(data) == citation


# ---------------------------------------------------------------------------
# CitationExtractor
# ---------------------------------------------------------------------------

class TestFormatting:

    def test_format_sources(self):
        from execution.legal_lens.citation import CitationExtractor

        text = CitationExtractor().format_sources([_context("c1"), _context("c2", 0.5, position=1)])
        assert text.startswith("[1] (Clause 1, p. 1):")
        assert "[2] (Clause 2, p. 2):" in text

    def test_format_sources_without_pages(self):
        from execution.legal_lens.citation import CitationExtractor

        text = CitationExtractor().format_sources([_context("c1", pages=[])])
        assert text.startswith("[1] (Clause 1):")

    @pytest.mark.parametrize("text, expected", [
        ("a [2] b [1] c [2]", [2, 1]),
        ("no markers here", []),
        ("", []),
        (None, []),
        ("see [Clause 3] and [12]", [12]),
    ])
    def test_extract_markers(self, text, expected):
        from execution.legal_lens.citation import CitationExtractor
        assert CitationExtractor().extract_markers(text) == expected


class TestBuild:
    """Resolving cited numbers to citations."""

    def test_maps_numbers_to_chunks(self):
        from execution.legal_lens.citation import CitationExtractor

        contexts = [_context("c1", 0.91234, position=0), _context("c2", 0.7, position=2)]
        citations = CitationExtractor().build(contexts, [2, 1], "doc-1")
        assert [c.chunk_id for c in citations] == ["c2", "c1"]
        assert citations[0].clause_id == "clause-2"
        assert citations[1].relevance_score == 0.9123

    @pytest.mark.parametrize("numbers", [[0], [3], [-1], ["1"]])
    def test_unknown_numbers_ignored(self, numbers):
        from execution.legal_lens.citation import CitationExtractor

        contexts = [_context("c1"), _context("c2", position=1)]
        assert CitationExtractor().build(contexts, numbers, "doc-1") == []

    def test_other_documents_never_cited(self):
        from execution.legal_lens.citation import CitationExtractor

        contexts = [_context("c1", document_id="doc-2"), _context("c2")]
        citations = CitationExtractor().build(contexts, [1, 2], "doc-1")
        assert [c.chunk_id for c in citations] == ["c2"]

    def test_each_chunk_cited_once(self):
        from execution.legal_lens.citation import CitationExtractor

        citations = CitationExtractor().build([_context("c1")], [1, 1], "doc-1")
        assert len(citations) == 1

    def test_long_excerpt_truncated_on_word(self):
        from execution.legal_lens.citation import EXCERPT_CHARS, CitationExtractor

        citation = CitationExtractor().build([_context("c1", content="word " * 200)], [1], "doc-1")[0]
        assert citation.excerpt.endswith("word...")
        assert len(citation.excerpt) <= EXCERPT_CHARS + 3

    def test_short_excerpt_kept(self):
        from execution.legal_lens.citation import CitationExtractor

        citation = CitationExtractor().build([_context("c1", content="Rent is due monthly.")], [1], "doc-1")[0]
        assert citation.excerpt == "Rent is due monthly."
