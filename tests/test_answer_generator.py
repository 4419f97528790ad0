"""
Tests for execution/legal_lens/answer_generator.py

Covers: unanswerable outcomes, confidence threshold, citation mapping and
        renumbering, ambiguity between clauses, and the extractive fallback
        when generation fails.
"""

import pytest

from conftest import FakeGenerator


def _context(chunk_id, score, position=0, document_id="doc-1", content=None):
    from execution.legal_lens.models import RetrievedContext
    return RetrievedContext(
        chunk_id=chunk_id,
        document_id=document_id,
        clause_id=f"clause-{position}",
        clause_position=position,
        content=content or f"Text of {chunk_id}: the tenant shall pay rent monthly.",
        score=score,
        page_numbers=[position + 1],
    )


def _generator(fake, upstream, **config):
    from execution.legal_lens.answer_generator import AnswerGenerator
    from execution.legal_lens.config import PipelineConfig
    return AnswerGenerator(fake, upstream, PipelineConfig(**config))


# ---------------------------------------------------------------------------
# Unanswerable
# ---------------------------------------------------------------------------

class TestUnanswerable:
    """No best-effort content when nothing answers the question."""

    def test_no_context(self, upstream):
        from execution.legal_lens.answer_generator import UNANSWERABLE_MESSAGE

        fake = FakeGenerator()
        answer = _generator(fake, upstream).generate("Is parking included?", "doc-1", [])

        assert answer.answerable is False
        assert answer.answer == UNANSWERABLE_MESSAGE
        assert answer.confidence == 0.0
        assert answer.citations == []
        assert answer.limitation is None
        assert fake.answer_calls == 0

    def test_contexts_from_other_documents_ignored(self, upstream):
        fake = FakeGenerator()
        answer = _generator(fake, upstream).generate(
            "Rent?", "doc-1", [_context("x", 0.9, document_id="doc-2")],
        )
        assert answer.answerable is False
        assert fake.answer_calls == 0

    def test_model_declares_not_answerable(self, upstream):
        fake = FakeGenerator(answer_payload={"answer": "Unclear.", "answerable": False})
        answer = _generator(fake, upstream).generate("Parking?", "doc-1", [_context("c1", 0.5)])
        assert answer.answerable is False
        assert answer.citations == []

    def test_insufficient_phrase_is_unanswerable(self, upstream):
        fake = FakeGenerator(answer_payload={
            "answer": "The document does not mention parking.", "citations": [1], "confidence": 0.8,
        })
        answer = _generator(fake, upstream).generate("Parking?", "doc-1", [_context("c1", 0.5)])
        assert answer.answerable is False
        assert answer.confidence == 0.0

    @pytest.mark.parametrize("text, expected", [
        ("The sources do not contain that information.", True),
        ("This is not mentioned in the document.", True),
        ("I cannot answer this from the context.", True),
        ("There is no information about parking.", True),
        ("Rent is due on the first day of the month.", False),
    ])
    def test_declares_insufficient(self, text, expected):
        from execution.legal_lens.answer_generator import declares_insufficient
        assert declares_insufficient(text) is expected


# ---------------------------------------------------------------------------
# Confidence and citations
# ---------------------------------------------------------------------------

class TestAnswered:
    """Grounded answers with citations."""

    def test_answer_with_citation(self, upstream):
        answer = _generator(FakeGenerator(), upstream).generate(
            "What happens if I pay rent late?", "doc-1", [_context("c1", 0.5)], user_id="u1",
        )

        assert answer.answerable is True
        assert "late fee" in answer.answer
        assert answer.confidence == pytest.approx(0.66)
        assert answer.limitation is None
        assert answer.user_id == "u1"
        assert len(answer.citations) == 1
        citation = answer.citations[0]
        assert citation.chunk_id == "c1"
        assert citation.document_id == "doc-1"
        assert citation.page_numbers == [1]

    @pytest.mark.parametrize("threshold, expect_warning", [(0.4, False), (0.5, True)])
    def test_confidence_threshold(self, upstream, threshold, expect_warning):
        from execution.legal_lens.answer_generator import LOW_CONFIDENCE_NOTE

        # 0.6 * 0.2 + 0.4 * 0.9 = 0.48
        answer = _generator(FakeGenerator(), upstream, confidence_threshold=threshold).generate(
            "Rent?", "doc-1", [_context("c1", 0.2)],
        )
        assert answer.confidence == pytest.approx(0.48)
        assert answer.answerable is True
        assert (answer.limitation == LOW_CONFIDENCE_NOTE) is expect_warning
        if not expect_warning:
            assert answer.limitation is None

    def test_missing_generation_confidence_uses_retrieval(self, upstream):
        fake = FakeGenerator(answer_payload={"answer": "Rent is due monthly [1].", "citations": [1]})
        answer = _generator(fake, upstream).generate("Rent?", "doc-1", [_context("c1", 0.7)])
        assert answer.confidence == pytest.approx(0.7)

    def test_citations_renumbered(self, upstream):
        fake = FakeGenerator(answer_payload={
            "answer": "The landlord may enter at any time [2].", "citations": [2], "confidence": 0.8,
        })
        contexts = [_context("c1", 0.8, position=0), _context("c2", 0.5, position=3)]
        answer = _generator(fake, upstream).generate("Entry?", "doc-1", contexts)

        assert [c.chunk_id for c in answer.citations] == ["c2"]
        assert answer.answer.endswith("[1].")
        assert "[2]" not in answer.answer

    def test_unknown_citation_defaults_to_top_source(self, upstream):
        fake = FakeGenerator(answer_payload={
            "answer": "Rent is due monthly [7].", "citations": [7], "confidence": 0.8,
        })
        answer = _generator(fake, upstream).generate("Rent?", "doc-1", [_context("c1", 0.6)])
        assert [c.chunk_id for c in answer.citations] == ["c1"]
        assert "[7]" not in answer.answer

    def test_plain_text_reply(self, upstream):
        fake = FakeGenerator(answer_payload="Rent is due on the first [2] and late fees apply [1].")
        contexts = [_context("c1", 0.8, position=0), _context("c2", 0.6, position=2)]
        answer = _generator(fake, upstream).generate("Rent?", "doc-1", contexts)

        assert [c.chunk_id for c in answer.citations] == ["c2", "c1"]
        assert answer.answer == "Rent is due on the first [1] and late fees apply [2]."
        assert answer.confidence == pytest.approx(0.8)

    def test_every_citation_resolves_to_document_chunk(self, upstream):
        fake = FakeGenerator(answer_payload={
            "answer": "See [1] and [2] and [3].", "citations": [1, 2, 3], "confidence": 0.7,
        })
        contexts = [_context("c1", 0.9), _context("c2", 0.5, position=4)]
        answer = _generator(fake, upstream).generate("Rent?", "doc-1", contexts)
        assert {c.chunk_id for c in answer.citations} == {"c1", "c2"}
        assert all(c.document_id == "doc-1" for c in answer.citations)


# ---------------------------------------------------------------------------
# Ambiguity and fallback
# ---------------------------------------------------------------------------

class TestAmbiguityAndFallback:
    """Near-tied clauses and generation failures."""

    def test_ambiguous_question_answers_from_top_clause(self, upstream):
        fake = FakeGenerator()
        contexts = [_context("c1", 0.80, position=0), _context("c2", 0.79, position=2)]
        answer = _generator(fake, upstream).generate("Fees?", "doc-1", contexts)

        assert [c.clause_id for c in answer.citations] == ["clause-0"]
        assert "more than one clause" in answer.limitation
        assert "Clause 3" in answer.limitation
        prompt = fake.calls[-1]
        assert "Text of c1" in prompt
        assert "Text of c2" not in prompt

    def test_same_clause_chunks_are_not_ambiguous(self, upstream):
        contexts = [_context("c1", 0.80, position=0), _context("c1b", 0.79, position=0)]
        answer = _generator(FakeGenerator(), upstream).generate("Fees?", "doc-1", contexts)
        assert answer.limitation is None

    def test_generation_failure_falls_back_to_extract(self, upstream):
        from execution.legal_lens.answer_generator import FALLBACK_NOTE, LOW_CONFIDENCE_NOTE

        fake = FakeGenerator()
        fake.fail_answers = True
        answer = _generator(fake, upstream).generate("Rent?", "doc-1", [_context("c1", 0.5)])

        assert answer.answerable is True
        assert answer.answer.startswith("The most relevant part of the document says:")
        assert answer.answer.endswith("[1]")
        assert answer.confidence == pytest.approx(0.25)
        assert FALLBACK_NOTE in answer.limitation
        assert LOW_CONFIDENCE_NOTE in answer.limitation
        assert [c.chunk_id for c in answer.citations] == ["c1"]

    def test_empty_answer_falls_back_to_extract(self, upstream):
        fake = FakeGenerator(answer_payload={"answer": "", "citations": []})
        answer = _generator(fake, upstream).generate("Rent?", "doc-1", [_context("c1", 0.9)])
        assert answer.answer.startswith("The most relevant part")
        assert answer.confidence == pytest.approx(0.45)

