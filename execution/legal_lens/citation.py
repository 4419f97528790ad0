"""
Citation handling for grounded answers.

Retrieved contexts are shown to the generator as numbered sources; the
numbers it cites (``[1]``, ``[2]``) are mapped back to the chunk and clause
they came from. Only sources from the queried document can be cited.
"""

import re
import logging

from .models import Citation, RetrievedContext

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"\[(\d{1,3})\]")
EXCERPT_CHARS = 300


class CitationExtractor:
    """Numbers sources for a prompt and resolves cited numbers to citations."""

    def format_sources(self, contexts: list[RetrievedContext]) -> str:
        """Numbered source block for the answer prompt."""
        blocks = []
        for i, ctx in enumerate(contexts, start=1):
            label = f"Clause {ctx.clause_position + 1}"
            if ctx.page_numbers:
                label += f", p. {ctx.page_numbers[0]}"
            blocks.append(f"[{i}] ({label}):\n{ctx.content}")
        return "\n\n---\n\n".join(blocks)

    def extract_markers(self, text: str) -> list[int]:
        """Source numbers cited inline, in order of first appearance."""
        seen = []
        for match in MARKER_PATTERN.finditer(text or ""):
            number = int(match.group(1))
            if number not in seen:
                seen.append(number)
        return seen

    def build(
        self,
        contexts: list[RetrievedContext],
        source_numbers: list[int],
        document_id: str,
    ) -> list[Citation]:
        """
        Resolve 1-based source numbers to citations.

        Numbers outside the source list and sources from other documents are
        ignored; each chunk is cited at most once.
        """
        citations = []
        seen_chunks = set()
        for number in source_numbers:
            if not isinstance(number, int) or not 1 <= number <= len(contexts):
                logger.debug(f"Ignoring citation of unknown source [{number}]")
                continue
            ctx = contexts[number - 1]
            if ctx.document_id != document_id or ctx.chunk_id in seen_chunks:
                continue
            seen_chunks.add(ctx.chunk_id)
            citations.append(Citation(
                chunk_id=ctx.chunk_id,
                clause_id=ctx.clause_id,
                clause_position=ctx.clause_position,
                document_id=ctx.document_id,
                excerpt=_excerpt(ctx.content),
                relevance_score=round(ctx.score, 4),
                page_numbers=list(ctx.page_numbers),
            ))
        return citations


def _excerpt(text: str) -> str:
    if len(text) <= EXCERPT_CHARS:
        return text
    cut = text.rfind(" ", 0, EXCERPT_CHARS)
    return text[: cut if cut > 0 else EXCERPT_CHARS].rstrip() + "..."
