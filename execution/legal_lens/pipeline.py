"""
Document Pipeline for Legal Lens

The facade callers use. Processing a document runs:

    Segmenter -> (ClauseAnalyzer || RiskDetector) per clause
              -> Chunker -> EmbeddingIndexer per chunk
              -> SummaryBuilder

on a bounded worker pool. Results are re-sorted by clause position before
they are stored, never by completion order. Questions run
ContextRetriever -> AnswerGenerator against whatever part of the index is
already built.

Every processing run and every delete advances the document's generation
token, so work from a superseded run cannot write after the fact.

Usage:
    pipeline = DocumentPipeline(repository, vector_store, embeddings, generator, classifier)
    pipeline.register_document("doc-1", text, user_id="u-1")
    summary = pipeline.process_document("doc-1")
    answer = pipeline.ask("doc-1", "What happens if I pay rent late?")
    result = pipeline.delete_document("doc-1")
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Optional

from .answer_generator import AnswerGenerator
from .cancellation import GenerationRegistry
from .chunker import ClauseChunker
from .clause_analyzer import ClauseAnalyzer
from .config import PipelineConfig
from .doctype import DocumentTypeIdentifier
from .errors import (
    CascadeDeleteIncomplete,
    DocumentNotFound,
    IndexInconsistent,
    ProcessingFailed,
    StaleGeneration,
)
from .indexer import EmbeddingIndexer
from .llm import ClassificationService, TextGenerationService
from .metrics import MetricsCollector, get_metrics_collector
from .models import (
    AnswerResponse,
    ClauseAnalysis,
    DeletionResult,
    Document,
    DocumentState,
    DocumentSummary,
    DocumentType,
    IndexReport,
    PageSpan,
    RiskAlert,
    RiskLevel,
    text_digest,
)
from .repository import DocumentRepository
from .retriever import ContextRetriever
from .risk_detector import RiskDetector
from .segmenter import ClauseSegmenter
from .summary import SummaryBuilder
from .upstream import UpstreamCaller
from .vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


class DocumentPipeline:
    """Document analysis and grounded Q&A over one set of stores."""

    def __init__(
        self,
        repository: DocumentRepository,
        vector_store: BaseVectorStore,
        embedding_service,
        generator: TextGenerationService,
        classifier: Optional[ClassificationService] = None,
        config: Optional[PipelineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        registry: Optional[GenerationRegistry] = None,
        upstream: Optional[UpstreamCaller] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or PipelineConfig()
        self.repository = repository
        self.vector_store = vector_store
        self.metrics = metrics or get_metrics_collector()
        self.registry = registry or GenerationRegistry()
        self.upstream = upstream or UpstreamCaller(
            self.config.upstream,
            max_calls_per_document=self.config.max_calls_per_document,
            max_workers=self.config.max_workers * 2,
            sleep=sleep,
            metrics=self.metrics,
        )
        self._sleep = sleep
        classifier = classifier or ClassificationService(generator)

        self.identifier = DocumentTypeIdentifier(classifier, self.upstream)
        self.segmenter = ClauseSegmenter(self.config)
        self.chunker = ClauseChunker(self.config)
        self.analyzer = ClauseAnalyzer(generator, self.upstream, self.config, registry=self.registry)
        self.detector = RiskDetector(classifier, self.upstream)
        self.indexer = EmbeddingIndexer(embedding_service, vector_store, self.upstream, self.registry)
        self.retriever = ContextRetriever(
            embedding_service, vector_store, repository, self.upstream, self.config, self.metrics,
        )
        self.answers = AnswerGenerator(generator, self.upstream, self.config)
        self.summaries = SummaryBuilder()

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="legal-lens"
        )

    # =========================================================================
    # Registration
    # =========================================================================

    def register_document(
        self,
        document_id: str,
        text: str,
        page_metadata: Optional[list] = None,
        document_type=None,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Document:
        """
        Accept extracted text for a document.

        Re-registering identical text is a no-op. Changed text supersedes any
        in-flight processing and resets the document to ``ingested``.

        Raises:
            ValueError: The document is being deleted
        """
        pages = [p if isinstance(p, PageSpan) else PageSpan.from_dict(p) for p in page_metadata or []]
        existing = self.repository.get_document(document_id)

        if existing is not None and existing.state != DocumentState.DELETED:
            if existing.state.is_deleting:
                raise ValueError(f"Document {document_id} is being deleted")
            if existing.text_hash == text_digest(text):
                logger.debug(f"Document {document_id} re-registered with identical text")
                return existing
            with self.registry.superseding(document_id):
                existing = self.repository.get_document(document_id) or existing
                if existing.state.is_deleting:
                    raise ValueError(f"Document {document_id} is being deleted")
                existing.text = text
                existing.text_hash = text_digest(text)
                existing.page_metadata = pages
                existing.document_type = DocumentType.parse(document_type)
                existing.state = DocumentState.INGESTED
                existing.title = title or existing.title
                existing.last_error = None
                self.repository.save_document(existing)
                # Summary described the old text
                self.repository.delete_summary(document_id)
            logger.info(f"Document {document_id} text changed, reset to ingested")
            return existing

        document = Document(
            document_id=document_id,
            text=text,
            document_type=DocumentType.parse(document_type),
            user_id=user_id,
            title=title,
            page_metadata=pages,
        )
        self.repository.save_document(document)
        logger.info(f"Registered document {document_id} ({len(text)} chars)")
        return document

    # =========================================================================
    # Processing
    # =========================================================================

    def process_document(self, document_id: str) -> DocumentSummary:
        """
        Segment, analyze, detect risks, index and summarize a document.

        Idempotent for unchanged text: structure and severities are stable.

        Raises:
            DocumentNotFound: Unknown or deleted document
            ProcessingFailed: Every upstream call of the run failed (retryable)
            StaleGeneration: The run was superseded by a newer run or a delete
        """
        started = time.time()
        token = self.registry.advance(document_id)
        with self._run_guard(document_id, token) as current:
            document = current

        if document.document_type == DocumentType.UNKNOWN:
            document.document_type = self.identifier.identify(document.text, document_id)
        doc_type = document.document_type
        logger.info(f"Processing {document_id} as {doc_type.value} (generation {token})")

        clauses = self.segmenter.segment(document)
        with self._run_guard(document_id, token):
            self.repository.replace_clauses(document_id, clauses)
            self._set_state(document, DocumentState.SEGMENTED)

        chunks = self.chunker.chunk_all(clauses)
        self.indexer.remove_stale(document_id, {c.chunk_id for c in chunks}, token)
        with self._run_guard(document_id, token):
            self.repository.replace_chunks(document_id, chunks)

        index_futures = [self._executor.submit(self.indexer.index_chunk, c, token) for c in chunks]
        analysis_futures = [
            (clause, self._executor.submit(self.analyzer.analyze, clause, doc_type, token))
            for clause in clauses
        ]

        try:
            analyses = {clause.clause_id: f.result() for clause, f in analysis_futures}
            self.registry.check(document_id, token)
            alerts = self.detector.detect(clauses, doc_type, analyses, executor=self._executor)
            analyses = reconcile_risk_levels(analyses, alerts)

            with self._run_guard(document_id, token):
                stored = [self.repository.add_analysis(analyses[c.clause_id]) for c in clauses]
                self.repository.replace_alerts(document_id, alerts)
                self._set_state(document, DocumentState.ANALYZED)

            statuses = [f.result() for f in index_futures]
        except (StaleGeneration, DocumentNotFound):
            for future in index_futures + [f for _, f in analysis_futures]:
                future.cancel()
            logger.info(f"Processing of {document_id} superseded (generation {token})")
            raise

        with self._run_guard(document_id, token):
            self.repository.replace_chunk_statuses(document_id, statuses)
            self._set_state(document, DocumentState.INDEXED)

        degraded = sum(1 for a in stored if a.is_degraded)
        indexed = sum(1 for s in statuses if s.indexed)
        duration_ms = (time.time() - started) * 1000

        if clauses and self._total_outage(stored, indexed):
            reason = "all upstream calls failed for every clause and chunk"
            with self._run_guard(document_id, token):
                document.last_error = reason
                self._set_state(document, DocumentState.PROCESSING_FAILED)
            self.metrics.record_processing(
                document_id, len(clauses), degraded, indexed, len(statuses) - indexed,
                len(alerts), duration_ms, failed=True,
            )
            logger.error(f"Processing failed for {document_id}: {reason}")
            raise ProcessingFailed(document_id, reason)

        summary = self.summaries.build(document, clauses, stored, alerts, statuses)
        with self._run_guard(document_id, token):
            self.repository.save_summary(summary)
            document.last_error = None
            self._set_state(document, DocumentState.READY)

        self.metrics.record_processing(
            document_id, len(clauses), degraded, indexed, len(statuses) - indexed,
            len(alerts), duration_ms,
        )
        logger.info(
            f"Processed {document_id}: {len(clauses)} clauses ({degraded} degraded), "
            f"{indexed}/{len(statuses)} chunks indexed, {len(alerts)} alerts in {duration_ms:.0f}ms"
        )
        return summary

    @staticmethod
    def _total_outage(analyses: list[ClauseAnalysis], indexed: int) -> bool:
        return indexed == 0 and all(a.error_type == "UpstreamUnavailable" for a in analyses)

    @contextmanager
    def _run_guard(self, document_id: str, token: int):
        """Guarded write for a processing run; refuses once a delete has begun."""
        with self.registry.write_guard(document_id, token):
            stored = self.repository.get_document(document_id)
            if stored is None or stored.state.is_deleting:
                raise DocumentNotFound(document_id)
            yield stored

    def _set_state(self, document: Document, state: DocumentState) -> None:
        document.state = state
        self.repository.save_document(document)

    # =========================================================================
    # Questions
    # =========================================================================

    def ask(
        self,
        document_id: str,
        question: str,
        top_k: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> AnswerResponse:
        """
        Answer a question about one document.

        A document still being indexed is searched as far as it is indexed.

        Raises:
            DocumentNotFound: Unknown or deleted document
            UpstreamUnavailable: The question could not be embedded
            IndexInconsistent: Every match pointed at a missing chunk record
        """
        if not question or not question.strip():
            raise ValueError("question must not be empty")
        document = self._require_document(document_id)

        with self.metrics.track_query(document_id, question) as tracker:
            contexts = self.retriever.retrieve(question, document_id, k=top_k)
            response = self.answers.generate(
                question, document_id, contexts, user_id=user_id or document.user_id,
            )
            tracker.set_result(
                response.answerable,
                response.confidence,
                contexts=len(contexts),
                low_confidence=response.answerable
                and response.confidence < self.config.confidence_threshold,
            )

        self.repository.append_answer(response)
        return response

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_document(self, document_id: str) -> DeletionResult:
        """
        Delete a document with all its clauses, chunks, vectors and analyses.

        Steps: cancel in-flight work, mark ``delete_in_progress``, delete
        vectors and verify none remain, delete derived records, then mark
        ``deleted``. Each step is idempotent, so a failed delete is finished
        by calling this again.

        Returns:
            DeletionResult; ``success`` is False if the cascade did not
            complete (state ``delete_failed``)

        Raises:
            DocumentNotFound: The document was never registered
        """
        document = self.repository.get_document(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        if document.state == DocumentState.DELETED:
            return DeletionResult(document_id, success=True, state=DocumentState.DELETED)

        # Token and marker change together: a run started afterwards sees the marker
        with self.registry.superseding(document_id):
            document = self.repository.get_document(document_id) or document
            document.last_error = None
            self._set_state(document, DocumentState.DELETE_IN_PROGRESS)

        attempts = self.config.delete_max_attempts
        remaining = 0
        last_error: Optional[CascadeDeleteIncomplete] = None
        for attempt in range(attempts):
            try:
                self.vector_store.delete_by_document(document_id)
                remaining = self.vector_store.count(document_id)
                if remaining:
                    raise CascadeDeleteIncomplete(document_id, remaining)
                self.repository.delete_document_records(document_id)
                last_error = None
                break
            except CascadeDeleteIncomplete as e:
                last_error = e
            except Exception as e:
                last_error = CascadeDeleteIncomplete(
                    document_id, remaining, f"delete of {document_id} failed: {type(e).__name__}: {e}"
                )
            logger.warning(f"Delete attempt {attempt + 1}/{attempts} for {document_id} failed: {last_error}")
            if attempt < attempts - 1:
                self._sleep(self.config.upstream.backoff(attempt))

        if last_error is not None:
            document.last_error = str(last_error)
            self._set_state(document, DocumentState.DELETE_FAILED)
            self.metrics.record_fault("CascadeDeleteIncomplete")
            logger.error(f"Cascade delete incomplete for {document_id}: {last_error}")
            return DeletionResult(
                document_id,
                success=False,
                state=DocumentState.DELETE_FAILED,
                vectors_remaining=last_error.remaining,
                error=str(last_error),
            )

        document.text = ""
        document.text_hash = text_digest("")
        document.page_metadata = []
        self._set_state(document, DocumentState.DELETED)
        self.upstream.release_document(document_id)
        self.metrics.record_deletion(document_id)
        logger.info(f"Deleted document {document_id}")
        return DeletionResult(document_id, success=True, state=DocumentState.DELETED)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def verify_index(self, document_id: str) -> IndexReport:
        """
        Compare vectors in the index with the document's chunk records.

        Raises:
            DocumentNotFound: Unknown or deleted document
            IndexInconsistent: Vectors without chunk records, or chunks
                recorded as indexed that have no vector
        """
        self._require_document(document_id)
        vector_ids = self.vector_store.chunk_ids(document_id)
        chunk_ids = {c.chunk_id for c in self.repository.get_chunks(document_id)}
        recorded = {s.chunk_id for s in self.repository.get_chunk_statuses(document_id) if s.indexed}

        report = IndexReport(
            document_id=document_id,
            vector_count=len(vector_ids),
            chunk_count=len(chunk_ids),
            orphan_vectors=sorted(vector_ids - chunk_ids),
            missing_vectors=sorted((recorded & chunk_ids) - vector_ids),
        )
        if not report.consistent:
            self.metrics.record_fault("IndexInconsistent")
            logger.error(
                f"Index inconsistent for {document_id}: {len(report.orphan_vectors)} orphan vectors, "
                f"{len(report.missing_vectors)} missing vectors"
            )
            raise IndexInconsistent(
                document_id,
                orphan_vectors=report.orphan_vectors,
                missing_vectors=report.missing_vectors,
            )
        return report

    # =========================================================================
    # Reads
    # =========================================================================

    def _require_document(self, document_id: str) -> Document:
        document = self.repository.get_document(document_id)
        if document is None or document.state.is_deleting:
            raise DocumentNotFound(document_id)
        return document

    def get_document(self, document_id: str) -> Document:
        return self._require_document(document_id)

    def get_summary(self, document_id: str) -> DocumentSummary:
        """Stored summary, or one built from the current records if none is stored yet."""
        document = self._require_document(document_id)
        summary = self.repository.get_summary(document_id)
        if summary is not None:
            return summary
        return self.summaries.build(
            document,
            self.repository.get_clauses(document_id),
            self.repository.latest_analyses(document_id),
            self.repository.get_alerts(document_id),
            self.repository.get_chunk_statuses(document_id),
        )

    def get_analyses(self, document_id: str) -> list[ClauseAnalysis]:
        self._require_document(document_id)
        return self.repository.latest_analyses(document_id)

    def get_alerts(self, document_id: str) -> list[RiskAlert]:
        self._require_document(document_id)
        return self.repository.get_alerts(document_id)

    def get_history(self, document_id: str) -> list[AnswerResponse]:
        self._require_document(document_id)
        return self.repository.get_history(document_id)

    def get_user_history(self, user_id: str) -> list[AnswerResponse]:
        return self.repository.get_user_history(user_id)

    def list_documents(self, user_id: Optional[str] = None) -> list[Document]:
        return [
            d for d in self.repository.list_documents(user_id)
            if d.state != DocumentState.DELETED
        ]

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.upstream.shutdown()


def reconcile_risk_levels(
    analyses: dict[str, ClauseAnalysis], alerts: list[RiskAlert]
) -> dict[str, ClauseAnalysis]:
    """
    Raise each clause's risk level to the highest alert severity referencing it.

    Analyses are immutable, so raised ones are copies.
    """
    ceiling: dict[str, RiskLevel] = {}
    for alert in alerts:
        for clause_id in alert.clause_ids:
            ceiling[clause_id] = RiskLevel.highest([ceiling.get(clause_id), alert.severity])

    result = {}
    for clause_id, analysis in analyses.items():
        level = ceiling.get(clause_id)
        if level is not None and level.rank > analysis.risk_level.rank:
            analysis = replace(analysis, risk_level=level)
        result[clause_id] = analysis
    return result
