"""
FastAPI Backend for Legal Lens

REST endpoints around the document pipeline: register extracted text,
process it, ask questions, read the summary and Q&A history, delete.

Run with: uvicorn execution.legal_lens.api:app --host 0.0.0.0 --port 8000
"""

import os
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    AnswerModel,
    AskRequest,
    DeleteResponse,
    DocumentInfo,
    HealthResponse,
    RegisterRequest,
    SummaryModel,
)
from .errors import (
    CascadeDeleteIncomplete,
    DocumentNotFound,
    IndexInconsistent,
    LegalLensError,
    ProcessingFailed,
    StaleGeneration,
    UpstreamError,
)
from .metrics import get_metrics_collector
from .models import Document

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Legal Lens API",
    description="Clause analysis, risk alerts and grounded Q&A for legal documents",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Builds the pipeline once, from the environment, on first use."""

    def __init__(self, pipeline=None, storage: Optional[str] = None):
        self._pipeline = pipeline
        self.storage = storage or os.getenv("LEGAL_LENS_STORAGE", "memory")

    def get_pipeline(self):
        if self._pipeline is None:
            from .config import PipelineConfig
            from .embeddings import get_embedding_service
            from .llm import ClassificationService, TextGenerationService
            from .pipeline import DocumentPipeline
            from .repository import DocumentRepository

            config = PipelineConfig.from_env()
            embeddings = get_embedding_service(
                provider=config.embedding_provider,
                use_local=config.use_local_embeddings,
            )
            generator = TextGenerationService(model=config.llm_model, base_url=config.llm_base_url)

            if self.storage == "postgres":
                from .db import PostgresDatabase
                from .storage import PostgresKeyValueStore
                from .vector_store import PgVectorStore

                db = PostgresDatabase()
                db.connect()
                store = PostgresKeyValueStore(db)
                store.initialize_schema()
                vectors = PgVectorStore(db, dimensions=embeddings.dimensions)
                vectors.initialize_schema()
            else:
                from .storage import InMemoryKeyValueStore
                from .vector_store import InMemoryVectorStore

                store = InMemoryKeyValueStore()
                vectors = InMemoryVectorStore()

            self._pipeline = DocumentPipeline(
                DocumentRepository(store),
                vectors,
                embeddings,
                generator,
                ClassificationService(generator),
                config=config,
            )
            logger.info(f"Pipeline ready ({self.storage} storage, {config.embedding_provider} embeddings)")
        return self._pipeline


_container = ServiceContainer()


def _http_error(e: LegalLensError) -> HTTPException:
    """Map a pipeline error to an HTTP error with a retryable flag."""
    if isinstance(e, DocumentNotFound):
        status = 404
    elif isinstance(e, (UpstreamError, ProcessingFailed)):
        status = 503
    elif isinstance(e, StaleGeneration):
        status = 409
    else:
        # IndexInconsistent, CascadeDeleteIncomplete: operator faults
        status = 500
    if status >= 500:
        logger.error(f"{type(e).__name__}: {e}")
    return HTTPException(
        status_code=status,
        detail={"error": type(e).__name__, "message": str(e), "retryable": e.retryable},
    )


def _document_info(document: Document) -> DocumentInfo:
    return DocumentInfo(
        id=document.document_id,
        title=document.title,
        document_type=document.document_type.value,
        state=document.state.value,
        user_id=document.user_id,
        created_at=document.created_at,
        updated_at=document.updated_at,
        last_error=document.last_error,
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    status = "ok"
    try:
        _container.get_pipeline()
    except Exception as e:
        logger.warning(f"Health check: pipeline unavailable: {e}")
        status = "degraded"
    return HealthResponse(status=status, version=__version__, storage=_container.storage)


@app.get("/api/v1/metrics")
async def get_metrics():
    """Pipeline and question metrics."""
    collector = get_metrics_collector()
    data = collector.get_metrics_dict()
    data["uptime_seconds"] = round(collector.get_uptime().total_seconds(), 1)
    return data


@app.post("/api/v1/documents", response_model=DocumentInfo)
def register_document(request: RegisterRequest):
    """Hand over extracted text for a document."""
    pipeline = _container.get_pipeline()
    try:
        document = pipeline.register_document(
            request.document_id,
            request.text,
            page_metadata=[p.model_dump() for p in request.page_metadata],
            document_type=request.document_type,
            user_id=request.user_id,
            title=request.title,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _document_info(document)


@app.get("/api/v1/documents", response_model=list[DocumentInfo])
def list_documents(user_id: Optional[str] = None):
    """List documents, optionally for one user."""
    return [_document_info(d) for d in _container.get_pipeline().list_documents(user_id)]


@app.post("/api/v1/documents/{document_id}/process", response_model=SummaryModel)
def process_document(document_id: str):
    """Segment, analyze, index and summarize a document."""
    try:
        summary = _container.get_pipeline().process_document(document_id)
    except LegalLensError as e:
        raise _http_error(e)
    return SummaryModel(**summary.to_dict())


@app.post("/api/v1/documents/{document_id}/ask", response_model=AnswerModel)
def ask_question(document_id: str, request: AskRequest):
    """Ask a question about one document."""
    try:
        answer = _container.get_pipeline().ask(
            document_id, request.question, top_k=request.top_k, user_id=request.user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LegalLensError as e:
        raise _http_error(e)
    return AnswerModel(**answer.to_dict())


@app.get("/api/v1/documents/{document_id}/summary", response_model=SummaryModel)
def get_summary(document_id: str):
    """Latest document summary."""
    try:
        summary = _container.get_pipeline().get_summary(document_id)
    except LegalLensError as e:
        raise _http_error(e)
    return SummaryModel(**summary.to_dict())


@app.get("/api/v1/documents/{document_id}/history", response_model=list[AnswerModel])
def get_history(document_id: str):
    """Q&A history for a document, oldest first."""
    try:
        history = _container.get_pipeline().get_history(document_id)
    except LegalLensError as e:
        raise _http_error(e)
    return [AnswerModel(**a.to_dict()) for a in history]


@app.delete("/api/v1/documents/{document_id}", response_model=DeleteResponse)
def delete_document(document_id: str):
    """
    Delete a document and everything derived from it.

    An incomplete cascade is reported as a 500 with the delete_failed state;
    the caller retries until it succeeds.
    """
    try:
        result = _container.get_pipeline().delete_document(document_id)
    except LegalLensError as e:
        raise _http_error(e)
    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={
                **result.to_dict(),
                "error": "CascadeDeleteIncomplete",
                "message": result.error,
                "retryable": True,
            },
        )
    return DeleteResponse(**result.to_dict())
