"""
Pydantic models for the Legal Lens FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class PageSpanModel(BaseModel):
    """Character range of one page in the extracted text."""
    page_number: int = Field(..., ge=1)
    start_char: int = Field(..., ge=0)
    end_char: int = Field(..., ge=0)


class RegisterRequest(BaseModel):
    """Request body for handing over extracted document text."""
    document_id: str = Field(..., min_length=1, max_length=200)
    text: str
    title: Optional[str] = None
    document_type: Optional[str] = Field(None, pattern=r"^(rental|employment|loan|government|unknown)$")
    user_id: Optional[str] = None
    page_metadata: list[PageSpanModel] = []


class DocumentInfo(BaseModel):
    """Information about a registered document."""
    id: str
    title: Optional[str] = None
    document_type: str
    state: str
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_error: Optional[str] = None


class AskRequest(BaseModel):
    """Request body for asking a question about one document."""
    question: str = Field(..., min_length=1, max_length=2000)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    user_id: Optional[str] = None


class CitationInfo(BaseModel):
    """Citation of a chunk and clause in an answer."""
    chunk_id: str
    clause_id: str
    clause_position: int
    document_id: str
    excerpt: str
    relevance_score: float
    page_numbers: list[int]
    short_citation: str


class AnswerModel(BaseModel):
    """Response body for a question."""
    answer_id: str
    document_id: str
    question: str
    answer: str
    answerable: bool
    confidence: float
    citations: list[CitationInfo]
    limitation: Optional[str] = None
    user_id: Optional[str] = None
    created_at: str


class RiskInfo(BaseModel):
    """One of the key risks listed in a summary."""
    risk_type: str
    severity: str
    clause_positions: list[int]
    description: str
    recommendation: str


class SummaryModel(BaseModel):
    """Response body for a document summary."""
    document_id: str
    status: str
    risk_posture: Optional[str] = None
    narrative: str
    clause_count: int
    analyzed_count: int
    alert_counts: dict[str, int]
    top_risks: list[RiskInfo]
    degraded_clause_ids: list[str]
    unindexed_chunk_ids: list[str]
    generated_at: str


class DeleteResponse(BaseModel):
    """Response body for a delete request. Retry until ``success`` is true."""
    document_id: str
    success: bool
    state: str
    vectors_remaining: int = 0
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    storage: str
