"""
Pydantic models for the Counsel RAG FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    """Request body for document ingestion."""
    document_id: str = Field(..., min_length=1, max_length=200)
    document_name: str = Field(..., min_length=1, max_length=500)
    text: str
    matter_id: Optional[str] = None


class IngestResponse(BaseModel):
    """Response body for document ingestion."""
    document_id: str
    chunks: int
    embedded_chunks: int
    status: str
    document_type: Optional[str] = None


class ReembedResponse(BaseModel):
    document_id: str
    reembedded: int


class SearchRequest(BaseModel):
    """Request body for the search endpoint."""
    query: str = Field(..., min_length=1, max_length=2000)
    matter_id: Optional[str] = None
    analyze_clauses: bool = False
    max_citations: int = Field(default=5, ge=0, le=20)


class SearchResultInfo(BaseModel):
    """One ranked chunk in a search response."""
    id: str
    document_id: str
    document_name: str
    chunk_index: int
    content: str
    similarity: float
    rerank_score: Optional[float] = None


class CitationInfo(BaseModel):
    """Citation record as shown in the UI (percentages as integers)."""
    id: str
    document: str
    quote: str
    confidence: int
    relevance: int
    verified: bool


class ClauseSummaryInfo(BaseModel):
    has_high_risk: bool
    risk_summary: str
    clause_types: list[str]


class SearchResponse(BaseModel):
    """Response body for the search endpoint."""
    context: str
    results: list[SearchResultInfo]
    citations: list[CitationInfo]
    verified: bool
    search_mode: str = "vector"
    clauses: Optional[ClauseSummaryInfo] = None
    latency_ms: float = 0.0


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str
    providers: dict = {}
