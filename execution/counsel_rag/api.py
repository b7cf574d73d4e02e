"""
FastAPI Backend for Counsel RAG

REST endpoints for document ingestion and retrieval-augmented search.
Authentication happens upstream; the gateway forwards the tenant in the
X-User-Id header.

Run with: uvicorn execution.counsel_rag.api:app --host 0.0.0.0 --port 8000
"""

import os
import time
import asyncio
import logging
import threading
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .api_models import (
    IngestRequest, IngestResponse, ReembedResponse,
    SearchRequest, SearchResponse, SearchResultInfo, CitationInfo, ClauseSummaryInfo,
    HealthResponse,
)
from .clause_analyzer import build_clause_summary
from .ingest import DocumentValidationError
from .vector_store import TenantScopeError

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

# How often a running search checks whether its client is still connected
DISCONNECT_POLL_SECONDS = 0.25

app = FastAPI(
    title="Counsel RAG API",
    description="Chunking, retrieval, verified citations and clause risk for legal documents",
    version=API_VERSION,
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
# Pipeline Container
# =============================================================================

class PipelineContainer:
    """Builds the pipeline once per process on first use."""

    def __init__(self):
        self._pipeline = None
        self._lock = threading.Lock()

    def get(self):
        if self._pipeline is None:
            with self._lock:
                if self._pipeline is None:
                    from .pipeline import CounselPipeline
                    self._pipeline = CounselPipeline.from_settings()
        return self._pipeline


_container = PipelineContainer()


def get_pipeline():
    """FastAPI dependency returning the shared pipeline."""
    return _container.get()


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Tenant forwarded by the gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    try:
        pipeline = get_pipeline()
        settings = pipeline.services.settings
        database = settings.vector_store
        providers = settings.to_dict()
    except Exception as e:
        logger.warning(f"Health check: pipeline unavailable: {e}")
        database = "disconnected"
        providers = {}

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=database,
        providers=providers,
    )


@app.post("/api/v1/documents/ingest", response_model=IngestResponse)
def ingest_document(
    request: IngestRequest,
    user_id: str = Depends(get_user_id),
    pipeline=Depends(get_pipeline),
):
    """Chunk, embed and store a document's extracted text."""
    try:
        result = pipeline.ingest_document(
            document_id=request.document_id,
            document_name=request.document_name,
            text=request.text,
            user_id=user_id,
            matter_id=request.matter_id,
        )
    except DocumentValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TenantScopeError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error(f"Ingest failed for {request.document_id}: {e}")
        raise HTTPException(status_code=500, detail="Document processing failed")

    return IngestResponse(**result.to_dict())


@app.post("/api/v1/documents/{document_id}/reembed", response_model=ReembedResponse)
def reembed_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    pipeline=Depends(get_pipeline),
):
    """Embed chunks of a document that were stored without a vector."""
    if pipeline.services.store.get_document(document_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Document not found")

    try:
        updated = pipeline.reembed_document(document_id, user_id)
    except Exception as e:
        logger.error(f"Re-embed failed for {document_id}: {e}")
        raise HTTPException(status_code=500, detail="Re-embedding failed")

    return ReembedResponse(document_id=document_id, reembedded=updated)


async def _cancel_on_disconnect(http_request: Request, cancel_event: threading.Event) -> None:
    """Set cancel_event once the client has gone away."""
    while not cancel_event.is_set():
        if await http_request.is_disconnected():
            logger.info("Client disconnected, cancelling search")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@app.post("/api/v1/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    http_request: Request,
    user_id: str = Depends(get_user_id),
    pipeline=Depends(get_pipeline),
):
    """Retrieve ranked chunks with verified citations and optional clause analysis."""
    start_time = time.time()
    cancel_event = threading.Event()
    watcher = asyncio.create_task(_cancel_on_disconnect(http_request, cancel_event))

    try:
        outcome = await run_in_threadpool(
            pipeline.build_query_context,
            request.query,
            user_id=user_id,
            matter_id=request.matter_id,
            analyze_clauses=request.analyze_clauses,
            max_citations=request.max_citations,
            cancel_event=cancel_event,
        )
    except asyncio.CancelledError:
        cancel_event.set()
        raise
    except TenantScopeError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        cancel_event.set()
        logger.error(f"Search failed: {e}")
        raise HTTPException(status_code=500, detail="Search failed")
    finally:
        watcher.cancel()

    clauses = None
    if outcome.analysis is not None:
        clauses = ClauseSummaryInfo(**build_clause_summary(outcome.analysis))

    return SearchResponse(
        context=outcome.context.text,
        results=[
            SearchResultInfo(
                id=r.id,
                document_id=r.document_id,
                document_name=r.document_name,
                chunk_index=r.chunk_index,
                content=r.content,
                similarity=r.similarity,
                rerank_score=r.rerank_score,
            )
            for r in outcome.retrieval.results
        ],
        citations=[CitationInfo(**c) for c in outcome.context.citations],
        verified=outcome.citations.verified,
        search_mode=outcome.retrieval.search_mode,
        clauses=clauses,
        latency_ms=(time.time() - start_time) * 1000,
    )
