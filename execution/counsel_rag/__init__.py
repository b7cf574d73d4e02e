"""
Counsel RAG - Chunking, Retrieval and Clause Risk for Legal Documents

This module provides:
- Legal-aware chunking that preserves section structure
- Tenant-scoped vector retrieval with cross-encoder reranking
- Verified citations (exact quotes grounded in the source chunk)
- IQL clause scanning with risk and mutuality enrichment
- Prompt context assembly

Every model-backed capability has an offline implementation; settings
decide which one is used.
"""

from .config import RAGSettings, ServiceUnavailableError
from .chunker import LegalChunker, ChunkOptions, Chunk
from .embeddings import BaseEmbeddingService, get_embedding_service
from .vector_store import VectorStore, InMemoryVectorStore, SearchResult, TenantScopeError
from .retriever import VectorRetriever
from .citation import CitationExtractor, VerifiedCitation
from .iql import ClauseScanner, IQLBuilder, parse_iql, IQLSyntaxError
from .clause_analyzer import ClauseAnalyzer, AnalyzedClause, ContractAnalysisResult
from .context import assemble_context, AssembledContext
from .ingest import DocumentIngestor, DocumentValidationError
from .pipeline import CounselPipeline, build_services

__all__ = [
    "RAGSettings",
    "ServiceUnavailableError",
    "LegalChunker",
    "ChunkOptions",
    "Chunk",
    "BaseEmbeddingService",
    "get_embedding_service",
    "VectorStore",
    "InMemoryVectorStore",
    "SearchResult",
    "TenantScopeError",
    "VectorRetriever",
    "CitationExtractor",
    "VerifiedCitation",
    "ClauseScanner",
    "IQLBuilder",
    "parse_iql",
    "IQLSyntaxError",
    "ClauseAnalyzer",
    "AnalyzedClause",
    "ContractAnalysisResult",
    "assemble_context",
    "AssembledContext",
    "DocumentIngestor",
    "DocumentValidationError",
    "CounselPipeline",
    "build_services",
]

__version__ = "0.1.0"
