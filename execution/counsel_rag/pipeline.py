"""
Service wiring and the query path.

build_services() turns one RAGSettings into the full set of collaborators,
sharing a single Isaacus client between them. CounselPipeline runs the
query path: retrieve, then extract citations alongside the optional clause
analysis, then assemble the prompt context. Tenants with no ready documents
skip retrieval entirely.
"""

import time
import logging
import threading
from typing import Optional
from dataclasses import dataclass
from concurrent.futures import ThreadPoolExecutor

from .config import RAGSettings
from .isaacus import IsaacusClient
from .chunker import LegalChunker
from .embeddings import BaseEmbeddingService, get_embedding_service
from .reranker import BaseReranker, get_reranker
from .reader import BaseReader, get_reader
from .classifier import BaseClassifier, get_classifier
from .vector_store import get_vector_store
from .retriever import VectorRetriever, RetrievalConfig, RetrievalResult
from .citation import CitationExtractor, CitationResult
from .iql import ClauseScanner
from .clause_analyzer import ClauseAnalyzer, ContractAnalysisResult, EnrichmentDefaults
from .context import AssembledContext, assemble_context
from .ingest import DocumentIngestor, IngestResult

logger = logging.getLogger(__name__)


@dataclass
class CounselServices:
    """Every collaborator built from one settings object."""
    settings: RAGSettings
    store: object
    chunker: LegalChunker
    embeddings: BaseEmbeddingService
    reranker: BaseReranker
    reader: BaseReader
    classifier: BaseClassifier
    retriever: VectorRetriever
    citation_extractor: CitationExtractor
    scanner: ClauseScanner
    clause_analyzer: ClauseAnalyzer
    ingestor: DocumentIngestor
    isaacus_client: Optional[IsaacusClient] = None

    def close(self) -> None:
        self.store.close()
        if self.isaacus_client is not None:
            self.isaacus_client.close()


def build_services(settings: Optional[RAGSettings] = None, store=None) -> CounselServices:
    """
    Build all services from settings.

    Args:
        settings: Resolved settings (RAGSettings.from_env() if omitted)
        store: Optional pre-built datastore (otherwise chosen by settings)

    Returns:
        CounselServices
    """
    settings = settings or RAGSettings.from_env()

    uses_isaacus = "isaacus" in (
        settings.embedding_provider,
        settings.rerank_provider,
        settings.reader_provider,
        settings.classifier_provider,
    )
    client = IsaacusClient.from_settings(settings) if uses_isaacus else None

    if store is None:
        store = get_vector_store(settings)
        store.connect()
        store.initialize_schema()

    chunker = LegalChunker.from_settings(settings)
    embeddings = get_embedding_service(settings, client)
    reranker = get_reranker(settings, client)
    reader = get_reader(settings, client)
    classifier = get_classifier(settings, client)

    retriever = VectorRetriever(
        store, embeddings, reranker, RetrievalConfig.from_settings(settings),
    )
    citation_extractor = CitationExtractor(
        reader, max_workers=settings.max_workers, task_timeout=settings.task_timeout,
    )
    scanner = ClauseScanner(classifier)
    clause_analyzer = ClauseAnalyzer(
        scanner,
        classifier,
        reader,
        max_workers=settings.max_workers,
        task_timeout=settings.task_timeout,
        defaults=EnrichmentDefaults.from_settings(settings),
    )

    logger.info(f"Services built: {settings.to_dict()}")
    return CounselServices(
        settings=settings,
        store=store,
        chunker=chunker,
        embeddings=embeddings,
        reranker=reranker,
        reader=reader,
        classifier=classifier,
        retriever=retriever,
        citation_extractor=citation_extractor,
        scanner=scanner,
        clause_analyzer=clause_analyzer,
        ingestor=DocumentIngestor(chunker, embeddings, store, classifier),
        isaacus_client=client,
    )


@dataclass
class QueryContext:
    """Everything produced for one query."""
    retrieval: RetrievalResult
    citations: CitationResult
    analysis: Optional[ContractAnalysisResult]
    context: AssembledContext
    elapsed_ms: float = 0.0


class CounselPipeline:
    """Ingest and query entry points over a CounselServices bundle."""

    def __init__(self, services: CounselServices):
        self.services = services

    @classmethod
    def from_settings(cls, settings: Optional[RAGSettings] = None) -> "CounselPipeline":
        return cls(build_services(settings))

    def ingest_document(
        self,
        document_id: str,
        document_name: str,
        text: str,
        user_id: str,
        matter_id: Optional[str] = None,
    ) -> IngestResult:
        return self.services.ingestor.ingest(
            document_id, document_name, text, user_id, matter_id=matter_id,
        )

    def reembed_document(self, document_id: str, user_id: str) -> int:
        return self.services.ingestor.reembed_missing(document_id, user_id)

    def build_query_context(
        self,
        query: str,
        user_id: str,
        matter_id: Optional[str] = None,
        analyze_clauses: bool = False,
        max_citations: int = 5,
        cancel_event: Optional[threading.Event] = None,
    ) -> QueryContext:
        """
        Retrieve, cite and (optionally) analyze clauses for a query.

        Args:
            query: The user's question
            user_id: Tenant
            matter_id: Optional matter scope
            analyze_clauses: Run clause analysis over the retrieved chunks
            max_citations: Results to extract citations from
            cancel_event: Set by the caller to stop pending model calls

        Returns:
            QueryContext with the assembled prompt context
        """
        t0 = time.time()
        if not self.services.store.has_documents(user_id, matter_id):
            logger.info(f"No ready documents for user {user_id}; skipping retrieval")
            retrieval = RetrievalResult(query=query)
            citations = CitationResult()
            analysis = None
        else:
            retrieval = self.services.retriever.retrieve(
                query, user_id=user_id, matter_id=matter_id, cancel_event=cancel_event,
            )
            citations, analysis = self._cite_and_analyze(
                query, retrieval.results, analyze_clauses, max_citations, cancel_event,
            )

        context = assemble_context(retrieval.results, citations.citations, analysis)
        elapsed_ms = (time.time() - t0) * 1000
        logger.info(
            f"Query context built in {elapsed_ms:.0f}ms: {len(retrieval.results)} results, "
            f"{len(citations.citations)} citations"
        )
        return QueryContext(
            retrieval=retrieval,
            citations=citations,
            analysis=analysis,
            context=context,
            elapsed_ms=elapsed_ms,
        )

    def _cite_and_analyze(
        self,
        query: str,
        results: list,
        analyze_clauses: bool,
        max_citations: int,
        cancel_event: Optional[threading.Event],
    ) -> tuple[CitationResult, Optional[ContractAnalysisResult]]:
        """Citation extraction and clause analysis side by side over the same results."""
        extractor = self.services.citation_extractor
        if not (analyze_clauses and results):
            citations = extractor.extract_citations(
                query, results, max_citations=max_citations, cancel_event=cancel_event,
            )
            return citations, None

        with ThreadPoolExecutor(max_workers=2) as executor:
            citation_future = executor.submit(
                extractor.extract_citations,
                query, results, max_citations=max_citations, cancel_event=cancel_event,
            )
            analysis_future = executor.submit(
                self.services.clause_analyzer.analyze_contract_clauses,
                [r.content for r in results], cancel_event=cancel_event,
            )
            return citation_future.result(), analysis_future.result()

    def analyze_document(
        self,
        document_id: str,
        user_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ContractAnalysisResult:
        """Clause analysis over every chunk of a stored document."""
        chunks = self.services.store.get_document_chunks(document_id, user_id)
        return self.services.clause_analyzer.analyze_contract_clauses(
            [c.content for c in chunks], cancel_event=cancel_event,
        )


# CLI for testing
if __name__ == "__main__":
    import sys
    from pathlib import Path

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 3:
        print("Usage: python -m execution.counsel_rag.pipeline <document.txt> <query>")
        sys.exit(1)

    path = Path(sys.argv[1])
    pipeline = CounselPipeline.from_settings()
    result = pipeline.ingest_document(path.stem, path.name, path.read_text(), user_id="local-user")
    print(f"Ingested {result.chunks} chunks ({result.embedded_chunks} embedded)")

    outcome = pipeline.build_query_context(sys.argv[2], user_id="local-user", analyze_clauses=True)
    print(outcome.context.text)
