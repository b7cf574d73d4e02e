"""
Vector Retrieval with Cross-Encoder Reranking

Pipeline:
1. Embed the query
2. Tenant-scoped vector search, over-fetching rerank_top_k x overfetch_factor
   candidates above the similarity threshold
3. Rerank the candidates and keep rerank_top_k

Fallbacks:
- Query cannot be embedded, or vector search fails -> keyword search
- Reranker fails -> vector order truncated to rerank_top_k, rerank_score unset
"""

import time
import logging
import threading
from typing import Optional
from dataclasses import dataclass, field, replace

from .embeddings import BaseEmbeddingService
from .reranker import BaseReranker
from .vector_store import SearchResult, TenantScopeError

logger = logging.getLogger(__name__)


@dataclass
class RetrievalConfig:
    """Configuration for retrieval."""
    # Minimum cosine similarity for vector candidates
    similarity_threshold: float = 0.5

    # Final results after reranking
    rerank_top_k: int = 5

    # Candidates fetched per final result (20 candidates for top 5)
    overfetch_factor: int = 4

    # Run keyword search when the vector path is unavailable
    use_keyword_fallback: bool = True

    @property
    def candidate_limit(self) -> int:
        return self.rerank_top_k * self.overfetch_factor

    @classmethod
    def from_settings(cls, settings) -> "RetrievalConfig":
        return cls(
            similarity_threshold=settings.similarity_threshold,
            rerank_top_k=settings.rerank_top_k,
            overfetch_factor=settings.overfetch_factor,
        )


@dataclass
class RetrievalResult:
    """Ranked results plus how they were obtained."""
    query: str
    results: list[SearchResult] = field(default_factory=list)
    search_mode: str = "vector"  # "vector" or "keyword"
    reranked: bool = False
    candidates: int = 0
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "search_mode": self.search_mode,
            "reranked": self.reranked,
            "candidates": self.candidates,
            "elapsed_ms": self.elapsed_ms,
        }


class VectorRetriever:
    """
    Embed, search and rerank for one tenant-scoped query.

    Ranking never fails a query: every stage after the tenant check has a
    fallback that degrades quality rather than raising.
    """

    def __init__(
        self,
        vector_store,
        embedding_service: BaseEmbeddingService,
        reranker: BaseReranker,
        config: Optional[RetrievalConfig] = None,
    ):
        """
        Initialize retriever.

        Args:
            vector_store: VectorStore or InMemoryVectorStore
            embedding_service: Query embedder
            reranker: Cross-encoder reranker (offline implementation allowed)
            config: Optional retrieval configuration
        """
        self.store = vector_store
        self.embeddings = embedding_service
        self.reranker = reranker
        self.config = config or RetrievalConfig()

    def retrieve(
        self,
        query: str,
        user_id: str,
        matter_id: Optional[str] = None,
        top_k: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResult:
        """
        Retrieve the most relevant chunks for a query.

        Args:
            query: Search query
            user_id: Tenant (required)
            matter_id: Optional matter scope
            top_k: Final result count (defaults to config.rerank_top_k)
            cancel_event: When set after search, reranking is skipped

        Returns:
            RetrievalResult with at most top_k results
        """
        if not user_id:
            raise TenantScopeError("user_id is required for retrieval")

        top_k = top_k or self.config.rerank_top_k
        t0 = time.time()

        candidates, mode = self._candidates(query, user_id, matter_id, top_k)
        logger.info(f"Retrieved {len(candidates)} candidates via {mode} search")

        if cancel_event is not None and cancel_event.is_set():
            logger.info("Retrieval cancelled before reranking")
            ranked, reranked = candidates[:top_k], False
        else:
            ranked, reranked = self._rerank(query, candidates, top_k)

        elapsed_ms = (time.time() - t0) * 1000
        logger.info(
            f"Retrieval done in {elapsed_ms:.0f}ms: {len(ranked)} results "
            f"(mode={mode}, reranked={reranked})"
        )
        return RetrievalResult(
            query=query,
            results=ranked,
            search_mode=mode,
            reranked=reranked,
            candidates=len(candidates),
            elapsed_ms=elapsed_ms,
        )

    def _candidates(
        self,
        query: str,
        user_id: str,
        matter_id: Optional[str],
        top_k: int,
    ) -> tuple[list[SearchResult], str]:
        """Vector candidates, or keyword candidates when the vector path is unavailable."""
        limit = top_k * self.config.overfetch_factor

        try:
            query_embedding = self.embeddings.embed_query(query)
        except Exception as e:
            logger.warning(f"Query embedding failed: {e}. Falling back to keyword search.")
            return self._keyword_candidates(query, user_id, matter_id, limit), "keyword"

        try:
            results = self.store.search(
                query_embedding=query_embedding,
                user_id=user_id,
                matter_id=matter_id,
                threshold=self.config.similarity_threshold,
                limit=limit,
            )
            return results, "vector"
        except TenantScopeError:
            raise
        except Exception as e:
            logger.error(f"Vector search failed: {e}. Falling back to keyword search.")
            return self._keyword_candidates(query, user_id, matter_id, limit), "keyword"

    def _keyword_candidates(
        self,
        query: str,
        user_id: str,
        matter_id: Optional[str],
        limit: int,
    ) -> list[SearchResult]:
        if not self.config.use_keyword_fallback:
            return []
        try:
            return self.store.keyword_search(
                query=query, user_id=user_id, matter_id=matter_id, limit=limit,
            )
        except TenantScopeError:
            raise
        except Exception as e:
            logger.error(f"Keyword search failed: {e}")
            return []

    def _rerank(
        self,
        query: str,
        candidates: list[SearchResult],
        top_k: int,
    ) -> tuple[list[SearchResult], bool]:
        """
        Rerank candidates, falling back to the incoming order on any failure.

        Returns:
            (results, reranked) where reranked is False when no scores were applied
        """
        if not candidates:
            return [], False

        try:
            scores = self.reranker.rerank(query, [c.content for c in candidates], top_k)
        except Exception as e:
            logger.warning(f"Reranking failed: {e}. Using vector order.")
            return candidates[:top_k], False

        ranked = []
        seen = set()
        for item in scores:
            if item.index in seen:
                continue
            seen.add(item.index)
            ranked.append(replace(candidates[item.index], rerank_score=item.score))

        if not ranked:
            return candidates[:top_k], False

        reranked = any(r.rerank_score is not None for r in ranked)
        return ranked[:top_k], reranked


# CLI for testing
if __name__ == "__main__":
    import sys
    from .pipeline import build_services
    from .config import RAGSettings

    logging.basicConfig(level=logging.INFO)

    services = build_services(RAGSettings.from_env())
    query = sys.argv[1] if len(sys.argv) > 1 else "termination clause"
    user = sys.argv[2] if len(sys.argv) > 2 else "local-user"

    print(f"\nSearching for: {query}")
    print("-" * 50)

    outcome = services.retriever.retrieve(query, user_id=user)
    for i, result in enumerate(outcome.results, 1):
        print(f"\n{i}. [{result.document_name}] (similarity: {result.similarity:.4f}, rerank: {result.rerank_score})")
        print(f"   Preview: {result.content[:200]}...")
