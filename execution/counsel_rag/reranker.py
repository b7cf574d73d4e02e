"""
Cross-Encoder Reranking for Counsel RAG

Rescores a candidate set against the query. Implementations:
- IsaacusReranker  -- kanon-2-reranker (default)
- CohereReranker   -- Cohere rerank-v3
- OfflineReranker  -- keeps the incoming order, no scores

The retriever treats any exception from rerank() as "use vector order",
so ranking never fails a query.
"""

import logging
import time
from typing import Optional
from dataclasses import dataclass

from .isaacus import IsaacusClient

logger = logging.getLogger(__name__)


@dataclass
class RerankScore:
    """Position of a document in the input list and its relevance score."""
    index: int
    score: Optional[float]


class BaseReranker:
    """Base class for rerankers. Subclasses implement _rerank()."""

    _provider_name: str = "Base"

    def rerank(self, query: str, documents: list[str], top_k: int) -> list[RerankScore]:
        """
        Rerank documents for a query.

        Args:
            query: User query
            documents: Candidate texts
            top_k: Number of results to keep

        Returns:
            Up to top_k RerankScore entries, most relevant first
        """
        if not documents or top_k <= 0:
            return []

        t0 = time.time()
        scores = self._rerank(query, documents, top_k)
        for item in scores:
            if not 0 <= item.index < len(documents):
                raise ValueError(f"{self._provider_name} returned out-of-range index {item.index}")

        scores = sorted(
            scores,
            key=lambda s: s.score if s.score is not None else float("-inf"),
            reverse=True,
        )[:top_k]
        logger.debug(
            f"{self._provider_name} reranked {len(documents)} docs -> {len(scores)} "
            f"in {(time.time() - t0) * 1000:.0f}ms"
        )
        return scores

    def _rerank(self, query: str, documents: list[str], top_k: int) -> list[RerankScore]:
        raise NotImplementedError("Subclasses must implement _rerank()")


class IsaacusReranker(BaseReranker):
    """Reranker using Isaacus kanon-2-reranker."""

    _provider_name = "Isaacus"

    def __init__(self, client: IsaacusClient):
        self._client = client

    def _rerank(self, query: str, documents: list[str], top_k: int) -> list[RerankScore]:
        results = self._client.rerank(query, documents, top_k=top_k)
        return [
            RerankScore(index=int(r["index"]), score=min(1.0, max(0.0, float(r["score"]))))
            for r in results
        ]


class CohereReranker(BaseReranker):
    """Reranker using Cohere's rerank endpoint."""

    _provider_name = "Cohere"

    def __init__(self, api_key: str, model: str = "rerank-english-v3.0"):
        self.model = model
        try:
            import cohere
            self._client = cohere.Client(api_key)
            logger.info("Cohere reranker initialized")
        except ImportError:
            logger.error("Cohere package not installed. Run: pip install cohere")
            raise

    def _rerank(self, query: str, documents: list[str], top_k: int) -> list[RerankScore]:
        response = self._client.rerank(
            model=self.model,
            query=query,
            documents=documents,
            top_n=min(top_k, len(documents)),
        )
        return [
            RerankScore(index=item.index, score=float(item.relevance_score))
            for item in response.results
        ]


class OfflineReranker(BaseReranker):
    """Reranker used when no provider is configured: identity order, no scores."""

    _provider_name = "Offline"

    def _rerank(self, query: str, documents: list[str], top_k: int) -> list[RerankScore]:
        return [RerankScore(index=i, score=None) for i in range(min(top_k, len(documents)))]


def get_reranker(settings, isaacus_client: Optional[IsaacusClient] = None) -> BaseReranker:
    """Factory function returning the reranker selected by settings."""
    if settings.rerank_provider == "isaacus":
        return IsaacusReranker(isaacus_client or IsaacusClient.from_settings(settings))
    if settings.rerank_provider == "cohere":
        return CohereReranker(settings.cohere_api_key)
    return OfflineReranker()
