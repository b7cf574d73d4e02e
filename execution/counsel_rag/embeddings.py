"""
Embedding Gateway for Counsel RAG

Turns chunk texts and queries into vectors. Documents are embedded in
fixed-size batches; a failing batch is logged and its slots are left as
None so the rest of the ingest can continue.

Architecture:
    BaseEmbeddingService  -- shared batching, embed_documents, embed_query
        IsaacusEmbeddingService   -- kanon-2-embedder (1792-d, default)
        VoyageEmbeddingService    -- Voyage AI voyage-law-2 (1024-d)
        LocalEmbeddingService     -- local sentence-transformers model
        OfflineEmbeddingService   -- no vectors; retrieval uses keyword search
"""

import logging
import time
from typing import Optional
from dataclasses import dataclass

from .config import ServiceUnavailableError
from .isaacus import IsaacusClient, EMBEDDING_DIMENSIONS, TASK_DOCUMENT, TASK_QUERY

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "isaacus"  # "isaacus", "voyage", "local" or "offline"
    model: str = "kanon-2-embedder"
    dimensions: int = EMBEDDING_DIMENSIONS
    batch_size: int = 10
    api_key: Optional[str] = None


class BaseEmbeddingService:
    """
    Base class for embedding services.

    Subclasses implement _embed_batch() and may override _init_client().
    Callers only use embed_documents() and embed_query().
    """

    _provider_name: str = "Base"
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific client (no-op by default)."""

    def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        """Embed one batch. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _embed_batch()")

    @property
    def available(self) -> bool:
        """Whether this service can produce vectors at all."""
        return True

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions

    def embed_documents(self, texts: list[str]) -> list[Optional[list[float]]]:
        """
        Generate embeddings for document chunks.

        Args:
            texts: List of text strings to embed

        Returns:
            One entry per input text: the vector, or None if its batch failed
        """
        if not texts:
            return []

        size = max(1, self.config.batch_size)
        batches = [texts[i:i + size] for i in range(0, len(texts), size)]
        logger.info(
            f"Embedding {len(texts)} documents in {len(batches)} batches"
            f" with {self._provider_name}"
        )

        t0 = time.time()
        embeddings: list[Optional[list[float]]] = []
        failed = 0
        for batch_idx, batch in enumerate(batches):
            try:
                vectors = self._embed_batch(batch, input_type=self._doc_input_type)
                if len(vectors) != len(batch):
                    raise ValueError(f"expected {len(batch)} vectors, got {len(vectors)}")
                embeddings.extend(vectors)
            except Exception as e:
                failed += 1
                logger.error(
                    f"{self._provider_name} embedding batch {batch_idx + 1}/{len(batches)} failed: {e}"
                )
                embeddings.extend([None] * len(batch))

            if (batch_idx + 1) % 10 == 0:
                logger.info(f"Processed batch {batch_idx + 1}/{len(batches)}")

        elapsed_ms = (time.time() - t0) * 1000
        if failed:
            logger.warning(
                f"{failed}/{len(batches)} embedding batches failed; "
                f"{embeddings.count(None)} chunks left without vectors"
            )
        logger.info(f"Embedded {len(texts) - embeddings.count(None)}/{len(texts)} texts in {elapsed_ms:.0f}ms")
        return embeddings

    def embed_query(self, query: str) -> list[float]:
        """
        Generate embedding for a search query.

        Raises whatever the provider raises; the retriever owns the fallback.

        Args:
            query: Search query string

        Returns:
            Embedding vector
        """
        result = self._embed_batch([query], input_type=self._query_input_type)
        if not result:
            raise ServiceUnavailableError(f"{self._provider_name} returned no query embedding")
        return result[0]


class IsaacusEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Isaacus kanon-2-embedder.

    Uses task "retrieval/document" for chunks and "retrieval/query"
    for queries.
    """

    _provider_name = "Isaacus"
    _doc_input_type = TASK_DOCUMENT
    _query_input_type = TASK_QUERY

    def __init__(self, client: IsaacusClient, config: Optional[EmbeddingConfig] = None):
        self._isaacus = client
        super().__init__(config)

    def _init_client(self):
        self._client = self._isaacus

    def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        return self._client.embed(texts, task=input_type)


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 provides 1024-dimensional embeddings tuned for legal text,
    with different input types for documents vs queries.
    """

    _provider_name = "Voyage AI"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        if not self.config.api_key:
            raise ValueError("VOYAGE_API_KEY is required for the Voyage embedding service")

        try:
            import voyageai
            self._client = voyageai.Client(api_key=self.config.api_key)
            logger.info(f"Voyage AI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("voyageai package not installed. Run: pip install voyageai")
            raise

    def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embed(
            texts=texts,
            model=self.config.model,
            input_type=input_type,
        )
        return response.embeddings


class LocalEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using a local sentence-transformers model.

    Good for development or high-volume batch processing without API costs.
    """

    _provider_name = "Local"

    def _init_client(self):
        """Load the local model."""
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Run: pip install sentence-transformers"
            )
        self._client = SentenceTransformer(self.config.model)
        self.config.dimensions = self._client.get_sentence_embedding_dimension()
        logger.info(f"Local embedding model loaded: {self.config.model}")

    def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        embeddings = self._client.encode(texts, normalize_embeddings=True)
        return embeddings.tolist()


class OfflineEmbeddingService(BaseEmbeddingService):
    """
    Embedding service used when no provider is configured.

    Documents get no vectors (they stay reachable through keyword search
    and can be re-embedded later); query embedding raises so the retriever
    falls back to keyword search.
    """

    _provider_name = "Offline"

    @property
    def available(self) -> bool:
        return False

    def embed_documents(self, texts: list[str]) -> list[Optional[list[float]]]:
        if texts:
            logger.warning(f"No embedding provider configured; {len(texts)} chunks stored without vectors")
        return [None] * len(texts)

    def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        raise ServiceUnavailableError("No embedding provider configured")


def get_embedding_service(settings, isaacus_client: Optional[IsaacusClient] = None) -> BaseEmbeddingService:
    """
    Factory function to get the embedding service selected by settings.

    Args:
        settings: RAGSettings (providers already resolved)
        isaacus_client: Shared Isaacus client, created from settings if omitted

    Returns:
        Configured embedding service
    """
    provider = settings.embedding_provider
    batch_size = settings.embedding_batch_size

    if provider == "isaacus":
        client = isaacus_client or IsaacusClient.from_settings(settings)
        return IsaacusEmbeddingService(client, EmbeddingConfig(
            provider="isaacus",
            model="kanon-2-embedder",
            dimensions=EMBEDDING_DIMENSIONS,
            batch_size=batch_size,
        ))

    if provider == "voyage":
        return VoyageEmbeddingService(EmbeddingConfig(
            provider="voyage",
            model="voyage-law-2",
            dimensions=1024,
            batch_size=batch_size,
            api_key=settings.voyage_api_key,
        ))

    if provider == "local":
        return LocalEmbeddingService(EmbeddingConfig(
            provider="local",
            model=settings.extra.get("local_embedding_model", "BAAI/bge-m3"),
            batch_size=batch_size,
        ))

    return OfflineEmbeddingService(EmbeddingConfig(
        provider="offline",
        model="none",
        dimensions=settings.embedding_dimensions,
        batch_size=batch_size,
    ))


# CLI for testing
if __name__ == "__main__":
    import sys
    from .config import RAGSettings

    logging.basicConfig(level=logging.INFO)

    service = get_embedding_service(RAGSettings.from_env())
    print(f"Using embedding provider: {service._provider_name}")

    query = " ".join(sys.argv[1:]) or "What are the termination clauses in this contract?"
    print(f"Query: {query}")
    embedding = service.embed_query(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
