"""
Runtime Configuration for Counsel RAG

A single settings object built once at startup and passed to every service
constructor. Provider selection happens here: a provider whose credentials
are missing resolves to its offline implementation, so callers never check
whether a service is configured.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


# Valid provider names per capability
EMBEDDING_PROVIDERS = frozenset({"isaacus", "voyage", "local", "offline"})
RERANK_PROVIDERS = frozenset({"isaacus", "cohere", "offline"})
READER_PROVIDERS = frozenset({"isaacus", "local", "offline"})
CLASSIFIER_PROVIDERS = frozenset({"isaacus", "local", "offline"})
VECTOR_STORES = frozenset({"postgres", "memory"})

# Providers that need an API key, and which key
_PROVIDER_KEYS = {
    "isaacus": "isaacus_api_key",
    "voyage": "voyage_api_key",
    "cohere": "cohere_api_key",
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid float for {name}: {raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RAGSettings:
    """Process-wide configuration for the chunking and retrieval core."""
    # Credentials
    isaacus_api_key: Optional[str] = None
    isaacus_base_url: str = "https://api.isaacus.com/v1"
    voyage_api_key: Optional[str] = None
    cohere_api_key: Optional[str] = None

    # Provider selection
    embedding_provider: str = "isaacus"
    rerank_provider: str = "isaacus"
    reader_provider: str = "isaacus"
    classifier_provider: str = "isaacus"

    # Datastore
    vector_store: str = "postgres"
    database_url: Optional[str] = None
    embedding_dimensions: int = 1792

    # Chunking defaults
    chunk_size: int = 1500
    chunk_overlap: int = 200
    min_chunk_size: int = 100

    # Retrieval defaults
    similarity_threshold: float = 0.5
    rerank_top_k: int = 5
    overfetch_factor: int = 4
    embedding_batch_size: int = 10

    # Timeouts and fan-out
    service_timeout: float = 30.0
    task_timeout: float = 45.0
    max_workers: int = 5

    # Policy applied when a clause enrichment call fails
    default_risk_level: str = "medium"
    default_risk_confidence: float = 0.5
    default_mutual: bool = True

    extra: dict = field(default_factory=dict)

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "RAGSettings":
        """
        Build settings from environment variables (and .env when present).

        Args:
            load_env_file: Whether to call load_dotenv() first

        Returns:
            RAGSettings with unavailable providers resolved to "offline"
        """
        if load_env_file:
            from dotenv import load_dotenv
            load_dotenv()

        settings = cls(
            isaacus_api_key=os.getenv("ISAACUS_API_KEY") or None,
            isaacus_base_url=os.getenv("ISAACUS_BASE_URL", cls.isaacus_base_url),
            voyage_api_key=os.getenv("VOYAGE_API_KEY") or None,
            cohere_api_key=os.getenv("COHERE_API_KEY") or None,
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", cls.embedding_provider).lower(),
            rerank_provider=os.getenv("RERANK_PROVIDER", cls.rerank_provider).lower(),
            reader_provider=os.getenv("READER_PROVIDER", cls.reader_provider).lower(),
            classifier_provider=os.getenv("CLASSIFIER_PROVIDER", cls.classifier_provider).lower(),
            vector_store=os.getenv("VECTOR_STORE", cls.vector_store).lower(),
            database_url=os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL") or None,
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", cls.embedding_dimensions),
            chunk_size=_env_int("CHUNK_SIZE", cls.chunk_size),
            chunk_overlap=_env_int("CHUNK_OVERLAP", cls.chunk_overlap),
            min_chunk_size=_env_int("MIN_CHUNK_SIZE", cls.min_chunk_size),
            similarity_threshold=_env_float("SIMILARITY_THRESHOLD", cls.similarity_threshold),
            rerank_top_k=_env_int("RERANK_TOP_K", cls.rerank_top_k),
            overfetch_factor=_env_int("OVERFETCH_FACTOR", cls.overfetch_factor),
            embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", cls.embedding_batch_size),
            service_timeout=_env_float("SERVICE_TIMEOUT_SECONDS", cls.service_timeout),
            task_timeout=_env_float("TASK_TIMEOUT_SECONDS", cls.task_timeout),
            max_workers=_env_int("FANOUT_MAX_WORKERS", cls.max_workers),
            default_mutual=_env_bool("DEFAULT_MUTUAL", cls.default_mutual),
        )
        settings.resolve_providers()
        return settings

    def resolve_providers(self) -> None:
        """Downgrade providers that are unknown or lack credentials to "offline"."""
        self.embedding_provider = self._resolve(
            "embedding_provider", self.embedding_provider, EMBEDDING_PROVIDERS
        )
        self.rerank_provider = self._resolve(
            "rerank_provider", self.rerank_provider, RERANK_PROVIDERS
        )
        self.reader_provider = self._resolve(
            "reader_provider", self.reader_provider, READER_PROVIDERS
        )
        self.classifier_provider = self._resolve(
            "classifier_provider", self.classifier_provider, CLASSIFIER_PROVIDERS
        )

        if self.vector_store not in VECTOR_STORES:
            logger.warning(f"Unknown vector store '{self.vector_store}', using in-memory store")
            self.vector_store = "memory"
        elif self.vector_store == "postgres" and not self.database_url:
            logger.warning("POSTGRES_URL not set. Using in-memory vector store.")
            self.vector_store = "memory"

    def _resolve(self, label: str, provider: str, valid: frozenset) -> str:
        if provider not in valid:
            logger.warning(f"Unknown {label} '{provider}', using offline implementation")
            return "offline"
        key_attr = _PROVIDER_KEYS.get(provider)
        if key_attr and not getattr(self, key_attr):
            logger.warning(
                f"{key_attr.upper()} not found. {label} '{provider}' unavailable, "
                f"using offline implementation."
            )
            return "offline"
        return provider

    def to_dict(self) -> dict:
        """Settings without secrets, for logging and the health endpoint."""
        return {
            "embedding_provider": self.embedding_provider,
            "rerank_provider": self.rerank_provider,
            "reader_provider": self.reader_provider,
            "classifier_provider": self.classifier_provider,
            "vector_store": self.vector_store,
            "embedding_dimensions": self.embedding_dimensions,
            "chunk_size": self.chunk_size,
            "chunk_overlap": self.chunk_overlap,
            "similarity_threshold": self.similarity_threshold,
            "rerank_top_k": self.rerank_top_k,
            "max_workers": self.max_workers,
        }


class ServiceUnavailableError(RuntimeError):
    """Raised by offline service implementations that cannot produce a result."""
