"""
Isaacus API Client

Thin HTTP client for the Kanon-2 legal models:
- kanon-2-embedder (embeddings, 1792 dimensions)
- kanon-2-reranker (cross-encoder reranking)
- kanon-2-reader (extractive question answering)
- kanon-2-classifier / kanon-universal-classifier (zero-shot classification)

Uses a requests.Session with urllib3 retry backoff on 5xx responses and a
timeout on every call.
"""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


ISAACUS_API_URL = "https://api.isaacus.com/v1"

EMBEDDING_MODEL = "kanon-2-embedder"
RERANK_MODEL = "kanon-2-reranker"
READER_MODEL = "kanon-2-reader"
CLASSIFIER_MODEL = "kanon-2-classifier"
UNIVERSAL_CLASSIFIER_MODEL = "kanon-universal-classifier"

EMBEDDING_DIMENSIONS = 1792

# Embedding task types
TASK_DOCUMENT = "retrieval/document"
TASK_QUERY = "retrieval/query"


class IsaacusError(Exception):
    """Raised when the Isaacus API returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _make_session(api_key: str) -> requests.Session:
    """Create a session with auth headers and retry backoff."""
    s = requests.Session()
    s.headers.update({
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    })
    retries = Retry(
        total=3,
        backoff_factor=2,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=frozenset({"POST"}),
    )
    s.mount("https://", HTTPAdapter(max_retries=retries))
    return s


class IsaacusClient:
    """
    Client for the Isaacus REST API.

    One instance is shared by the embedding, reranking, reader and
    classifier services built from the same settings.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = ISAACUS_API_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client.

        Args:
            api_key: ISAACUS_API_KEY value
            base_url: API base URL (override for testing)
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests inject a mock)
        """
        if not api_key:
            raise ValueError("Isaacus API key is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or _make_session(api_key)

    @classmethod
    def from_settings(cls, settings) -> "IsaacusClient":
        return cls(
            api_key=settings.isaacus_api_key,
            base_url=settings.isaacus_base_url,
            timeout=settings.service_timeout,
        )

    def _post(self, endpoint: str, body: dict) -> dict:
        """POST JSON to an endpoint and return the decoded response."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise IsaacusError(f"Isaacus request to {endpoint} failed: {e}") from e

        if not response.ok:
            raise IsaacusError(
                f"Isaacus API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise IsaacusError(f"Invalid JSON from {endpoint}", response.status_code) from e

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    def embed(self, texts: list[str], task: str = TASK_DOCUMENT) -> list[list[float]]:
        """
        Embed texts with kanon-2-embedder.

        Args:
            texts: Texts to embed (caller handles batching)
            task: "retrieval/document" or "retrieval/query"

        Returns:
            One vector per input text
        """
        if not texts:
            return []

        data = self._post("/embeddings", {
            "model": EMBEDDING_MODEL,
            "texts": texts,
            "task": task,
        })

        embeddings = []
        for item in data.get("embeddings", []):
            # Newer responses wrap each vector in an object
            embeddings.append(item["embedding"] if isinstance(item, dict) else item)

        if len(embeddings) != len(texts):
            raise IsaacusError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}"
            )
        return embeddings

    def rerank(self, query: str, documents: list[str], top_k: Optional[int] = None) -> list[dict]:
        """
        Rerank documents against a query.

        Returns:
            List of {"index": int, "score": float}, most relevant first
        """
        if not documents:
            return []

        data = self._post("/rerank", {
            "model": RERANK_MODEL,
            "query": query,
            "documents": documents,
            "top_k": top_k or len(documents),
        })
        return data.get("results", [])

    def extract(self, question: str, context: str) -> list[dict]:
        """
        Extractive QA over a single context.

        Returns:
            List of {"answer": str, "score": float, "start": int, "end": int}
        """
        data = self._post("/extract", {
            "model": READER_MODEL,
            "question": question,
            "context": context,
        })
        return data.get("answers", [])

    def classify(self, text: str, labels: list[str]) -> list[dict]:
        """
        Zero-shot classification of one text against candidate labels.

        Returns:
            List of {"label": str, "score": float}
        """
        data = self._post("/classify", {
            "model": CLASSIFIER_MODEL,
            "text": text,
            "labels": labels,
        })
        return data.get("labels", [])

    def classify_universal(self, query: str, texts: list[str]) -> list[dict]:
        """
        Score how well each text satisfies a natural-language statement.

        Returns:
            List of {"index": int, "score": float}
        """
        if not texts:
            return []

        data = self._post("/classify/universal", {
            "model": UNIVERSAL_CLASSIFIER_MODEL,
            "query": query,
            "texts": texts,
        })
        return data.get("results", [])

    def close(self) -> None:
        self._session.close()
