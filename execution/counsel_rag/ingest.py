"""
Document ingestion: clean, chunk, embed, store.

A document whose embedding batches partly fail is still marked ready;
the chunks without vectors stay reachable through keyword search until
reembed_missing() fills them in.
"""

import time
import logging
from typing import Optional
from dataclasses import dataclass

from .chunker import LegalChunker, clean_text
from .classifier import BaseClassifier
from .embeddings import BaseEmbeddingService
from .vector_store import (
    DOCUMENT_STATUS_FAILED,
    DOCUMENT_STATUS_PROCESSING,
    DOCUMENT_STATUS_READY,
    TenantScopeError,
)

logger = logging.getLogger(__name__)


class DocumentValidationError(ValueError):
    """Document text cannot be ingested (empty, or yields no chunks)."""


@dataclass
class IngestResult:
    document_id: str
    chunks: int
    embedded_chunks: int
    status: str
    chunk_ids: list[str]
    elapsed_ms: float = 0.0
    document_type: Optional[str] = None

    @property
    def fully_embedded(self) -> bool:
        return self.embedded_chunks == self.chunks

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "chunks": self.chunks,
            "embedded_chunks": self.embedded_chunks,
            "status": self.status,
            "document_type": self.document_type,
        }


class DocumentIngestor:
    """Chunk, embed and persist documents for one datastore."""

    def __init__(
        self,
        chunker: LegalChunker,
        embedding_service: BaseEmbeddingService,
        vector_store,
        classifier: Optional[BaseClassifier] = None,
    ):
        self.chunker = chunker
        self.embeddings = embedding_service
        self.store = vector_store
        self.classifier = classifier

    def ingest(
        self,
        document_id: str,
        document_name: str,
        text: str,
        user_id: str,
        matter_id: Optional[str] = None,
        section_aware: bool = True,
    ) -> IngestResult:
        """
        Ingest one document.

        Args:
            document_id: Stable document id (re-ingest replaces its chunks)
            document_name: Display name used in citations
            text: Extracted document text
            user_id: Tenant
            matter_id: Optional matter scope
            section_aware: Split on legal section headers first

        Returns:
            IngestResult

        Raises:
            TenantScopeError: user_id missing
            DocumentValidationError: text empty or produces no chunks
        """
        if not user_id:
            raise TenantScopeError("user_id is required for ingestion")
        if not document_id:
            raise DocumentValidationError("document_id is required")
        if not text or not clean_text(text):
            raise DocumentValidationError(f"Document {document_id} has no text to ingest")

        t0 = time.time()
        chunks = self.chunker.chunk_legal(text) if section_aware else self.chunker.chunk(text)
        if not chunks:
            raise DocumentValidationError(f"Document {document_id} produced no chunks")
        logger.info(f"Chunked {document_name}: {len(chunks)} chunks")

        document_type = self._classify_document(document_id, text)

        self.store.upsert_document(
            document_id=document_id,
            document_name=document_name,
            user_id=user_id,
            matter_id=matter_id,
            status=DOCUMENT_STATUS_PROCESSING,
            chunk_count=len(chunks),
            document_type=document_type,
        )

        try:
            vectors = self.embeddings.embed_documents([c.content for c in chunks])
            # Replace all chunks of any previous version
            self.store.delete_document_chunks(document_id, user_id)
            chunk_ids = self.store.upsert_chunks(
                document_id=document_id,
                user_id=user_id,
                chunks=chunks,
                embeddings=vectors,
                matter_id=matter_id,
            )
        except Exception as e:
            logger.error(f"Ingest failed for {document_id}: {e}")
            self.store.set_document_status(document_id, user_id, DOCUMENT_STATUS_FAILED)
            raise

        embedded = sum(1 for v in vectors if v is not None)
        self.store.set_document_status(
            document_id,
            user_id,
            DOCUMENT_STATUS_READY,
            chunk_count=len(chunks),
            embedded_count=embedded,
        )

        elapsed_ms = (time.time() - t0) * 1000
        if embedded < len(chunks):
            logger.warning(
                f"Document {document_id} ready with partial coverage: "
                f"{embedded}/{len(chunks)} chunks embedded"
            )
        logger.info(f"Ingested {document_name} in {elapsed_ms:.0f}ms")

        return IngestResult(
            document_id=document_id,
            chunks=len(chunks),
            embedded_chunks=embedded,
            status=DOCUMENT_STATUS_READY,
            chunk_ids=chunk_ids,
            elapsed_ms=elapsed_ms,
            document_type=document_type,
        )

    def _classify_document(self, document_id: str, text: str) -> Optional[str]:
        """Document type from the classifier, or None when none is configured or it fails."""
        if self.classifier is None or not self.classifier.available:
            return None
        try:
            result = self.classifier.classify_document_type(clean_text(text))
        except Exception as e:
            logger.warning(f"Document classification failed for {document_id}: {e}")
            return None
        logger.info(f"Classified {document_id} as {result.type} ({result.confidence:.2f})")
        return result.type

    def reembed_missing(self, document_id: str, user_id: str) -> int:
        """
        Embed chunks that were stored without a vector.

        Safe to run repeatedly: chunks that already have a vector are never
        touched.

        Returns:
            Number of chunks that received a vector
        """
        if not user_id:
            raise TenantScopeError("user_id is required for re-embedding")

        missing = self.store.chunks_missing_embeddings(document_id, user_id)
        if not missing:
            logger.info(f"Document {document_id}: no chunks missing embeddings")
            return 0

        vectors = self.embeddings.embed_documents([row["content"] for row in missing])
        updates = {
            row["id"]: vector
            for row, vector in zip(missing, vectors)
            if vector is not None
        }
        updated = self.store.update_embeddings(updates, user_id)

        remaining = len(missing) - updated
        logger.info(f"Document {document_id}: re-embedded {updated} chunks, {remaining} still missing")

        doc = self.store.get_document(document_id, user_id)
        if doc is not None:
            self.store.set_document_status(
                document_id,
                user_id,
                doc["status"],
                embedded_count=(doc.get("embedded_count") or 0) + updated,
            )
        return updated
