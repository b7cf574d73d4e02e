"""
Vector Store with PostgreSQL + pgvector

Stores document chunks with their embeddings and serves tenant-scoped
similarity and keyword search. Every read and write is filtered by user_id
(and matter_id when given); a call without a user_id raises before any
query is issued.

Backends:
- VectorStore          -- PostgreSQL with the pgvector extension
- InMemoryVectorStore  -- numpy cosine similarity, for development and tests
"""

import re
import json
import uuid
import logging
import threading
from typing import Optional, Sequence
from dataclasses import dataclass, field
from contextlib import contextmanager

import numpy as np

try:
    import psycopg2
    import psycopg2.extras
    import psycopg2.pool
except ImportError:
    psycopg2 = None  # Will be caught at connect() time

logger = logging.getLogger(__name__)


# Chunk ids are derived from (document_id, chunk_index) so re-ingesting a
# document overwrites its chunks instead of duplicating them
CHUNK_ID_NAMESPACE = uuid.UUID("6f1c2a4e-5b7d-4c3e-9a8f-0d2e4b6c8a10")

DOCUMENT_STATUS_PROCESSING = "processing"
DOCUMENT_STATUS_READY = "ready"
DOCUMENT_STATUS_FAILED = "failed"


class TenantScopeError(ValueError):
    """Raised when a datastore call is made without a tenant (user_id)."""


def _require_user(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise TenantScopeError("user_id is required for every datastore operation")
    return str(user_id)


def chunk_id_for(document_id: str, chunk_index: int) -> str:
    """Deterministic chunk id for a document position."""
    return str(uuid.uuid5(CHUNK_ID_NAMESPACE, f"{document_id}:{chunk_index}"))


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""
    connection_string: Optional[str] = None
    table_name: str = "document_chunks"
    documents_table: str = "documents"
    embedding_dimensions: int = 1792
    # Connection pooling settings
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    use_pooling: bool = True


@dataclass
class SearchResult:
    """A retrieved chunk with its similarity (and, after reranking, rerank score)."""
    id: str
    document_id: str
    document_name: str
    chunk_index: int
    content: str
    similarity: float
    metadata: dict = field(default_factory=dict)
    rerank_score: Optional[float] = None

    @property
    def relevance(self) -> float:
        """Rerank score when available, else vector similarity."""
        return self.rerank_score if self.rerank_score is not None else self.similarity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "similarity": self.similarity,
            "rerank_score": self.rerank_score,
            "metadata": self.metadata,
        }


def _chunk_metadata(chunk) -> dict:
    return {
        "start_char": chunk.start_char,
        "end_char": chunk.end_char,
        "section_header": chunk.section_header,
        "token_count": chunk.token_count,
    }


class VectorStore:
    """
    PostgreSQL vector store with pgvector.

    Features:
    - Cosine similarity search (1 - (embedding <=> query))
    - Full-text keyword search fallback (websearch_to_tsquery)
    - Mandatory tenant filtering by user_id, optional matter_id
    - Batch upsert with execute_values
    - Chunks without vectors (partial ingest) and later re-embedding
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        """
        Initialize vector store.

        Args:
            config: Configuration; connection_string is required
        """
        self.config = config or VectorStoreConfig()
        self._pool = None
        self._conn = None
        self._connection_string = self.config.connection_string or "postgresql://localhost:5432/counsel_rag"
        self._check_identifier(self.config.table_name)
        self._check_identifier(self.config.documents_table)

    @staticmethod
    def _check_identifier(name: str) -> None:
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
            raise ValueError(f"Invalid table name: {name!r}")

    def connect(self) -> None:
        """Establish database connection (with optional pooling)."""
        if psycopg2 is None:
            raise ImportError("psycopg2 not installed. Run: pip install psycopg2-binary")

        from psycopg2.extras import RealDictCursor

        try:
            if self.config.use_pooling:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                logger.info(
                    f"Connection pool initialized (min={self.config.pool_min_connections}, "
                    f"max={self.config.pool_max_connections})"
                )
            else:
                self._conn = psycopg2.connect(self._connection_string, cursor_factory=RealDictCursor)
                self._conn.autocommit = False
                logger.info("Connected to PostgreSQL with pgvector (single connection)")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _get_connection(self):
        if not self._pool and not self._conn:
            self.connect()
        if self._pool:
            return self._pool.getconn()
        if self._conn.closed:
            logger.warning("Connection closed, reconnecting...")
            self.connect()
        return self._conn

    def _release_connection(self, conn) -> None:
        if self._pool and conn:
            self._pool.putconn(conn)

    @contextmanager
    def get_connection(self):
        """
        Context manager for getting a database connection.

        Usage:
            with store.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        conn = self._get_connection()
        try:
            yield conn
        finally:
            self._release_connection(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label: str = "db_operation"):
        """Execute a DB operation with one retry on a stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        for attempt in range(2):
            conn = self._get_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.close()
                    self.connect()
                    continue
                raise
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def close(self) -> None:
        """Close database connection(s)."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
        if self._conn:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create extension, tables and indexes if they don't exist."""
        chunks = self.config.table_name
        docs = self.config.documents_table
        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS {docs} (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            matter_id TEXT,
            name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT '{DOCUMENT_STATUS_PROCESSING}',
            chunk_count INT DEFAULT 0,
            embedded_count INT DEFAULT 0,
            document_type TEXT,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS {chunks} (
            id UUID PRIMARY KEY,
            document_id TEXT NOT NULL REFERENCES {docs}(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL,
            matter_id TEXT,
            chunk_index INT NOT NULL,
            content TEXT NOT NULL,
            embedding VECTOR({self.config.embedding_dimensions}),
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        ALTER TABLE {docs} ADD COLUMN IF NOT EXISTS document_type TEXT;

        CREATE INDEX IF NOT EXISTS idx_{chunks}_user_matter
            ON {chunks}(user_id, matter_id);
        CREATE INDEX IF NOT EXISTS idx_{chunks}_document
            ON {chunks}(document_id, chunk_index);
        CREATE INDEX IF NOT EXISTS idx_{chunks}_fts
            ON {chunks} USING GIN (to_tsvector('english', content));
        CREATE INDEX IF NOT EXISTS idx_{chunks}_embedding_hnsw
            ON {chunks} USING hnsw (embedding vector_cosine_ops);
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
            logger.info("Schema initialized successfully")

        self._execute_with_retry(_op, "initialize_schema")

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert_document(
        self,
        document_id: str,
        document_name: str,
        user_id: str,
        matter_id: Optional[str] = None,
        status: str = DOCUMENT_STATUS_PROCESSING,
        chunk_count: int = 0,
        embedded_count: int = 0,
        document_type: Optional[str] = None,
    ) -> None:
        """Create or update the document record."""
        user_id = _require_user(user_id)
        sql = f"""
        INSERT INTO {self.config.documents_table}
            (id, user_id, matter_id, name, status, chunk_count, embedded_count, document_type)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            status = EXCLUDED.status,
            chunk_count = EXCLUDED.chunk_count,
            embedded_count = EXCLUDED.embedded_count,
            document_type = COALESCE(EXCLUDED.document_type, {self.config.documents_table}.document_type),
            updated_at = NOW()
        WHERE {self.config.documents_table}.user_id = EXCLUDED.user_id
        RETURNING id
        """
        params = (
            document_id, user_id, matter_id, document_name, status, chunk_count, embedded_count, document_type,
        )

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            conn.commit()
            return row

        # No row back means the conflict guard skipped an id owned by another tenant
        if self._execute_with_retry(_op, "upsert_document") is None:
            raise TenantScopeError(f"Document {document_id} belongs to another tenant")

    def set_document_status(
        self,
        document_id: str,
        user_id: str,
        status: str,
        chunk_count: Optional[int] = None,
        embedded_count: Optional[int] = None,
    ) -> None:
        """Update a document's status and coverage counters."""
        user_id = _require_user(user_id)
        sql = f"""
        UPDATE {self.config.documents_table}
        SET status = %s,
            chunk_count = COALESCE(%s, chunk_count),
            embedded_count = COALESCE(%s, embedded_count),
            updated_at = NOW()
        WHERE id = %s AND user_id = %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (status, chunk_count, embedded_count, document_id, user_id))
            conn.commit()

        self._execute_with_retry(_op, "set_document_status")

    def get_document(self, document_id: str, user_id: str) -> Optional[dict]:
        """Document record, or None if it doesn't exist for this tenant."""
        user_id = _require_user(user_id)
        sql = f"""
        SELECT id, user_id, matter_id, name, status, chunk_count, embedded_count, document_type
        FROM {self.config.documents_table}
        WHERE id = %s AND user_id = %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, user_id))
                row = cur.fetchone()
            return dict(row) if row else None

        return self._execute_with_retry(_op, "get_document")

    def upsert_chunks(
        self,
        document_id: str,
        user_id: str,
        chunks: Sequence,
        embeddings: Sequence[Optional[list[float]]],
        matter_id: Optional[str] = None,
    ) -> list[str]:
        """
        Batch upsert chunks with (possibly missing) embeddings.

        Args:
            document_id: Owning document
            user_id: Tenant
            chunks: Chunk objects from the chunker
            embeddings: One vector or None per chunk
            matter_id: Optional matter scope

        Returns:
            Chunk ids in chunk order
        """
        user_id = _require_user(user_id)
        if len(chunks) != len(embeddings):
            raise ValueError(f"Mismatch: {len(chunks)} chunks, {len(embeddings)} embeddings")
        if not chunks:
            return []

        from psycopg2.extras import execute_values

        sql = f"""
        INSERT INTO {self.config.table_name}
            (id, document_id, user_id, matter_id, chunk_index, content, embedding, metadata)
        VALUES %s
        ON CONFLICT (id) DO UPDATE SET
            content = EXCLUDED.content,
            embedding = EXCLUDED.embedding,
            metadata = EXCLUDED.metadata
        WHERE {self.config.table_name}.user_id = EXCLUDED.user_id
        """

        ids = []
        values = []
        for chunk, embedding in zip(chunks, embeddings):
            chunk_id = chunk_id_for(document_id, chunk.index)
            ids.append(chunk_id)
            values.append((
                chunk_id,
                document_id,
                user_id,
                matter_id,
                chunk.index,
                chunk.content,
                embedding,
                json.dumps(_chunk_metadata(chunk)),
            ))

        def _op(conn):
            with conn.cursor() as cur:
                execute_values(
                    cur,
                    sql,
                    values,
                    template="(%s::uuid, %s, %s, %s, %s, %s, %s::vector, %s)",
                    page_size=500,
                )
            conn.commit()
            logger.info(f"Batch upserted {len(values)} chunks for document {document_id}")

        self._execute_with_retry(_op, "upsert_chunks")
        return ids

    def delete_document_chunks(self, document_id: str, user_id: str) -> int:
        """Delete every chunk of a document (tenant-scoped). Returns rows deleted."""
        user_id = _require_user(user_id)
        sql = f"DELETE FROM {self.config.table_name} WHERE document_id = %s AND user_id = %s"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, user_id))
                deleted = cur.rowcount
            conn.commit()
            return deleted

        return self._execute_with_retry(_op, "delete_document_chunks")

    def chunks_missing_embeddings(self, document_id: str, user_id: str) -> list[dict]:
        """Chunks of a document stored without a vector, as {"id", "content"} dicts."""
        user_id = _require_user(user_id)
        sql = f"""
        SELECT id, content FROM {self.config.table_name}
        WHERE document_id = %s AND user_id = %s AND embedding IS NULL
        ORDER BY chunk_index
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, user_id))
                rows = cur.fetchall()
            return [{"id": str(row["id"]), "content": row["content"]} for row in rows]

        return self._execute_with_retry(_op, "chunks_missing_embeddings")

    def update_embeddings(self, vectors: dict[str, list[float]], user_id: str) -> int:
        """Set vectors for existing chunks (only where still missing). Returns rows updated."""
        user_id = _require_user(user_id)
        if not vectors:
            return 0
        sql = f"""
        UPDATE {self.config.table_name}
        SET embedding = %s::vector
        WHERE id = %s::uuid AND user_id = %s AND embedding IS NULL
        """

        def _op(conn):
            updated = 0
            with conn.cursor() as cur:
                for chunk_id, vector in vectors.items():
                    cur.execute(sql, (vector, chunk_id, user_id))
                    updated += cur.rowcount
            conn.commit()
            return updated

        return self._execute_with_retry(_op, "update_embeddings")

    # =========================================================================
    # Reads
    # =========================================================================

    def _row_to_result(self, row, similarity: float) -> SearchResult:
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return SearchResult(
            id=str(row["id"]),
            document_id=str(row["document_id"]),
            document_name=row["document_name"],
            chunk_index=int(row["chunk_index"]),
            content=row["content"],
            similarity=similarity,
            metadata=metadata,
        )

    def search(
        self,
        query_embedding: list[float],
        user_id: str,
        matter_id: Optional[str] = None,
        threshold: float = 0.5,
        limit: int = 20,
    ) -> list[SearchResult]:
        """
        Semantic search using cosine similarity.

        Args:
            query_embedding: Query embedding vector
            user_id: Tenant (required)
            matter_id: Optional matter scope
            threshold: Minimum similarity (0-1)
            limit: Maximum results

        Returns:
            SearchResult list ordered by descending similarity
        """
        user_id = _require_user(user_id)

        filters = ["c.user_id = %s", "c.embedding IS NOT NULL"]
        filter_params: list = [user_id]
        if matter_id:
            filters.append("c.matter_id = %s")
            filter_params.append(matter_id)

        sql = f"""
        SELECT
            c.id, c.document_id, d.name AS document_name, c.chunk_index,
            c.content, c.metadata,
            1 - (c.embedding <=> %s::vector) AS similarity
        FROM {self.config.table_name} c
        JOIN {self.config.documents_table} d ON d.id = c.document_id
        WHERE {' AND '.join(filters)}
        ORDER BY c.embedding <=> %s::vector
        LIMIT %s
        """
        params = [query_embedding] + filter_params + [query_embedding, limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            results = []
            for row in rows:
                similarity = min(1.0, max(0.0, float(row["similarity"])))
                if similarity >= threshold:
                    results.append(self._row_to_result(row, similarity))
            return results

        return self._execute_with_retry(_op, "search")

    def keyword_search(
        self,
        query: str,
        user_id: str,
        matter_id: Optional[str] = None,
        limit: int = 20,
    ) -> list[SearchResult]:
        """
        Full-text keyword search, used when the query cannot be embedded.

        Results carry similarity 0.0; the ts_rank score is kept in metadata.
        """
        user_id = _require_user(user_id)

        where_extra = ""
        filter_params: list = [user_id]
        if matter_id:
            where_extra = " AND c.matter_id = %s"
            filter_params.append(matter_id)

        sql = f"""
        SELECT
            c.id, c.document_id, d.name AS document_name, c.chunk_index,
            c.content, c.metadata,
            ts_rank(to_tsvector('english', c.content), websearch_to_tsquery('english', %s)) AS rank
        FROM {self.config.table_name} c
        JOIN {self.config.documents_table} d ON d.id = c.document_id
        WHERE to_tsvector('english', c.content) @@ websearch_to_tsquery('english', %s)
          AND c.user_id = %s{where_extra}
        ORDER BY rank DESC, c.chunk_index
        LIMIT %s
        """
        params = [query, query] + filter_params + [limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            results = []
            for row in rows:
                result = self._row_to_result(row, 0.0)
                result.metadata["keyword_rank"] = float(row["rank"])
                results.append(result)
            return results

        return self._execute_with_retry(_op, "keyword_search")

    def get_document_chunks(self, document_id: str, user_id: str) -> list[SearchResult]:
        """All chunks of a document in order (tenant-scoped)."""
        user_id = _require_user(user_id)
        sql = f"""
        SELECT c.id, c.document_id, d.name AS document_name, c.chunk_index, c.content, c.metadata
        FROM {self.config.table_name} c
        JOIN {self.config.documents_table} d ON d.id = c.document_id
        WHERE c.document_id = %s AND c.user_id = %s
        ORDER BY c.chunk_index
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, user_id))
                rows = cur.fetchall()
            return [self._row_to_result(row, 0.0) for row in rows]

        return self._execute_with_retry(_op, "get_document_chunks")

    def has_documents(self, user_id: str, matter_id: Optional[str] = None) -> bool:
        """Whether the tenant (optionally a matter) has any ready documents."""
        user_id = _require_user(user_id)
        sql = f"SELECT 1 FROM {self.config.documents_table} WHERE user_id = %s AND status = %s"
        params: list = [user_id, DOCUMENT_STATUS_READY]
        if matter_id:
            sql += " AND matter_id = %s"
            params.append(matter_id)
        sql += " LIMIT 1"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone() is not None

        return self._execute_with_retry(_op, "has_documents")


# =============================================================================
# In-memory backend
# =============================================================================

_WORD_RE = re.compile(r"[a-z0-9]+")


def _terms(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 2}


class InMemoryVectorStore:
    """
    Vector store kept in process memory.

    Same interface and tenant semantics as VectorStore; similarity is
    numpy cosine and keyword search is term overlap.
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        self.config = config or VectorStoreConfig()
        self._documents: dict[str, dict] = {}
        self._chunks: dict[str, dict] = {}
        self._lock = threading.Lock()

    def connect(self) -> None:
        logger.info("Using in-memory vector store")

    def close(self) -> None:
        pass

    def initialize_schema(self) -> None:
        pass

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def upsert_document(
        self,
        document_id: str,
        document_name: str,
        user_id: str,
        matter_id: Optional[str] = None,
        status: str = DOCUMENT_STATUS_PROCESSING,
        chunk_count: int = 0,
        embedded_count: int = 0,
        document_type: Optional[str] = None,
    ) -> None:
        user_id = _require_user(user_id)
        with self._lock:
            existing = self._documents.get(document_id)
            if existing and existing["user_id"] != user_id:
                raise TenantScopeError(f"Document {document_id} belongs to another tenant")
            self._documents[document_id] = {
                "id": document_id,
                "user_id": user_id,
                "matter_id": matter_id,
                "name": document_name,
                "status": status,
                "chunk_count": chunk_count,
                "embedded_count": embedded_count,
                "document_type": document_type or (existing or {}).get("document_type"),
            }

    def set_document_status(
        self,
        document_id: str,
        user_id: str,
        status: str,
        chunk_count: Optional[int] = None,
        embedded_count: Optional[int] = None,
    ) -> None:
        user_id = _require_user(user_id)
        with self._lock:
            doc = self._documents.get(document_id)
            if not doc or doc["user_id"] != user_id:
                return
            doc["status"] = status
            if chunk_count is not None:
                doc["chunk_count"] = chunk_count
            if embedded_count is not None:
                doc["embedded_count"] = embedded_count

    def get_document(self, document_id: str, user_id: str) -> Optional[dict]:
        user_id = _require_user(user_id)
        doc = self._documents.get(document_id)
        if doc and doc["user_id"] == user_id:
            return dict(doc)
        return None

    def upsert_chunks(
        self,
        document_id: str,
        user_id: str,
        chunks: Sequence,
        embeddings: Sequence[Optional[list[float]]],
        matter_id: Optional[str] = None,
    ) -> list[str]:
        user_id = _require_user(user_id)
        if len(chunks) != len(embeddings):
            raise ValueError(f"Mismatch: {len(chunks)} chunks, {len(embeddings)} embeddings")

        ids = []
        with self._lock:
            for chunk, embedding in zip(chunks, embeddings):
                chunk_id = chunk_id_for(document_id, chunk.index)
                ids.append(chunk_id)
                self._chunks[chunk_id] = {
                    "id": chunk_id,
                    "document_id": document_id,
                    "user_id": user_id,
                    "matter_id": matter_id,
                    "chunk_index": chunk.index,
                    "content": chunk.content,
                    "embedding": np.asarray(embedding, dtype=float) if embedding is not None else None,
                    "metadata": _chunk_metadata(chunk),
                }
        return ids

    def delete_document_chunks(self, document_id: str, user_id: str) -> int:
        user_id = _require_user(user_id)
        with self._lock:
            doomed = [
                cid for cid, row in self._chunks.items()
                if row["document_id"] == document_id and row["user_id"] == user_id
            ]
            for cid in doomed:
                del self._chunks[cid]
        return len(doomed)

    def chunks_missing_embeddings(self, document_id: str, user_id: str) -> list[dict]:
        user_id = _require_user(user_id)
        rows = [
            row for row in self._chunks.values()
            if row["document_id"] == document_id and row["user_id"] == user_id
            and row["embedding"] is None
        ]
        rows.sort(key=lambda r: r["chunk_index"])
        return [{"id": row["id"], "content": row["content"]} for row in rows]

    def update_embeddings(self, vectors: dict[str, list[float]], user_id: str) -> int:
        user_id = _require_user(user_id)
        updated = 0
        with self._lock:
            for chunk_id, vector in vectors.items():
                row = self._chunks.get(chunk_id)
                if row and row["user_id"] == user_id and row["embedding"] is None:
                    row["embedding"] = np.asarray(vector, dtype=float)
                    updated += 1
        return updated

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _scoped_rows(self, user_id: str, matter_id: Optional[str]) -> list[dict]:
        with self._lock:
            rows = list(self._chunks.values())
        return [
            row for row in rows
            if row["user_id"] == user_id and (not matter_id or row["matter_id"] == matter_id)
        ]

    def _to_result(self, row: dict, similarity: float) -> SearchResult:
        doc = self._documents.get(row["document_id"], {})
        return SearchResult(
            id=row["id"],
            document_id=row["document_id"],
            document_name=doc.get("name", ""),
            chunk_index=row["chunk_index"],
            content=row["content"],
            similarity=similarity,
            metadata=dict(row["metadata"]),
        )

    @staticmethod
    def _cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
        norm = np.linalg.norm(a) * np.linalg.norm(b)
        if norm == 0:
            return 0.0
        return float(np.dot(a, b) / norm)

    def search(
        self,
        query_embedding: list[float],
        user_id: str,
        matter_id: Optional[str] = None,
        threshold: float = 0.5,
        limit: int = 20,
    ) -> list[SearchResult]:
        user_id = _require_user(user_id)
        query = np.asarray(query_embedding, dtype=float)

        scored = []
        for row in self._scoped_rows(user_id, matter_id):
            if row["embedding"] is None:
                continue
            similarity = min(1.0, max(0.0, self._cosine_similarity(query, row["embedding"])))
            if similarity >= threshold:
                scored.append((similarity, row))

        scored.sort(key=lambda item: (-item[0], item[1]["document_id"], item[1]["chunk_index"]))
        return [self._to_result(row, sim) for sim, row in scored[:limit]]

    def keyword_search(
        self,
        query: str,
        user_id: str,
        matter_id: Optional[str] = None,
        limit: int = 20,
    ) -> list[SearchResult]:
        user_id = _require_user(user_id)
        query_terms = _terms(query)
        if not query_terms:
            return []

        scored = []
        for row in self._scoped_rows(user_id, matter_id):
            overlap = len(query_terms & _terms(row["content"]))
            if overlap:
                scored.append((overlap / len(query_terms), row))

        scored.sort(key=lambda item: (-item[0], item[1]["document_id"], item[1]["chunk_index"]))
        results = []
        for rank, row in scored[:limit]:
            result = self._to_result(row, 0.0)
            result.metadata["keyword_rank"] = rank
            results.append(result)
        return results

    def get_document_chunks(self, document_id: str, user_id: str) -> list[SearchResult]:
        user_id = _require_user(user_id)
        rows = [
            row for row in self._scoped_rows(user_id, None)
            if row["document_id"] == document_id
        ]
        rows.sort(key=lambda r: r["chunk_index"])
        return [self._to_result(row, 0.0) for row in rows]

    def has_documents(self, user_id: str, matter_id: Optional[str] = None) -> bool:
        user_id = _require_user(user_id)
        return any(
            doc["user_id"] == user_id
            and doc["status"] == DOCUMENT_STATUS_READY
            and (not matter_id or doc["matter_id"] == matter_id)
            for doc in self._documents.values()
        )


def get_vector_store(settings):
    """Factory function returning the datastore selected by settings."""
    if settings.vector_store == "postgres":
        return VectorStore(VectorStoreConfig(
            connection_string=settings.database_url,
            embedding_dimensions=settings.embedding_dimensions,
        ))
    return InMemoryVectorStore(VectorStoreConfig(embedding_dimensions=settings.embedding_dimensions))
