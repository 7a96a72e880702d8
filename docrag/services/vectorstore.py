# =============================================================================
# Vector Store — Pluggable Similarity Search Backend
# =============================================================================
#
# Callers deal in text; each backend embeds records on add and the query on
# search through docrag.services.embedder.
#
# Every search takes a SearchFilter with a tenant id AND a non-empty set of
# document ids. There is no unfiltered search.
#
# INTERFACE (sync writes for Celery and deletes, async reads for FastAPI):
#   VectorStore (Protocol)
#   ├── PgVectorStore     — chunk_vectors table, HNSW cosine index
#   │   ├── add()          — sync session
#   │   ├── search()       — async session
#   │   └── delete_by_ids()— sync session
#   └── ChromaVectorStore — ChromaDB collection (in-process or HTTP)
#       ├── add()
#       ├── search()       — client call wrapped in asyncio.to_thread()
#       └── delete_by_ids()
#
# DESIGN DECISION: SearchFilter is a required argument, not an optional
# where-clause. Both fields are validated on construction, so no code path
# can issue an unscoped similarity search.
#
# DESIGN DECISION: Mixed sync/async interface. Writes happen in Celery
# workers and delete handlers (sync); searches happen in chat requests
# (async).
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

import chromadb
from sqlalchemy import delete, select

from docrag.config import settings
from docrag.db.engine import async_session_factory, get_sync_session
from docrag.db.models import ChunkVector
from docrag.services.embedder import embed_batch, embed_query

logger = logging.getLogger(__name__)

# Stored page_number when the extractor could not attribute a page
UNKNOWN_PAGE = -1


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class VectorRecord:
    """One chunk as handed to the store by the document pipeline."""

    chunk_id: uuid.UUID
    content: str
    tenant_id: uuid.UUID
    document_id: uuid.UUID
    document_name: str
    chunk_index: int
    page_number: int | None = None

    def metadata(self) -> dict:
        return {
            "tenant_id": str(self.tenant_id),
            "document_id": str(self.document_id),
            "document_name": self.document_name,
            "chunk_index": self.chunk_index,
            "page_number": (
                self.page_number if self.page_number is not None else UNKNOWN_PAGE
            ),
        }


@dataclass(frozen=True)
class SearchFilter:
    """Tenant AND document-set constraint applied to every search."""

    tenant_id: uuid.UUID
    document_ids: tuple[uuid.UUID, ...]

    def __post_init__(self) -> None:
        if self.tenant_id is None:
            raise ValueError("SearchFilter requires a tenant_id")
        if not self.document_ids:
            raise ValueError("SearchFilter requires at least one document id")
        object.__setattr__(self, "document_ids", tuple(self.document_ids))


@dataclass
class VectorSearchResult:
    """
    A single search hit.

    metadata holds tenant_id, document_id, document_name, chunk_index and
    page_number exactly as stored (page_number may be UNKNOWN_PAGE).
    """

    chunk_id: uuid.UUID
    content: str
    similarity_score: float  # 1 - cosine distance, higher is more similar
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    def add(self, records: list[VectorRecord]) -> None:
        """Embed and store records. Sync (Celery)."""
        ...

    async def search(
        self,
        query: str,
        top_k: int,
        search_filter: SearchFilter,
    ) -> list[VectorSearchResult]:
        """Return up to top_k records within the filter, most similar first."""
        ...

    def delete_by_ids(self, chunk_ids: list[uuid.UUID]) -> None:
        """Remove records by chunk id. Unknown ids are ignored."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorStore:
    """
    Records live in the chunk_vectors table, keyed by chunk id.

    Cosine distance from pgvector is in [0, 2]; the reported similarity is
    1 - distance.
    """

    def add(self, records: list[VectorRecord]) -> None:
        if not records:
            return

        embeddings = embed_batch([r.content for r in records])

        with get_sync_session() as session:
            session.add_all([
                ChunkVector(
                    id=record.chunk_id,
                    tenant_id=record.tenant_id,
                    document_id=record.document_id,
                    document_name=record.document_name,
                    chunk_index=record.chunk_index,
                    page_number=record.metadata()["page_number"],
                    content=record.content,
                    embedding=embedding,
                )
                for record, embedding in zip(records, embeddings, strict=True)
            ])

        logger.info("Stored %d vectors in pgvector", len(records))

    async def search(
        self,
        query: str,
        top_k: int,
        search_filter: SearchFilter,
    ) -> list[VectorSearchResult]:
        query_embedding = await asyncio.to_thread(embed_query, query)
        distance = ChunkVector.embedding.cosine_distance(query_embedding)

        stmt = (
            select(ChunkVector, distance.label("distance"))
            .where(ChunkVector.tenant_id == search_filter.tenant_id)
            .where(ChunkVector.document_id.in_(search_filter.document_ids))
            .order_by(distance)
            .limit(top_k)
        )

        async with async_session_factory() as session:
            rows = (await session.execute(stmt)).all()

        logger.debug(
            "pgvector search returned %d rows (top_k=%d, documents=%d)",
            len(rows), top_k, len(search_filter.document_ids),
        )

        return [
            VectorSearchResult(
                chunk_id=row.id,
                content=row.content,
                similarity_score=1.0 - float(dist),
                metadata={
                    "tenant_id": str(row.tenant_id),
                    "document_id": str(row.document_id),
                    "document_name": row.document_name,
                    "chunk_index": row.chunk_index,
                    "page_number": row.page_number,
                },
            )
            for row, dist in rows
        ]

    def delete_by_ids(self, chunk_ids: list[uuid.UUID]) -> None:
        if not chunk_ids:
            return

        with get_sync_session() as session:
            result = session.execute(
                delete(ChunkVector).where(ChunkVector.id.in_(chunk_ids))
            )

        logger.info(
            "Deleted %d of %d vectors from pgvector", result.rowcount, len(chunk_ids),
        )


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed store: one collection shared by all tenants, record id is
    the chunk id string, isolation enforced by the metadata where clause.

    Uses an HTTP client when CHROMA_URL is set, otherwise an in-process one.
    """

    def __init__(
        self,
        client: chromadb.api.ClientAPI | None = None,
        collection_name: str | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif settings.chroma_url:
            self._client = chromadb.HttpClient(host=settings.chroma_url)
        else:
            self._client = chromadb.Client()

        self._collection = self._client.get_or_create_collection(
            name=collection_name or settings.chroma_collection,
            metadata={"hnsw:space": "cosine"},
        )

    def add(self, records: list[VectorRecord]) -> None:
        if not records:
            return

        self._collection.add(
            ids=[str(r.chunk_id) for r in records],
            documents=[r.content for r in records],
            embeddings=embed_batch([r.content for r in records]),
            metadatas=[r.metadata() for r in records],
        )
        logger.info("Stored %d vectors in ChromaDB", len(records))

    async def search(
        self,
        query: str,
        top_k: int,
        search_filter: SearchFilter,
    ) -> list[VectorSearchResult]:
        where = {
            "$and": [
                {"tenant_id": {"$eq": str(search_filter.tenant_id)}},
                {"document_id": {"$in": [str(d) for d in search_filter.document_ids]}},
            ]
        }

        def _sync_search() -> list[VectorSearchResult]:
            results = self._collection.query(
                query_embeddings=[embed_query(query)],
                n_results=top_k,
                where=where,
                include=["documents", "metadatas", "distances"],
            )

            hits: list[VectorSearchResult] = []
            if not results or not results["ids"] or not results["ids"][0]:
                return hits

            for i, chroma_id in enumerate(results["ids"][0]):
                hits.append(VectorSearchResult(
                    chunk_id=uuid.UUID(chroma_id),
                    content=results["documents"][0][i],
                    similarity_score=1.0 - results["distances"][0][i],
                    metadata=dict(results["metadatas"][0][i]),
                ))
            return hits

        hits = await asyncio.to_thread(_sync_search)
        logger.debug("ChromaDB search returned %d hits (top_k=%d)", len(hits), top_k)
        return hits

    def delete_by_ids(self, chunk_ids: list[uuid.UUID]) -> None:
        if not chunk_ids:
            return
        self._collection.delete(ids=[str(c) for c in chunk_ids])
        logger.info("Deleted %d vectors from ChromaDB", len(chunk_ids))


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_store: PgVectorStore | ChromaVectorStore | None = None


def get_vector_store() -> PgVectorStore | ChromaVectorStore:
    """
    Return the configured backend (VECTORSTORE_TYPE = "pgvector" | "chroma").

    Cached per process; the Chroma client and its collection handle are
    reused across tasks and requests.
    """
    global _store
    if _store is None:
        if settings.vectorstore_type == "chroma":
            logger.info("Using ChromaDB vector store")
            _store = ChromaVectorStore()
        else:
            logger.info("Using pgvector vector store")
            _store = PgVectorStore()
    return _store
