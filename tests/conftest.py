# =============================================================================
# Shared Test Fixtures — In-Memory SQLite Databases & Collaborator Fakes
# =============================================================================
#
# No PostgreSQL, Redis, Celery broker or API keys are needed:
#   - session_scope: sync SQLite session context (pipeline, worker code)
#   - async_database: builds an aiosqlite engine + session factory inside
#     the running event loop (service and API code)
#   - FakeVectorStore / FakeLLM: record calls and return canned results
#
# chunk_vectors is not created: it belongs to the pgvector backend only.
# =============================================================================

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docrag.db.models import Base, Document, DocumentStatus, Tenant
from docrag.services.llm import LLMResponse
from docrag.services.vectorstore import SearchFilter, VectorRecord, VectorSearchResult

_TABLES = [t for t in Base.metadata.sorted_tables if t.name != "chunk_vectors"]


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------


@pytest.fixture
def session_scope():
    """A get_sync_session() replacement bound to a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine, tables=_TABLES)
    factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)

    @contextmanager
    def scope() -> Iterator[Session]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    yield scope
    engine.dispose()


@asynccontextmanager
async def _async_database():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=_TABLES))
    try:
        yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def async_database():
    """
    Returns an async context manager yielding a session factory.

    Enter it inside the coroutine under test so the engine and the test
    share one event loop.
    """
    return _async_database


@pytest.fixture(autouse=True)
def _no_rate_limits(monkeypatch):
    """Keep tests off Redis; rate limiter tests opt back in."""
    monkeypatch.setattr("docrag.services.rate_limiter.settings.rate_limit_enabled", False)


# ---------------------------------------------------------------------------
# Row Builders
# ---------------------------------------------------------------------------


def make_tenant(name: str = "Acme", **overrides) -> Tenant:
    return Tenant(id=uuid.uuid4(), name=name, **overrides)


def make_document(
    tenant_id: uuid.UUID,
    status: DocumentStatus = DocumentStatus.READY,
    name: str = "handbook.txt",
    **overrides,
) -> Document:
    values = {
        "id": uuid.uuid4(),
        "tenant_id": tenant_id,
        "original_name": name,
        "stored_filename": f"{uuid.uuid4().hex}.txt",
        "content_type": "text/plain",
        "file_size": 10,
        "status": status,
    }
    values.update(overrides)
    return Document(**values)


# ---------------------------------------------------------------------------
# Collaborator Fakes
# ---------------------------------------------------------------------------


class FakeVectorStore:
    """In-memory VectorStore that records every call."""

    def __init__(self, hits: list[VectorSearchResult] | None = None) -> None:
        self.hits = hits or []
        self.added: list[VectorRecord] = []
        self.deleted: list[uuid.UUID] = []
        self.searches: list[tuple[str, int, SearchFilter]] = []
        self.fail_add: Exception | None = None
        self.fail_delete: Exception | None = None
        self.fail_search: Exception | None = None
        self.on_add = None

    def add(self, records: list[VectorRecord]) -> None:
        if self.fail_add:
            raise self.fail_add
        if self.on_add:
            self.on_add(records)
        self.added.extend(records)

    async def search(self, query: str, top_k: int, search_filter: SearchFilter):
        self.searches.append((query, top_k, search_filter))
        if self.fail_search:
            raise self.fail_search
        return list(self.hits)

    def delete_by_ids(self, chunk_ids: list[uuid.UUID]) -> None:
        if self.fail_delete:
            raise self.fail_delete
        self.deleted.extend(chunk_ids)


class FakeLLM:
    """LLMProvider fake returning a fixed answer and recording prompts."""

    def __init__(self, answer: str = "The answer.", error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[dict] = []

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls.append({"messages": [dict(m) for m in messages], "system": system})
        if self.error:
            raise self.error
        return LLMResponse(content=self.answer, model="fake", input_tokens=0, output_tokens=0)


def make_hit(
    document: Document,
    content: str = "Chunk text.",
    chunk_index: int = 0,
    score: float = 0.9,
    page_number: int = -1,
) -> VectorSearchResult:
    return VectorSearchResult(
        chunk_id=uuid.uuid4(),
        content=content,
        similarity_score=score,
        metadata={
            "tenant_id": str(document.tenant_id),
            "document_id": str(document.id),
            "document_name": document.original_name,
            "chunk_index": chunk_index,
            "page_number": page_number,
        },
    )
