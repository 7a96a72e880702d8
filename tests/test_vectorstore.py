# =============================================================================
# Unit Tests — Vector Store (ChromaDB and pgvector backends)
# =============================================================================
#
# Tests vector store operations: add, filtered search, delete.
# Uses ChromaDB's in-process mode (no external services needed) and a
# keyword embedding in place of the OpenAI embeddings API.
# pgvector runs against stub sessions: the tests check the statements it
# builds (tenant and document filters, deletes) and the rows it writes.
# =============================================================================

from __future__ import annotations

import asyncio
import uuid
from contextlib import contextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock

import chromadb
import pytest
from sqlalchemy.dialects import postgresql

from docrag.services import vectorstore
from docrag.services.vectorstore import (
    ChromaVectorStore,
    PgVectorStore,
    SearchFilter,
    VectorRecord,
)

_KEYWORDS = ("revenue", "expense", "travel")


def _embed(text: str) -> list[float]:
    """3-d embedding: one axis per keyword, plus a constant floor."""
    lowered = text.lower()
    return [1.0 + 5.0 * (word in lowered) for word in _KEYWORDS]


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store(monkeypatch) -> ChromaVectorStore:
    """Fresh store with a unique collection per test."""
    monkeypatch.setattr(
        vectorstore, "embed_batch", lambda texts, batch_size=None: [_embed(t) for t in texts],
    )
    monkeypatch.setattr(vectorstore, "embed_query", _embed)
    return ChromaVectorStore(
        client=chromadb.EphemeralClient(),
        collection_name=f"test_{uuid.uuid4().hex}",
    )


def _record(tenant_id, document_id, content, index=0, name="report.pdf", page=None):
    return VectorRecord(
        chunk_id=uuid.uuid4(),
        content=content,
        tenant_id=tenant_id,
        document_id=document_id,
        document_name=name,
        chunk_index=index,
        page_number=page,
    )


class TestSearchFilter:
    def test_document_ids_become_a_tuple(self):
        ids = [uuid.uuid4(), uuid.uuid4()]
        search_filter = SearchFilter(tenant_id=uuid.uuid4(), document_ids=ids)
        assert search_filter.document_ids == tuple(ids)

    def test_requires_document_ids(self):
        with pytest.raises(ValueError):
            SearchFilter(tenant_id=uuid.uuid4(), document_ids=())

    def test_requires_tenant(self):
        with pytest.raises(ValueError):
            SearchFilter(tenant_id=None, document_ids=(uuid.uuid4(),))


class TestVectorRecord:
    def test_metadata_uses_sentinel_for_unknown_page(self):
        record = _record(uuid.uuid4(), uuid.uuid4(), "text")
        assert record.metadata()["page_number"] == vectorstore.UNKNOWN_PAGE

    def test_metadata_ids_are_strings(self):
        tenant_id, document_id = uuid.uuid4(), uuid.uuid4()
        metadata = _record(tenant_id, document_id, "text", page=2).metadata()
        assert metadata["tenant_id"] == str(tenant_id)
        assert metadata["document_id"] == str(document_id)
        assert metadata["page_number"] == 2


class TestChromaVectorStore:
    def test_search_orders_by_similarity(self, store):
        tenant, document = uuid.uuid4(), uuid.uuid4()
        records = [
            _record(tenant, document, "Travel must be booked in advance.", 0),
            _record(tenant, document, "Revenue increased by 15%.", 1),
        ]
        store.add(records)

        hits = _run(store.search("revenue growth", 2, SearchFilter(tenant, (document,))))

        assert [h.chunk_id for h in hits] == [records[1].chunk_id, records[0].chunk_id]
        assert hits[0].similarity_score > hits[1].similarity_score
        assert hits[0].content == "Revenue increased by 15%."

    def test_search_returns_stored_metadata(self, store):
        tenant, document = uuid.uuid4(), uuid.uuid4()
        record = _record(tenant, document, "Revenue table.", 4, name="q3.pdf", page=7)
        store.add([record])

        [hit] = _run(store.search("revenue", 5, SearchFilter(tenant, (document,))))

        assert hit.chunk_id == record.chunk_id
        assert hit.metadata == record.metadata()

    def test_other_tenants_records_are_never_returned(self, store):
        tenant, other = uuid.uuid4(), uuid.uuid4()
        document = uuid.uuid4()
        mine = _record(tenant, document, "Expense policy overview.")
        theirs = _record(other, document, "Expense policy overview.")
        store.add([mine, theirs])

        hits = _run(store.search("expense", 5, SearchFilter(tenant, (document,))))

        assert [h.chunk_id for h in hits] == [mine.chunk_id]

    def test_search_is_limited_to_the_document_scope(self, store):
        tenant = uuid.uuid4()
        in_scope, out_of_scope = uuid.uuid4(), uuid.uuid4()
        wanted = _record(tenant, in_scope, "Travel reimbursement rules.")
        store.add([
            wanted,
            _record(tenant, out_of_scope, "Travel reimbursement rules, copy."),
        ])

        hits = _run(store.search("travel", 5, SearchFilter(tenant, (in_scope,))))

        assert [h.chunk_id for h in hits] == [wanted.chunk_id]

    def test_top_k_caps_results(self, store):
        tenant, document = uuid.uuid4(), uuid.uuid4()
        store.add([_record(tenant, document, f"Revenue note {i}.", i) for i in range(5)])

        hits = _run(store.search("revenue", 3, SearchFilter(tenant, (document,))))

        assert len(hits) == 3

    def test_delete_by_ids_removes_only_those_records(self, store):
        tenant, document = uuid.uuid4(), uuid.uuid4()
        keep = _record(tenant, document, "Revenue kept.", 0)
        drop = _record(tenant, document, "Revenue dropped.", 1)
        store.add([keep, drop])

        store.delete_by_ids([drop.chunk_id])

        hits = _run(store.search("revenue", 5, SearchFilter(tenant, (document,))))
        assert [h.chunk_id for h in hits] == [keep.chunk_id]

    def test_empty_add_and_delete_are_noops(self, store):
        store.add([])
        store.delete_by_ids([])


class StubAsyncSession:
    """Async session stand-in that records statements and returns canned rows."""

    def __init__(self, rows=()):
        self.statements = []
        self._rows = list(rows)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, stmt):
        self.statements.append(stmt)
        result = MagicMock()
        result.all.return_value = self._rows
        return result


def _compile(stmt):
    return stmt.compile(dialect=postgresql.dialect())


@pytest.fixture
def pg_store(monkeypatch) -> PgVectorStore:
    monkeypatch.setattr(
        vectorstore, "embed_batch", lambda texts, batch_size=None: [_embed(t) for t in texts],
    )
    monkeypatch.setattr(vectorstore, "embed_query", _embed)
    return PgVectorStore()


def _stub_sync_session(monkeypatch, rowcount=0):
    session = MagicMock()
    session.execute.return_value = MagicMock(rowcount=rowcount)

    @contextmanager
    def fake_get_sync_session():
        yield session

    monkeypatch.setattr(vectorstore, "get_sync_session", fake_get_sync_session)
    return session


class TestPgVectorStore:
    def test_search_filters_on_tenant_and_document_set(self, pg_store, monkeypatch):
        tenant = uuid.uuid4()
        documents = (uuid.uuid4(), uuid.uuid4())
        session = StubAsyncSession()
        monkeypatch.setattr(vectorstore, "async_session_factory", lambda: session)

        _run(pg_store.search("revenue", 4, SearchFilter(tenant, documents)))

        [stmt] = session.statements
        compiled = _compile(stmt)
        sql = str(compiled)
        assert "chunk_vectors.tenant_id =" in sql
        assert "chunk_vectors.document_id IN" in sql
        assert "ORDER BY" in sql
        params = list(compiled.params.values())
        assert tenant in params
        assert any(
            isinstance(value, (list, tuple)) and set(value) == set(documents)
            for value in params
        )
        assert 4 in params

    def test_search_maps_rows_to_results(self, pg_store, monkeypatch):
        tenant, document = uuid.uuid4(), uuid.uuid4()
        row = SimpleNamespace(
            id=uuid.uuid4(),
            content="Revenue increased by 15%.",
            tenant_id=tenant,
            document_id=document,
            document_name="q3.pdf",
            chunk_index=2,
            page_number=vectorstore.UNKNOWN_PAGE,
        )
        session = StubAsyncSession(rows=[(row, 0.25)])
        monkeypatch.setattr(vectorstore, "async_session_factory", lambda: session)

        [hit] = _run(pg_store.search("revenue", 5, SearchFilter(tenant, (document,))))

        assert hit.chunk_id == row.id
        assert hit.content == "Revenue increased by 15%."
        assert hit.similarity_score == pytest.approx(0.75)
        assert hit.metadata == {
            "tenant_id": str(tenant),
            "document_id": str(document),
            "document_name": "q3.pdf",
            "chunk_index": 2,
            "page_number": vectorstore.UNKNOWN_PAGE,
        }

    def test_add_writes_one_row_per_record(self, pg_store, monkeypatch):
        session = _stub_sync_session(monkeypatch)
        tenant, document = uuid.uuid4(), uuid.uuid4()
        records = [
            _record(tenant, document, "Revenue table.", 0, page=3),
            _record(tenant, document, "Travel policy.", 1),
        ]

        pg_store.add(records)

        [rows] = session.add_all.call_args.args
        assert [r.id for r in rows] == [r.chunk_id for r in records]
        assert [r.page_number for r in rows] == [3, vectorstore.UNKNOWN_PAGE]
        assert all(r.tenant_id == tenant and r.document_id == document for r in rows)
        assert rows[0].embedding == _embed("Revenue table.")
        assert rows[1].chunk_index == 1

    def test_delete_by_ids_targets_only_those_rows(self, pg_store, monkeypatch):
        session = _stub_sync_session(monkeypatch, rowcount=2)
        ids = [uuid.uuid4(), uuid.uuid4()]

        pg_store.delete_by_ids(ids)

        [stmt] = session.execute.call_args.args
        compiled = _compile(stmt)
        assert str(compiled).startswith("DELETE FROM chunk_vectors WHERE chunk_vectors.id IN")
        assert any(
            isinstance(value, (list, tuple)) and set(value) == set(ids)
            for value in compiled.params.values()
        )

    def test_empty_add_and_delete_open_no_session(self, pg_store, monkeypatch):
        session = _stub_sync_session(monkeypatch)

        pg_store.add([])
        pg_store.delete_by_ids([])

        session.add_all.assert_not_called()
        session.execute.assert_not_called()


class TestGetVectorStore:
    def test_pgvector_is_the_default(self, monkeypatch):
        monkeypatch.setattr(vectorstore, "_store", None)
        monkeypatch.setattr(vectorstore.settings, "vectorstore_type", "pgvector")

        assert isinstance(vectorstore.get_vector_store(), PgVectorStore)

    def test_instance_is_cached(self, monkeypatch):
        monkeypatch.setattr(vectorstore, "_store", None)
        monkeypatch.setattr(vectorstore.settings, "vectorstore_type", "pgvector")

        assert vectorstore.get_vector_store() is vectorstore.get_vector_store()
