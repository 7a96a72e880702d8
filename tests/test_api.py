# =============================================================================
# API Tests — Routing, Status Codes and Error Bodies
# =============================================================================
#
# The FastAPI app runs under TestClient with the tenant and session
# dependencies overridden and the service functions patched, so these tests
# cover HTTP behaviour only. The lifespan (table creation) is not entered.
# =============================================================================

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import make_document
from docrag.api.deps import TenantContext, get_current_tenant
from docrag.db.engine import get_async_session
from docrag.db.models import DocumentStatus
from docrag.main import app
from docrag.services.errors import (
    ConversationNotFoundError,
    DocumentNotFoundError,
    DocumentsNotReadyError,
    GenerationError,
    InvalidStateError,
    NotReadyDocument,
    ProcessingDispatchError,
    VectorStoreError,
)
from docrag.services.orchestrator import ChatResult, Citation

TENANT = TenantContext(tenant_id=uuid.uuid4(), principal="test-key")


async def _fake_session():
    yield MagicMock()


@pytest.fixture
def client():
    app.dependency_overrides[get_current_tenant] = lambda: TENANT
    app.dependency_overrides[get_async_session] = _fake_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _stored_document(**overrides):
    now = datetime.now(UTC)
    values = {"created_at": now, "updated_at": now}
    values.update(overrides)
    return make_document(TENANT.tenant_id, **values)


def _chat_body(**overrides):
    body = {"question": "What is the notice period?", "document_ids": [str(uuid.uuid4())]}
    body.update(overrides)
    return body


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestDocumentsApi:
    def test_upload_returns_201_with_uploaded_status(self, client):
        document = _stored_document(status=DocumentStatus.UPLOADED, original_name="notes.txt")

        with patch(
            "docrag.api.documents.document_service.create_document",
            new=AsyncMock(return_value=document),
        ) as create:
            response = client.post(
                "/api/v1/documents",
                files={"file": ("notes.txt", b"Meeting notes.", "text/plain")},
            )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == str(document.id)
        assert body["status"] == "UPLOADED"
        assert "stored_filename" not in body

        kwargs = create.await_args.kwargs
        assert kwargs["tenant_id"] == TENANT.tenant_id
        assert kwargs["filename"] == "notes.txt"
        assert kwargs["data"] == b"Meeting notes."
        assert kwargs["uploaded_by"] == "test-key"

    def test_dispatch_failure_is_503(self, client):
        with patch(
            "docrag.api.documents.document_service.create_document",
            new=AsyncMock(side_effect=ProcessingDispatchError("queue unavailable")),
        ):
            response = client.post(
                "/api/v1/documents",
                files={"file": ("notes.txt", b"x", "text/plain")},
            )
        assert response.status_code == 503

    def test_get_includes_chunk_count(self, client):
        document = _stored_document()

        with patch(
            "docrag.api.documents.document_service.get_document",
            new=AsyncMock(return_value=document),
        ), patch(
            "docrag.api.documents.document_service.count_chunks",
            new=AsyncMock(return_value={document.id: 12}),
        ):
            response = client.get(f"/api/v1/documents/{document.id}")

        assert response.status_code == 200
        assert response.json()["chunk_count"] == 12
        assert response.json()["status"] == "READY"

    def test_unknown_document_is_404(self, client):
        missing = uuid.uuid4()
        with patch(
            "docrag.api.documents.document_service.get_document",
            new=AsyncMock(side_effect=DocumentNotFoundError([missing])),
        ):
            response = client.get(f"/api/v1/documents/{missing}")

        assert response.status_code == 404
        assert str(missing) in response.json()["detail"]

    def test_delete_returns_204(self, client):
        with patch(
            "docrag.api.documents.document_service.delete_document",
            new=AsyncMock(return_value=None),
        ):
            response = client.delete(f"/api/v1/documents/{uuid.uuid4()}")
        assert response.status_code == 204

    def test_delete_vector_failure_is_502(self, client):
        with patch(
            "docrag.api.documents.document_service.delete_document",
            new=AsyncMock(side_effect=VectorStoreError("store offline")),
        ):
            response = client.delete(f"/api/v1/documents/{uuid.uuid4()}")
        assert response.status_code == 502

    def test_reprocess_in_flight_document_is_409(self, client):
        with patch(
            "docrag.api.documents.document_service.reprocess_document",
            new=AsyncMock(side_effect=InvalidStateError("Document is EMBEDDING")),
        ):
            response = client.post(f"/api/v1/documents/{uuid.uuid4()}/reprocess")
        assert response.status_code == 409


class TestChatApi:
    def test_answer_with_sources(self, client):
        document_id = uuid.uuid4()
        result = ChatResult(
            conversation_id=uuid.uuid4(),
            answer="Sixty days [Source 1].",
            citations=[
                Citation(
                    document_id=document_id,
                    document_name="lease.pdf",
                    content_preview="Either party may end the lease...",
                    chunk_index=2,
                    page_number=None,
                    similarity_score=0.87,
                ),
            ],
        )

        with patch("docrag.api.chat.run_chat", new=AsyncMock(return_value=result)) as run:
            response = client.post("/api/v1/chat", json=_chat_body())

        assert response.status_code == 200
        body = response.json()
        assert body["conversation_id"] == str(result.conversation_id)
        assert body["answer"] == "Sixty days [Source 1]."
        [source] = body["sources"]
        assert source["document_id"] == str(document_id)
        assert source["chunk_content"] == "Either party may end the lease..."
        assert source["page_number"] is None
        assert source["similarity_score"] == 0.87
        assert run.await_args.kwargs["tenant_id"] == TENANT.tenant_id

    def test_empty_question_is_rejected(self, client):
        response = client.post("/api/v1/chat", json=_chat_body(question=""))
        assert response.status_code == 422

    def test_not_ready_documents_are_listed(self, client):
        pending = NotReadyDocument(document_id=uuid.uuid4(), name="big.pdf", status="EMBEDDING")

        with patch(
            "docrag.api.chat.run_chat",
            new=AsyncMock(side_effect=DocumentsNotReadyError([pending])),
        ):
            response = client.post("/api/v1/chat", json=_chat_body())

        assert response.status_code == 409
        assert response.json()["documents"] == [
            {"document_id": str(pending.document_id), "name": "big.pdf", "status": "EMBEDDING"},
        ]

    def test_generation_failure_is_retryable(self, client):
        with patch(
            "docrag.api.chat.run_chat",
            new=AsyncMock(side_effect=GenerationError("Answer generation failed")),
        ):
            response = client.post("/api/v1/chat", json=_chat_body())

        assert response.status_code == 503
        assert response.headers["Retry-After"] == str(GenerationError.retry_after)

    def test_rate_limit_returns_429_with_retry_after(self, client, monkeypatch):
        monkeypatch.setattr("docrag.services.rate_limiter.settings.rate_limit_enabled", True)
        mock_redis = MagicMock()
        mock_redis.eval = AsyncMock(side_effect=[0, 2500])
        monkeypatch.setattr(
            "docrag.services.rate_limiter._get_rate_limit_redis", lambda: mock_redis,
        )

        with patch("docrag.api.chat.run_chat", new=AsyncMock(return_value=ChatResult(
            conversation_id=uuid.uuid4(), answer="ok",
        ))):
            first = client.post("/api/v1/chat", json=_chat_body())
            second = client.post("/api/v1/chat", json=_chat_body())

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.headers["Retry-After"] == "3"
        assert mock_redis.eval.call_args.args[2] == f"ratelimit:chat:{TENANT.tenant_id}"

    def test_unknown_conversation_is_404(self, client):
        with patch(
            "docrag.api.chat.conversation_service.get_conversation",
            new=AsyncMock(side_effect=ConversationNotFoundError(uuid.uuid4())),
        ):
            response = client.get(f"/api/v1/chat/conversations/{uuid.uuid4()}")
        assert response.status_code == 404
