# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
# What the API returns. Built from ORM rows with from_attributes=True, or
# from the orchestrator's dataclasses. Raw file names on disk, task ids and
# vectors are never exposed.
# =============================================================================

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str = "ok"
    version: str
    service: str


class DocumentResponse(BaseModel):
    """Document metadata and processing state."""

    id: uuid.UUID
    original_name: str
    content_type: str
    file_size: int
    page_count: int | None = None
    status: str
    error_message: str | None = None
    chunk_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CitationResponse(BaseModel):
    """A retrieved chunk that grounded the answer."""

    document_id: uuid.UUID
    document_name: str
    chunk_content: str = Field(description="Chunk text, truncated for display")
    chunk_index: int
    page_number: int | None = None
    similarity_score: float | None = Field(
        default=None,
        description="Similarity reported by the vector store, unmodified",
    )


class ChatResponse(BaseModel):
    """Response for POST /api/v1/chat."""

    conversation_id: uuid.UUID
    answer: str
    sources: list[CitationResponse] = Field(default_factory=list)
    timestamp: datetime


class MessageResponse(BaseModel):
    id: int
    role: str
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationSummaryResponse(BaseModel):
    """Conversation listing entry (no messages)."""

    id: uuid.UUID
    title: str | None = None
    message_count: int = 0
    created_at: datetime
    updated_at: datetime


class ConversationResponse(BaseModel):
    """Full conversation with messages in append order."""

    id: uuid.UUID
    title: str | None = None
    messages: list[MessageResponse] = Field(default_factory=list)
    document_ids: list[uuid.UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class NotReadyDocumentResponse(BaseModel):
    document_id: uuid.UUID
    name: str
    status: str


class ErrorResponse(BaseModel):
    """Body of every error response."""

    detail: str
    documents: list[NotReadyDocumentResponse] | None = None
