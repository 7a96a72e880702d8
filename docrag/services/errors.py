# =============================================================================
# Service Errors
# =============================================================================
#
# Raised by the services layer, mapped to HTTP responses in docrag.main:
#
#   InvalidInputError         → 400
#   DocumentNotFoundError     → 404
#   ConversationNotFoundError → 404
#   DocumentsNotReadyError    → 409 (lists offending documents)
#   InvalidStateError         → 409
#   RateLimitExceededError    → 429 + Retry-After
#   VectorStoreError          → 502
#   GenerationError           → 503 + Retry-After
#   ProcessingDispatchError   → 503
#
# Pipeline failures (extraction, chunking, embedding) are recorded on the
# document and never raised to a caller.
#
# DESIGN DECISION: Services raise domain errors, never HTTPException. The
# same functions run from tests and scripts, and the HTTP mapping lives in
# one place.
# =============================================================================

from __future__ import annotations

import uuid
from dataclasses import dataclass


class DocRagError(Exception):
    """Base class for errors surfaced to API callers."""


class InvalidInputError(DocRagError):
    """Request rejected before any pipeline or query work started."""


class DocumentNotFoundError(DocRagError):
    """
    One or more documents do not exist within the caller's tenant.

    The message is the same whether the id is unknown or owned by another
    tenant.
    """

    def __init__(self, document_ids: list[uuid.UUID] | None = None) -> None:
        self.document_ids = list(document_ids or [])
        if len(self.document_ids) == 1:
            message = f"Document {self.document_ids[0]} not found"
        elif self.document_ids:
            message = "One or more documents not found"
        else:
            message = "Document not found"
        super().__init__(message)


class ConversationNotFoundError(DocRagError):
    def __init__(self, conversation_id: uuid.UUID) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


@dataclass(frozen=True)
class NotReadyDocument:
    document_id: uuid.UUID
    name: str
    status: str


class DocumentsNotReadyError(DocRagError):
    """Queried documents that have not finished processing."""

    def __init__(self, documents: list[NotReadyDocument]) -> None:
        self.documents = documents
        listing = ", ".join(f"{d.name} ({d.status})" for d in documents)
        super().__init__(f"Documents not ready: {listing}")


class InvalidStateError(DocRagError):
    """Operation not allowed in the document's current status."""


class RateLimitExceededError(DocRagError):
    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limit exceeded. Retry after {retry_after} seconds")
        self.retry_after = retry_after


class VectorStoreError(DocRagError):
    """The vector store rejected an add, search or delete."""


class GenerationError(DocRagError):
    """The language model call failed. Safe to retry."""

    retry_after = 5


class ProcessingDispatchError(DocRagError):
    """The background processing task could not be queued."""
