# =============================================================================
# Document Service — Upload, Lookup, Reprocess and Delete
# =============================================================================
#
# Async functions called from the FastAPI routers. Every lookup is filtered
# by tenant_id; a document owned by another tenant is reported exactly like
# one that does not exist.
#
# UPLOAD (returns before any processing happens):
#   1. Validate name, type and size
#   2. Write bytes under a generated name (worker thread)
#   3. Insert the Document row (UPLOADED) and COMMIT; if the insert fails
#      the file is removed again
#   4. Hand the id to the Celery queue; a failed handoff marks the
#      document FAILED and raises ProcessingDispatchError
#
# DELETE: vectors first, then chunk/association/document rows, then the
# stored file. A vector store failure raises VectorStoreError and leaves
# every row in place.
#
# DESIGN DECISION: Commit before dispatch. The worker loads the document by
# id as its first step, so the row must be durable before the id is queued.
#
# DESIGN DECISION: Vectors are deleted first. If the store call fails the
# document is still complete and the delete can simply be repeated; rows
# deleted first would leave vectors no later request can find by id.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from pathlib import Path

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.config import settings
from docrag.db.models import Chunk, Document, DocumentStatus, conversation_documents
from docrag.services.errors import (
    DocumentNotFoundError,
    InvalidInputError,
    InvalidStateError,
    ProcessingDispatchError,
    VectorStoreError,
)
from docrag.services.storage import remove_upload, save_upload
from docrag.services.vectorstore import VectorStore, get_vector_store

logger = logging.getLogger(__name__)

Dispatcher = Callable[[uuid.UUID], str]


def dispatch_processing(document_id: uuid.UUID) -> str:
    """Queue the processing task and return its Celery task id."""
    from docrag.workers.tasks import process_document_task

    return process_document_task.delay(str(document_id)).id


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


def validate_upload(filename: str | None, content_type: str | None, data: bytes) -> str:
    """
    Reject empty, unnamed, oversize or unsupported uploads.

    Returns:
        The normalised content type (parameters stripped, lower case).
    """
    if not data:
        raise InvalidInputError("File is empty")

    if not filename or not filename.strip():
        raise InvalidInputError("File name is missing")

    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime not in settings.allowed_content_types:
        raise InvalidInputError(
            f"Unsupported file type: {content_type or 'unknown'}. "
            f"Allowed types: {', '.join(settings.allowed_content_types)}"
        )

    if len(data) > settings.max_upload_size_bytes:
        raise InvalidInputError(
            f"File exceeds the maximum upload size of "
            f"{settings.max_upload_size_bytes} bytes"
        )

    return mime


async def create_document(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    filename: str | None,
    content_type: str | None,
    data: bytes,
    uploaded_by: str | None = None,
    dispatch: Dispatcher = dispatch_processing,
    upload_dir: str | Path | None = None,
) -> Document:
    mime = validate_upload(filename, content_type, data)
    stored_filename = await asyncio.to_thread(save_upload, data, filename, upload_dir)

    document = Document(
        tenant_id=tenant_id,
        uploaded_by=uploaded_by,
        original_name=filename,
        stored_filename=stored_filename,
        content_type=mime,
        file_size=len(data),
        status=DocumentStatus.UPLOADED,
    )
    session.add(document)
    try:
        await session.flush()
        await session.commit()
    except Exception:
        logger.exception("Failed to store document row for %s, removing file", filename)
        await session.rollback()
        await asyncio.to_thread(remove_upload, stored_filename, upload_dir)
        raise

    logger.info("Document uploaded: %s (id=%s)", filename, document.id)

    await schedule_processing(session, document, dispatch)
    return document


async def schedule_processing(
    session: AsyncSession,
    document: Document,
    dispatch: Dispatcher = dispatch_processing,
) -> None:
    """
    Commit the document, then queue its processing run.

    The commit comes first so the worker can never observe a missing row.
    """
    await session.commit()

    try:
        task_id = dispatch(document.id)
    except Exception as exc:
        logger.exception("Failed to queue processing for document %s", document.id)
        document.status = DocumentStatus.FAILED
        document.error_message = f"Could not queue document for processing: {exc}"
        await session.commit()
        raise ProcessingDispatchError(
            "Document was stored but could not be queued for processing"
        ) from exc

    document.celery_task_id = task_id
    await session.commit()
    logger.info("Dispatched processing task: document_id=%s, task_id=%s", document.id, task_id)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def get_document(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document_id: uuid.UUID,
) -> Document:
    document = (
        await session.execute(
            select(Document).where(
                Document.id == document_id,
                Document.tenant_id == tenant_id,
            )
        )
    ).scalar_one_or_none()

    if document is None:
        raise DocumentNotFoundError([document_id])
    return document


async def list_documents(session: AsyncSession, tenant_id: uuid.UUID) -> list[Document]:
    """Tenant's documents, newest first."""
    result = await session.execute(
        select(Document)
        .where(Document.tenant_id == tenant_id)
        .order_by(Document.created_at.desc())
    )
    return list(result.scalars().all())


async def count_chunks(
    session: AsyncSession,
    document_ids: list[uuid.UUID],
) -> dict[uuid.UUID, int]:
    """Chunk count per document id (0 for documents without chunks)."""
    counts = {document_id: 0 for document_id in document_ids}
    if not document_ids:
        return counts

    rows = await session.execute(
        select(Chunk.document_id, func.count(Chunk.id))
        .where(Chunk.document_id.in_(document_ids))
        .group_by(Chunk.document_id)
    )
    for document_id, count in rows.all():
        counts[document_id] = count
    return counts


# ---------------------------------------------------------------------------
# Delete & Reprocess
# ---------------------------------------------------------------------------


async def delete_document(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document_id: uuid.UUID,
    *,
    vector_store: VectorStore | None = None,
    upload_dir: str | Path | None = None,
) -> None:
    document = await get_document(session, tenant_id, document_id)

    await _remove_chunks(session, document, vector_store)
    await session.execute(
        delete(conversation_documents).where(
            conversation_documents.c.document_id == document.id
        )
    )
    await session.delete(document)
    await session.flush()

    remove_upload(document.stored_filename, upload_dir)
    logger.info("Document deleted: %s (id=%s)", document.original_name, document.id)


async def reprocess_document(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document_id: uuid.UUID,
    *,
    vector_store: VectorStore | None = None,
    dispatch: Dispatcher = dispatch_processing,
) -> Document:
    """
    Start a new processing run for a READY or FAILED document.

    Existing vectors and chunks are removed and the document returns to
    UPLOADED before the run is queued.
    """
    document = await get_document(session, tenant_id, document_id)

    if not document.status.is_terminal:
        raise InvalidStateError(
            f"Document is {document.status.value}; only READY or FAILED "
            f"documents can be reprocessed"
        )

    await _remove_chunks(session, document, vector_store)

    document.status = DocumentStatus.UPLOADED
    document.error_message = None
    document.page_count = None
    document.celery_task_id = None
    await session.flush()

    logger.info("Reprocessing document %s (%s)", document.id, document.original_name)
    await schedule_processing(session, document, dispatch)
    return document


async def _remove_chunks(
    session: AsyncSession,
    document: Document,
    vector_store: VectorStore | None,
) -> None:
    """Delete a document's vectors, then its chunk rows."""
    chunk_ids = list(
        (
            await session.execute(
                select(Chunk.id).where(Chunk.document_id == document.id)
            )
        ).scalars().all()
    )

    if chunk_ids:
        store = vector_store or get_vector_store()
        try:
            await asyncio.to_thread(store.delete_by_ids, chunk_ids)
        except Exception as exc:
            logger.exception(
                "Vector deletion failed for document %s (%d chunks)",
                document.id, len(chunk_ids),
            )
            raise VectorStoreError(
                f"Could not remove indexed vectors for document {document.id}"
            ) from exc

    await session.execute(delete(Chunk).where(Chunk.document_id == document.id))
