# =============================================================================
# Document Pipeline — Processing State Machine
# =============================================================================
#
# Drives one uploaded document to READY or FAILED:
#
#   UPLOADED → PROCESSING → CHUNKING → EMBEDDING → READY
#       └──────────┴────────────┴──────────┴──────→ FAILED
#
#   Step 1/5  UPLOADED → PROCESSING   claim the document
#   Step 2/5  extract text + page count from the stored bytes
#   Step 3/5  PROCESSING → CHUNKING   chunk and persist rows (indices 0..N-1)
#   Step 4/5  CHUNKING → EMBEDDING    hand records to the vector store
#   Step 5/5  EMBEDDING → READY
#
# Every transition is a compare-and-set UPDATE (WHERE status = expected) in
# its own short session, so API readers see each stage as soon as it is
# reached. A transition that matches no row means the document was deleted
# (or moved on) by someone else; the run stops without touching it further.
#
# Any exception inside steps 2-5 is logged and recorded on the document as
# FAILED + message. Nothing is raised back to the caller.
#
# Runs synchronously inside a Celery worker (sync engine, no event loop).
#
# DESIGN DECISION: Compare-and-set transitions instead of row locks. The
# worker holds no lock while extracting or embedding, which can take
# minutes. A concurrent delete or reprocess makes the next UPDATE match
# zero rows, and the run stops at that point.
#
# DESIGN DECISION: No Celery retries. A redelivered or duplicate task finds
# the document past UPLOADED and exits at the claim step; a new run needs
# an explicit reprocess request.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from pathlib import Path

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from docrag.db.engine import get_sync_session
from docrag.db.models import Chunk, Document, DocumentStatus, Tenant
from docrag.services.chunker import (
    ChunkingConfig,
    chunk_text,
    estimate_tokens,
    normalize_whitespace,
)
from docrag.services.extractor import ExtractionResult, extract
from docrag.services.storage import read_upload
from docrag.services.vectorstore import VectorRecord, VectorStore, get_vector_store

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]

_ERROR_MESSAGE_MAX_LENGTH = 1000

_NON_TERMINAL = (
    DocumentStatus.UPLOADED,
    DocumentStatus.PROCESSING,
    DocumentStatus.CHUNKING,
    DocumentStatus.EMBEDDING,
)


class _DocumentGone(Exception):
    """The document was deleted or changed state under the running pipeline."""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def process_document(
    document_id: uuid.UUID,
    *,
    session_scope: SessionScope = get_sync_session,
    extract_fn: Callable[[bytes, str, str], ExtractionResult] = extract,
    vector_store: VectorStore | None = None,
    upload_dir: str | Path | None = None,
) -> DocumentStatus | None:
    """
    Run one processing pass over an UPLOADED document.

    Returns:
        The status the run left the document in, or None when the document
        no longer exists or was not in UPLOADED when the run started.
    """
    with session_scope() as session:
        document = session.get(Document, document_id)
        if document is None:
            logger.warning("[%s] Document not found, nothing to process", document_id)
            return None

        tenant = session.get(Tenant, document.tenant_id)
        try:
            config = ChunkingConfig.for_tenant(tenant)
            config_error = None
        except ValueError as exc:
            config, config_error = None, f"Invalid chunking configuration: {exc}"
        tenant_id = document.tenant_id
        name = document.original_name
        stored_filename = document.stored_filename
        content_type = document.content_type

    # --- Step 1: Claim ---
    if not _transition(
        session_scope, document_id, DocumentStatus.UPLOADED, DocumentStatus.PROCESSING,
    ):
        logger.warning(
            "[%s] Document is not in UPLOADED state, skipping run", document_id,
        )
        return None

    if config is None:
        logger.warning("[%s] %s", document_id, config_error)
        return _fail(session_scope, document_id, config_error)

    logger.info(
        "[%s] Processing '%s' (%s, chunk_size=%d, overlap=%d, min=%d)",
        document_id, name, content_type,
        config.chunk_size, config.chunk_overlap, config.min_chunk_size,
    )

    try:
        # --- Step 2: Extract ---
        logger.info("[%s] Step 2/5: Extracting text...", document_id)
        data = read_upload(stored_filename, upload_dir)
        extracted = extract_fn(data, content_type, name)

        _require(_set_page_count(session_scope, document_id, extracted.page_count))

        if not extracted.text or not extracted.text.strip():
            logger.warning("[%s] Extraction produced no text", document_id)
            return _fail(
                session_scope, document_id,
                "No text could be extracted from the document",
            )

        # --- Step 3: Chunk ---
        _require(_transition(
            session_scope, document_id,
            DocumentStatus.PROCESSING, DocumentStatus.CHUNKING,
        ))
        logger.info(
            "[%s] Step 3/5: Chunking %d characters...",
            document_id, len(extracted.text),
        )
        pieces = chunk_text(
            extracted.text,
            config.chunk_size,
            config.chunk_overlap,
            config.min_chunk_size,
        )
        if not pieces:
            # Whole document shorter than min_chunk_size: keep it retrievable
            pieces = [normalize_whitespace(extracted.text)]

        records = _persist_chunks(session_scope, document_id, tenant_id, name, pieces)
        logger.info("[%s] Stored %d chunks", document_id, len(records))

        # --- Step 4: Embed & index ---
        _require(_transition(
            session_scope, document_id,
            DocumentStatus.CHUNKING, DocumentStatus.EMBEDDING,
        ))
        logger.info(
            "[%s] Step 4/5: Adding %d records to the vector store...",
            document_id, len(records),
        )
        store = vector_store or get_vector_store()
        store.add(records)

        # --- Step 5: Ready ---
        if not _transition(
            session_scope, document_id,
            DocumentStatus.EMBEDDING, DocumentStatus.READY,
        ):
            _discard_orphaned_vectors(session_scope, store, document_id, records)
            return None

        logger.info("[%s] Step 5/5: Document is READY", document_id)
        return DocumentStatus.READY

    except _DocumentGone:
        logger.warning(
            "[%s] Document was deleted or changed state during processing, "
            "stopping run", document_id,
        )
        return None

    except Exception as exc:
        logger.exception("[%s] Processing failed: %s", document_id, exc)
        return _fail(session_scope, document_id, str(exc) or type(exc).__name__)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _require(ok: bool) -> None:
    if not ok:
        raise _DocumentGone()


def _transition(
    session_scope: SessionScope,
    document_id: uuid.UUID,
    expected: DocumentStatus,
    target: DocumentStatus,
) -> bool:
    """Move expected → target. False when no row matched."""
    with session_scope() as session:
        result = session.execute(
            update(Document)
            .where(Document.id == document_id, Document.status == expected)
            .values(status=target)
        )
        return result.rowcount == 1


def _set_page_count(
    session_scope: SessionScope,
    document_id: uuid.UUID,
    page_count: int | None,
) -> bool:
    with session_scope() as session:
        result = session.execute(
            update(Document)
            .where(
                Document.id == document_id,
                Document.status == DocumentStatus.PROCESSING,
            )
            .values(page_count=page_count)
        )
        return result.rowcount == 1


def _fail(
    session_scope: SessionScope,
    document_id: uuid.UUID,
    message: str,
) -> DocumentStatus | None:
    """Record FAILED from any non-terminal state."""
    with session_scope() as session:
        result = session.execute(
            update(Document)
            .where(Document.id == document_id, Document.status.in_(_NON_TERMINAL))
            .values(
                status=DocumentStatus.FAILED,
                error_message=message[:_ERROR_MESSAGE_MAX_LENGTH],
            )
        )
        if result.rowcount != 1:
            logger.warning(
                "[%s] Could not record failure, document no longer processing",
                document_id,
            )
            return None

    logger.info("[%s] Document FAILED: %s", document_id, message)
    return DocumentStatus.FAILED


def _persist_chunks(
    session_scope: SessionScope,
    document_id: uuid.UUID,
    tenant_id: uuid.UUID,
    document_name: str,
    pieces: list[str],
) -> list[VectorRecord]:
    """
    Insert all chunk rows in one transaction, indices 0..N-1.

    The document row is re-read inside the same transaction; if it is gone
    or no longer CHUNKING nothing is written.
    """
    records: list[VectorRecord] = []

    with session_scope() as session:
        status = session.execute(
            select(Document.status)
            .where(Document.id == document_id)
            .with_for_update()
        ).scalar_one_or_none()
        if status != DocumentStatus.CHUNKING:
            raise _DocumentGone()

        for index, content in enumerate(pieces):
            chunk = Chunk(
                id=uuid.uuid4(),
                document_id=document_id,
                chunk_index=index,
                content=content,
                page_number=None,
                token_count=estimate_tokens(content),
            )
            session.add(chunk)
            records.append(VectorRecord(
                chunk_id=chunk.id,
                content=content,
                tenant_id=tenant_id,
                document_id=document_id,
                document_name=document_name,
                chunk_index=index,
                page_number=None,
            ))

    return records


def _discard_orphaned_vectors(
    session_scope: SessionScope,
    store: VectorStore,
    document_id: uuid.UUID,
    records: list[VectorRecord],
) -> None:
    """Remove vectors added for a document that was deleted mid-run."""
    with session_scope() as session:
        exists = session.get(Document, document_id) is not None

    if exists:
        logger.warning(
            "[%s] Document left EMBEDDING before the run finished", document_id,
        )
        return

    logger.warning(
        "[%s] Document deleted during indexing, removing %d vectors",
        document_id, len(records),
    )
    try:
        store.delete_by_ids([r.chunk_id for r in records])
    except Exception:
        logger.exception("[%s] Failed to remove orphaned vectors", document_id)
