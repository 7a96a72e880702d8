# =============================================================================
# Documents API — Upload, List, Inspect, Reprocess, Delete
# =============================================================================
#
# ENDPOINTS:
#   POST   /api/v1/documents                  — upload, 201, processing queued
#   GET    /api/v1/documents                  — tenant's documents, newest first
#   GET    /api/v1/documents/{id}             — one document + chunk count
#   POST   /api/v1/documents/{id}/reprocess   — new run for READY/FAILED
#   DELETE /api/v1/documents/{id}             — vectors, chunks, row, file
#
# Upload returns as soon as the row and bytes are stored. Poll GET /{id}
# until status is READY (or FAILED, see error_message).
#
# DESIGN DECISION: 201 Created for uploads. The document resource exists as
# soon as the response is sent; processing progress is a field on it.
# =============================================================================

import logging
import uuid

from fastapi import APIRouter, Depends, File, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.api.deps import TenantContext, get_current_tenant, rate_limit_upload
from docrag.db.engine import get_async_session
from docrag.db.models import Document
from docrag.models.responses import DocumentResponse, ErrorResponse
from docrag.services import documents as document_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/documents", tags=["Documents"])


def _to_response(document: Document, chunk_count: int = 0) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        original_name=document.original_name,
        content_type=document.content_type,
        file_size=document.file_size,
        page_count=document.page_count,
        status=document.status.value,
        error_message=document.error_message,
        chunk_count=chunk_count,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=201,
    summary="Upload a document for processing",
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def upload_document(
    file: UploadFile = File(..., description="PDF, DOCX, HTML, Markdown or plain text"),
    tenant: TenantContext = Depends(rate_limit_upload),
    session: AsyncSession = Depends(get_async_session),
) -> DocumentResponse:
    data = await file.read()
    document = await document_service.create_document(
        session,
        tenant_id=tenant.tenant_id,
        filename=file.filename,
        content_type=file.content_type,
        data=data,
        uploaded_by=tenant.principal,
    )
    return _to_response(document)


@router.get("", response_model=list[DocumentResponse], summary="List documents")
async def list_documents(
    tenant: TenantContext = Depends(get_current_tenant),
    session: AsyncSession = Depends(get_async_session),
) -> list[DocumentResponse]:
    documents = await document_service.list_documents(session, tenant.tenant_id)
    counts = await document_service.count_chunks(session, [d.id for d in documents])
    return [_to_response(d, counts[d.id]) for d in documents]


@router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Get a document and its processing status",
    responses={404: {"model": ErrorResponse}},
)
async def get_document(
    document_id: uuid.UUID,
    tenant: TenantContext = Depends(get_current_tenant),
    session: AsyncSession = Depends(get_async_session),
) -> DocumentResponse:
    document = await document_service.get_document(session, tenant.tenant_id, document_id)
    counts = await document_service.count_chunks(session, [document.id])
    return _to_response(document, counts[document.id])


@router.post(
    "/{document_id}/reprocess",
    response_model=DocumentResponse,
    status_code=202,
    summary="Start a new processing run",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reprocess_document(
    document_id: uuid.UUID,
    tenant: TenantContext = Depends(rate_limit_upload),
    session: AsyncSession = Depends(get_async_session),
) -> DocumentResponse:
    document = await document_service.reprocess_document(
        session, tenant.tenant_id, document_id,
    )
    return _to_response(document)


@router.delete(
    "/{document_id}",
    status_code=204,
    summary="Delete a document, its chunks and its vectors",
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def delete_document(
    document_id: uuid.UUID,
    tenant: TenantContext = Depends(get_current_tenant),
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    await document_service.delete_document(session, tenant.tenant_id, document_id)
    return Response(status_code=204)
