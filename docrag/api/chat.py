# =============================================================================
# Chat API — Grounded Q&A and Conversation History
# =============================================================================
#
# ENDPOINTS:
#   POST   /api/v1/chat                        — answer with citations
#   GET    /api/v1/chat/conversations          — most recently updated first
#   GET    /api/v1/chat/conversations/{id}     — messages + document scope
#   DELETE /api/v1/chat/conversations/{id}
# =============================================================================

import logging
import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.api.deps import TenantContext, get_current_tenant, rate_limit_chat
from docrag.db.engine import get_async_session
from docrag.db.models import Conversation
from docrag.models.requests import ChatRequest
from docrag.models.responses import (
    ChatResponse,
    CitationResponse,
    ConversationResponse,
    ConversationSummaryResponse,
    ErrorResponse,
    MessageResponse,
)
from docrag.services import conversations as conversation_service
from docrag.services.orchestrator import chat as run_chat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["Chat"])


@router.post(
    "",
    response_model=ChatResponse,
    summary="Ask a question about one or more documents",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Documents not ready"},
        503: {"model": ErrorResponse, "description": "Generation failed, retry"},
    },
)
async def chat(
    request: ChatRequest,
    tenant: TenantContext = Depends(rate_limit_chat),
    session: AsyncSession = Depends(get_async_session),
) -> ChatResponse:
    result = await run_chat(
        session,
        tenant_id=tenant.tenant_id,
        question=request.question,
        document_ids=request.document_ids,
        conversation_id=request.conversation_id,
    )
    return ChatResponse(
        conversation_id=result.conversation_id,
        answer=result.answer,
        sources=[
            CitationResponse(
                document_id=c.document_id,
                document_name=c.document_name,
                chunk_content=c.content_preview,
                chunk_index=c.chunk_index,
                page_number=c.page_number,
                similarity_score=c.similarity_score,
            )
            for c in result.citations
        ],
        timestamp=result.generated_at,
    )


@router.get(
    "/conversations",
    response_model=list[ConversationSummaryResponse],
    summary="List conversations",
)
async def list_conversations(
    tenant: TenantContext = Depends(get_current_tenant),
    session: AsyncSession = Depends(get_async_session),
) -> list[ConversationSummaryResponse]:
    conversations = await conversation_service.list_conversations(session, tenant.tenant_id)
    return [
        ConversationSummaryResponse(
            id=c.id,
            title=c.title,
            message_count=len(c.messages),
            created_at=c.created_at,
            updated_at=c.updated_at,
        )
        for c in conversations
    ]


@router.get(
    "/conversations/{conversation_id}",
    response_model=ConversationResponse,
    summary="Get a conversation with its messages",
    responses={404: {"model": ErrorResponse}},
)
async def get_conversation(
    conversation_id: uuid.UUID,
    tenant: TenantContext = Depends(get_current_tenant),
    session: AsyncSession = Depends(get_async_session),
) -> ConversationResponse:
    conversation = await conversation_service.get_conversation(
        session, tenant.tenant_id, conversation_id,
    )
    return _to_response(conversation)


@router.delete(
    "/conversations/{conversation_id}",
    status_code=204,
    summary="Delete a conversation",
    responses={404: {"model": ErrorResponse}},
)
async def delete_conversation(
    conversation_id: uuid.UUID,
    tenant: TenantContext = Depends(get_current_tenant),
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    await conversation_service.delete_conversation(session, tenant.tenant_id, conversation_id)
    return Response(status_code=204)


def _to_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        messages=[MessageResponse.model_validate(m) for m in conversation.messages],
        document_ids=[d.id for d in conversation.documents],
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )
