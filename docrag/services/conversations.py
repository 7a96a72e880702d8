# =============================================================================
# Conversation Store — Tenant-Scoped Reads and Deletes
# =============================================================================
# Conversations and messages are written only by the query orchestrator.
# This module lists, loads and deletes them, always filtered by tenant.
#
# DESIGN DECISION: A conversation owned by another tenant is reported as
# not found, exactly like an unknown id.
# =============================================================================

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.db.models import Conversation
from docrag.services.errors import ConversationNotFoundError

logger = logging.getLogger(__name__)


async def list_conversations(
    session: AsyncSession,
    tenant_id: uuid.UUID,
) -> list[Conversation]:
    """Most recently updated first."""
    result = await session.execute(
        select(Conversation)
        .where(Conversation.tenant_id == tenant_id)
        .order_by(Conversation.updated_at.desc())
    )
    return list(result.scalars().all())


async def get_conversation(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    conversation_id: uuid.UUID,
) -> Conversation:
    result = await session.execute(
        select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.tenant_id == tenant_id,
        )
    )
    conversation = result.scalar_one_or_none()
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    return conversation


async def delete_conversation(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    conversation_id: uuid.UUID,
) -> None:
    """Delete a conversation with its messages and document associations."""
    conversation = await get_conversation(session, tenant_id, conversation_id)
    await session.delete(conversation)
    await session.flush()
    logger.info("Conversation deleted: %s", conversation_id)
