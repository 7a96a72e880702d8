# =============================================================================
# Query Orchestrator — Retrieval-Augmented Chat
# =============================================================================
#
# One chat turn, strictly sequential:
#
#   1. Readiness     resolve document ids within the tenant; all must be READY
#   2. Retrieval     vector search, filter = tenant AND document id ∈ scope
#   3. Context       numbered "[Source i - name, Chunk j]" blocks, in the
#                    order the store returned them
#   4. Conversation  reuse the tenant's conversation or start a new one
#   5. History       last N persisted messages, unknown roles skipped
#   6. Prompt        history + one transient augmented user turn
#   7. Generation    LLM call; any failure raises GenerationError
#   8. Citations     one per retrieved chunk, score passed through
#   9. Persistence   raw question (user) then answer (assistant), title once
#
# Nothing is added to the session before step 7 succeeds, so a failed
# generation leaves the conversation untouched.
#
# DESIGN DECISION: Plain sequential function, not an agent graph. Every
# turn runs the same steps with no branching on the question.
#
# DESIGN DECISION: Readiness is checked before any search. A scope naming a
# missing or foreign document is rejected as not found and never searched.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.config import settings
from docrag.db.models import (
    Conversation,
    Document,
    DocumentStatus,
    Message,
    MessageRole,
)
from docrag.services.errors import (
    DocumentNotFoundError,
    DocumentsNotReadyError,
    GenerationError,
    InvalidInputError,
    NotReadyDocument,
    VectorStoreError,
)
from docrag.services.llm import LLMProvider, get_llm_provider
from docrag.services.vectorstore import (
    SearchFilter,
    VectorSearchResult,
    VectorStore,
    get_vector_store,
)

logger = logging.getLogger(__name__)

NO_CONTEXT_PLACEHOLDER = "No relevant context found in the uploaded documents."

_PROMPT_TEMPLATE = (
    "Based on the following context from the uploaded documents, please "
    "answer my question.\n"
    "If the context doesn't contain enough information, clearly state that.\n"
    "Always reference which source(s) you're using in your answer.\n"
    "\n"
    "{context}\n"
    "\n"
    "=== QUESTION ===\n"
    "{question}\n"
)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Citation:
    document_id: uuid.UUID
    document_name: str
    content_preview: str
    chunk_index: int
    page_number: int | None
    similarity_score: float | None


@dataclass
class ChatResult:
    conversation_id: uuid.UUID
    answer: str
    citations: list[Citation] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def chat(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    question: str,
    document_ids: list[uuid.UUID],
    conversation_id: uuid.UUID | None = None,
    vector_store: VectorStore | None = None,
    llm: LLMProvider | None = None,
) -> ChatResult:
    """
    Answer a question grounded in the given documents.

    Raises:
        InvalidInputError: Blank question or empty document scope.
        DocumentNotFoundError: Any id not owned by the tenant.
        DocumentsNotReadyError: Any resolved document not READY.
        VectorStoreError: The similarity search failed.
        GenerationError: The LLM call failed.
    """
    if not question or not question.strip():
        raise InvalidInputError("Question must not be blank")
    if not document_ids:
        raise InvalidInputError("At least one document id is required")

    scope = list(dict.fromkeys(document_ids))
    logger.info(
        "Chat request: tenant=%s, documents=%d, conversation=%s",
        tenant_id, len(scope), conversation_id,
    )

    # --- Step 1: Readiness ---
    documents = await _resolve_ready_documents(session, tenant_id, scope)

    # --- Step 2: Retrieval ---
    store = vector_store or get_vector_store()
    search_filter = SearchFilter(tenant_id=tenant_id, document_ids=tuple(scope))
    try:
        hits = await store.search(question, settings.retrieval_top_k, search_filter)
    except Exception as exc:
        logger.exception("Vector search failed for tenant %s", tenant_id)
        raise VectorStoreError("Similarity search failed") from exc
    logger.info("Retrieved %d chunks", len(hits))

    # --- Step 3: Context ---
    context = build_context(hits)

    # --- Step 4: Conversation ---
    conversation = None
    if conversation_id is not None:
        conversation = await _find_conversation(session, tenant_id, conversation_id)
        if conversation is None:
            logger.info(
                "Conversation %s not found for tenant, starting a new one",
                conversation_id,
            )

    # --- Step 5 & 6: History + transient augmented turn ---
    history = build_history(conversation.messages if conversation else [])
    turns = [
        *history,
        {
            "role": MessageRole.USER.value,
            "content": _PROMPT_TEMPLATE.format(context=context, question=question),
        },
    ]

    # --- Step 7: Generation ---
    try:
        provider = llm or get_llm_provider()
        response = await provider.complete(turns, system=settings.chat_system_prompt)
    except Exception as exc:
        logger.exception("Answer generation failed")
        raise GenerationError("Answer generation failed, please retry") from exc
    answer = response.content

    # --- Step 8: Citations ---
    citations = [build_citation(hit) for hit in hits]

    # --- Step 9: Persistence ---
    if conversation is None:
        conversation = Conversation(tenant_id=tenant_id, messages=[], documents=[])
        session.add(conversation)

    conversation.messages.append(Message(role=MessageRole.USER.value, content=question))
    conversation.messages.append(
        Message(role=MessageRole.ASSISTANT.value, content=answer)
    )
    if not conversation.title or not conversation.title.strip():
        conversation.title = truncate(question, settings.conversation_title_max_length)
    conversation.documents = documents
    conversation.updated_at = datetime.now(UTC)
    await session.flush()

    logger.info("Chat response generated for conversation %s", conversation.id)
    return ChatResult(
        conversation_id=conversation.id,
        answer=answer,
        citations=citations,
    )


# ---------------------------------------------------------------------------
# Building Blocks
# ---------------------------------------------------------------------------


def build_context(hits: list[VectorSearchResult]) -> str:
    if not hits:
        return NO_CONTEXT_PLACEHOLDER

    parts = ["=== RELEVANT DOCUMENT CONTEXT ===\n\n"]
    for i, hit in enumerate(hits, start=1):
        name = hit.metadata.get("document_name", "Unknown")
        chunk_index = hit.metadata.get("chunk_index", "?")
        parts.append(f"[Source {i} - {name}, Chunk {chunk_index}]\n")
        parts.append(hit.content)
        parts.append("\n\n---\n\n")
    return "".join(parts)


def build_history(messages: list[Message]) -> list[dict[str, str]]:
    """Last max_history_messages messages as role-tagged turns."""
    window = messages[-settings.max_history_messages:] if settings.max_history_messages > 0 else []

    turns: list[dict[str, str]] = []
    for message in window:
        role = MessageRole.parse(message.role)
        if role is None:
            logger.debug("Skipping message %s with unknown role %r", message.id, message.role)
            continue
        turns.append({"role": role.value, "content": message.content})
    return turns


def build_citation(hit: VectorSearchResult) -> Citation:
    metadata = hit.metadata
    return Citation(
        document_id=uuid.UUID(str(metadata["document_id"])),
        document_name=metadata.get("document_name", "Unknown"),
        content_preview=truncate(hit.content, settings.citation_preview_length),
        chunk_index=int(metadata.get("chunk_index", 0)),
        page_number=parse_page_number(metadata.get("page_number")),
        similarity_score=hit.similarity_score,
    )


def truncate(text: str, max_length: int) -> str:
    return text[:max_length] + "..." if len(text) > max_length else text


def parse_page_number(value: object) -> int | None:
    """Stored page number, or None for missing/sentinel/unparseable values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        page = int(value)
    except (TypeError, ValueError):
        return None
    return page if page >= 1 else None


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _resolve_ready_documents(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document_ids: list[uuid.UUID],
) -> list[Document]:
    result = await session.execute(
        select(Document).where(
            Document.id.in_(document_ids),
            Document.tenant_id == tenant_id,
        )
    )
    found = {document.id: document for document in result.scalars().all()}

    missing = [document_id for document_id in document_ids if document_id not in found]
    if missing:
        logger.info("Chat scope rejected: %d documents not found for tenant", len(missing))
        raise DocumentNotFoundError(missing)

    documents = [found[document_id] for document_id in document_ids]
    not_ready = [
        NotReadyDocument(document_id=d.id, name=d.original_name, status=d.status.value)
        for d in documents
        if d.status != DocumentStatus.READY
    ]
    if not_ready:
        raise DocumentsNotReadyError(not_ready)

    return documents


async def _find_conversation(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    conversation_id: uuid.UUID,
) -> Conversation | None:
    result = await session.execute(
        select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()
