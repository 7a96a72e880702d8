# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────┐      ┌──────────────────┐      ┌──────────────────────┐
# │  tenants     │─1:N─▶│  documents       │─1:N─▶│  chunks              │
# ├──────────────┤      ├──────────────────┤      ├──────────────────────┤
# │ id (PK)      │      │ id (PK)          │      │ id (PK)              │
# │ name         │      │ tenant_id (FK)   │      │ document_id (FK)     │
# │ chunk_size?  │      │ original_name    │      │ chunk_index          │
# │ chunk_overlap?│     │ stored_filename  │      │ content              │
# │ min_chunk_size?│    │ content_type     │      │ page_number?         │
# └──────┬───────┘      │ status           │      │ token_count          │
#        │              │ error_message?   │      └──────────────────────┘
#        │              └────────┬─────────┘
#        │                       │ N:M (conversation_documents)
#        │              ┌────────┴─────────┐      ┌──────────────────────┐
#        └───────1:N───▶│  conversations   │─1:N─▶│  messages            │
#                       ├──────────────────┤      ├──────────────────────┤
#                       │ id (PK)          │      │ id (PK, serial)      │
#                       │ tenant_id (FK)   │      │ conversation_id (FK) │
#                       │ title?           │      │ role, content        │
#                       └──────────────────┘      └──────────────────────┘
#
# Every tenant-owned row carries tenant_id; every multi-tenant query in the
# services layer filters on it.
#
# chunk_vectors holds the pgvector backend's records. It is owned by the
# vector store, not by the relational model: rows are written and deleted
# only through PgVectorStore.
#
# DESIGN DECISION: String enum for document status. Rows read the same in
# psql as in API responses.
#
# DESIGN DECISION: Messages are ordered by their serial id. Both messages of
# a turn are written in one transaction and can share a created_at value.
#
# DESIGN DECISION: Tenant chunking overrides are nullable columns; NULL
# means "use the global setting".
# =============================================================================

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from docrag.config import settings


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class shared by all ORM models."""

    pass


class DocumentStatus(str, enum.Enum):
    """
    Processing state of a document.

    State machine:
        UPLOADED → PROCESSING → CHUNKING → EMBEDDING → READY
            └──────────┴────────────┴──────────┴──────→ FAILED

    READY and FAILED are terminal for a processing run. Only an explicit
    reprocess request moves a terminal document back to UPLOADED.
    """

    UPLOADED = "UPLOADED"        # Row + file persisted, task dispatched
    PROCESSING = "PROCESSING"    # Extracting text
    CHUNKING = "CHUNKING"        # Splitting text and persisting chunks
    EMBEDDING = "EMBEDDING"      # Handing chunks to the vector store
    READY = "READY"              # Eligible for retrieval
    FAILED = "FAILED"            # See error_message

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.READY, DocumentStatus.FAILED)


class MessageRole(str, enum.Enum):
    """Speaker of a persisted conversation message."""

    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: str | None) -> MessageRole | None:
        """Map a stored role string to a role, or None when unrecognised."""
        try:
            return cls(value)
        except ValueError:
            return None


# =============================================================================
# Tenancy & Authentication
# =============================================================================


class Tenant(Base):
    """
    Isolation boundary. Owns documents, conversations and API keys.

    The three chunking columns override the global settings for this
    tenant's documents when set.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    chunk_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chunk_overlap: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_chunk_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}')>"


class ApiKey(Base):
    """
    Bearer credential bound to exactly one tenant.

    Only the SHA-256 hash of the key is stored; the raw key is shown once
    at creation time.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Human-readable label (e.g., "frontend-app", "ingest-bot")
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # First 8 chars of the key for identification in logs
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)

    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApiKey(id={self.id}, name='{self.name}', "
            f"prefix='{self.key_prefix}', active={self.is_active})>"
        )


# =============================================================================
# Documents & Chunks
# =============================================================================


class Document(Base):
    """
    An uploaded file and its processing state.

    Status, error_message and page_count are written only by the document
    pipeline (and reset by an explicit reprocess).
    """

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )

    # API key name (or "anonymous" when auth is disabled)
    uploaded_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Filename as uploaded by the user, used as the display name in citations
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)

    # Generated name of the raw bytes under settings.upload_dir
    stored_filename: Mapped[str] = mapped_column(String(600), nullable=False)

    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, name="document_status"),
        nullable=False,
        default=DocumentStatus.UPLOADED,
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Celery task ID of the most recent processing run
    celery_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, name='{self.original_name}', "
            f"status={self.status.value})>"
        )


class Chunk(Base):
    """
    A retrievable segment of a document's extracted text.

    Created in a single batch per processing run; never updated. Indices
    within a document are exactly 0..N-1.
    """

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunk_document_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Source page (1-indexed) when the extractor can attribute one
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Advisory estimate: ceil(len(content) / 4)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, doc_id={self.document_id}, "
            f"index={self.chunk_index}, tokens={self.token_count})>"
        )


# B-tree index for per-document chunk lookups (delete, count)
chunk_document_idx = Index("idx_chunk_document_id", Chunk.document_id)

document_tenant_idx = Index(
    "idx_document_tenant_created",
    Document.tenant_id,
    Document.created_at,
)


# =============================================================================
# Conversations & Messages
# =============================================================================

# Documents a conversation was last queried against
conversation_documents = Table(
    "conversation_documents",
    Base.metadata,
    Column(
        "conversation_id",
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "document_id",
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Conversation(Base):
    """
    A tenant-owned chat thread.

    The title is taken from the first question and never overwritten.
    Messages are loaded in append order.
    """

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )

    title: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    messages: Mapped[list[Message]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
        lazy="selectin",
    )

    documents: Mapped[list[Document]] = relationship(
        "Document",
        secondary=conversation_documents,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, title='{self.title}')>"


class Message(Base):
    """
    One immutable turn in a conversation.

    The serial primary key is the append order; messages written in the
    same transaction can share a created_at value.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Stored as plain text; converted with MessageRole.parse() when read
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    conversation: Mapped[Conversation] = relationship(
        "Conversation", back_populates="messages",
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, role='{self.role}')>"


conversation_tenant_idx = Index(
    "idx_conversation_tenant_updated",
    Conversation.tenant_id,
    Conversation.updated_at,
)

message_conversation_idx = Index(
    "idx_message_conversation",
    Message.conversation_id,
    Message.id,
)


# =============================================================================
# pgvector Backend Storage
# =============================================================================
#
# One row per chunk. `id` equals the relational chunk id so that deletes
# can be issued by chunk id. page_number uses -1 for "unknown".
#
# HNSW index with vector_cosine_ops: approximate nearest neighbour search
# on cosine distance.
# =============================================================================


class ChunkVector(Base):
    """Embedding record written by PgVectorStore."""

    __tablename__ = "chunk_vectors"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    document_name: Mapped[str] = mapped_column(String(500), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=False,
    )


chunk_vector_embedding_idx = Index(
    "idx_chunk_vector_embedding_hnsw",
    ChunkVector.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

# Every search filters on tenant_id AND document_id
chunk_vector_scope_idx = Index(
    "idx_chunk_vector_tenant_document",
    ChunkVector.tenant_id,
    ChunkVector.document_id,
)
