# =============================================================================
# FastAPI Application
# =============================================================================
#
# Run the API with:
#   uvicorn docrag.main:app --reload
#
# STARTUP (lifespan):
#   1. Configure logging at settings.log_level
#   2. Optionally create the pgvector extension and missing tables
#   3. Ensure the development tenant exists when auth is disabled
#
# ERROR MAPPING: service errors become JSON {"detail": ...} responses with
# the status codes listed in docrag.services.errors.
# =============================================================================

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from docrag.api import chat, documents
from docrag.config import settings
from docrag.db.engine import async_engine, async_session_factory
from docrag.db.models import Base, Tenant
from docrag.models.responses import HealthResponse
from docrag.services.errors import (
    ConversationNotFoundError,
    DocRagError,
    DocumentNotFoundError,
    DocumentsNotReadyError,
    GenerationError,
    InvalidInputError,
    InvalidStateError,
    ProcessingDispatchError,
    RateLimitExceededError,
    VectorStoreError,
)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


async def init_database() -> None:
    """Create the vector extension and any missing tables."""
    async with async_engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    if not settings.auth_enabled:
        tenant_id = uuid.UUID(settings.dev_tenant_id)
        async with async_session_factory() as session:
            if await session.get(Tenant, tenant_id) is None:
                session.add(Tenant(id=tenant_id, name="Development"))
                await session.commit()
                logger.info("Created development tenant %s", tenant_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    if settings.create_tables_on_startup:
        await init_database()

    yield

    await async_engine.dispose()
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------

_STATUS_CODES: dict[type[DocRagError], int] = {
    InvalidInputError: 400,
    DocumentNotFoundError: 404,
    ConversationNotFoundError: 404,
    DocumentsNotReadyError: 409,
    InvalidStateError: 409,
    RateLimitExceededError: 429,
    VectorStoreError: 502,
    GenerationError: 503,
    ProcessingDispatchError: 503,
}


async def docrag_error_handler(request: Request, exc: DocRagError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    body: dict = {"detail": str(exc)}
    headers: dict[str, str] = {}

    if isinstance(exc, DocumentsNotReadyError):
        body["documents"] = [
            {"document_id": str(d.document_id), "name": d.name, "status": d.status}
            for d in exc.documents
        ]
    if isinstance(exc, (RateLimitExceededError, GenerationError)):
        headers["Retry-After"] = str(exc.retry_after)

    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc)

    return JSONResponse(status_code=status_code, content=body, headers=headers or None)


# ---------------------------------------------------------------------------
# Application Factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Multi-tenant document question answering: upload documents, "
            "then chat with them using retrieval-augmented generation."
        ),
        lifespan=lifespan,
    )

    application.add_exception_handler(DocRagError, docrag_error_handler)
    application.include_router(documents.router)
    application.include_router(chat.router)

    @application.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return application


app = create_app()
