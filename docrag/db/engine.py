# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Two engines share one schema:
# - Async engine (asyncpg) for FastAPI request handlers.
# - Sync engine (psycopg2) for Celery workers, created lazily on first use.
#
# COMMIT POLICY:
# 1. Dependency-injected (get_async_session via Depends):
#    Commits when the request handler returns, rolls back on exception.
#    Handlers MAY commit mid-request when a row must be durable before a
#    side effect (the upload endpoint commits before dispatching Celery).
#
# 2. Self-managed (get_sync_session() in workers):
#    One short session per pipeline step, committed on exit so each status
#    transition is visible to API readers immediately.
#
# DESIGN DECISION: Lazy sync engine. API processes never open a psycopg2
# pool; only code that calls get_sync_session() builds one.
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from docrag.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo: log SQL statements in debug mode.
# - pool_size / max_overflow: persistent and burst connections.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# ---------------------------------------------------------------------------
# Session Factory
# ---------------------------------------------------------------------------
# expire_on_commit=False: attributes stay loaded after commit; lazy refreshes
# are not possible outside a greenlet in async SQLAlchemy.
# ---------------------------------------------------------------------------
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Sync Engine — For Celery Workers (Lazy Initialization)
# ---------------------------------------------------------------------------
# psycopg2 is only imported when a worker first touches the database, so the
# API process can start without it.
# ---------------------------------------------------------------------------

_sync_engine = None
_sync_session_factory = None


def _get_sync_engine():
    """psycopg2 engine, built on first use."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            settings.database_url_sync,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _sync_engine


def _get_sync_session_factory():
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            bind=_get_sync_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _sync_session_factory


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    One short transaction for a pipeline step or a CLI script.

    Commits when the block exits normally and rolls back if it raises:

        with get_sync_session() as session:
            session.execute(update(Document).where(...).values(status=...))
    """
    factory = _get_sync_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit after the handler returns, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
