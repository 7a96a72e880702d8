# =============================================================================
# API Dependencies — Tenant Resolution & Rate Limiting
# =============================================================================
#
# get_current_tenant() is the single source of the caller's tenant id:
#
#   auth_enabled=True   Authorization: Bearer <key>, SHA-256 looked up in
#                       api_keys; the key's tenant is the caller's tenant
#   auth_enabled=False  every request runs as settings.dev_tenant_id (the
#                       tenant row is created on first use)
#
# Routers depend on rate_limit_chat / rate_limit_upload instead of calling
# the limiter directly, so tests can override them.
#
# DESIGN DECISION: FastAPI dependency (not middleware) for auth. Only routes
# that need a tenant pay for the key lookup, and /health stays open.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docrag.config import settings
from docrag.db.engine import get_async_session
from docrag.db.models import ApiKey, Tenant
from docrag.services.auth import hash_api_key
from docrag.services.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TenantContext:
    """The authenticated caller."""

    tenant_id: uuid.UUID
    principal: str  # API key name, or "anonymous" with auth disabled


async def get_current_tenant(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> TenantContext:
    """
    Resolve the caller's tenant.

    Raises:
        HTTPException 401: Missing or unknown API key.
        HTTPException 403: Key deactivated or expired.
    """
    if not settings.auth_enabled:
        tenant_id = uuid.UUID(settings.dev_tenant_id)
        await _ensure_dev_tenant(session, tenant_id)
        return TenantContext(tenant_id=tenant_id, principal="anonymous")

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide 'Authorization: Bearer <key>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await session.execute(
        select(ApiKey).where(ApiKey.key_hash == hash_api_key(credentials.credentials))
    )
    api_key = result.scalar_one_or_none()

    if api_key is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not api_key.is_active:
        raise HTTPException(status_code=403, detail="API key has been deactivated.")

    now = datetime.now(UTC)
    if api_key.expires_at is not None:
        expires_at = api_key.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at < now:
            raise HTTPException(status_code=403, detail="API key has expired.")

    api_key.last_used_at = now
    return TenantContext(tenant_id=api_key.tenant_id, principal=api_key.name)


async def rate_limit_chat(
    tenant: TenantContext = Depends(get_current_tenant),
) -> TenantContext:
    await check_rate_limit("chat", tenant.tenant_id)
    return tenant


async def rate_limit_upload(
    tenant: TenantContext = Depends(get_current_tenant),
) -> TenantContext:
    await check_rate_limit("upload", tenant.tenant_id)
    return tenant


async def _ensure_dev_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> None:
    if await session.get(Tenant, tenant_id) is None:
        logger.info("Creating development tenant %s", tenant_id)
        session.add(Tenant(id=tenant_id, name="Development"))
        await session.flush()
