# =============================================================================
# Rate Limiter — Redis-Based Per-Tenant Token Buckets
# =============================================================================
#
# One bucket per (limit name, tenant id), stored as a Redis hash under
# `ratelimit:{name}:{tenant_id}` with two fields: `tokens` and `ts`.
# A bucket holds up to `capacity` tokens and refills continuously at
# capacity / period tokens per second; each request takes one token.
#
#   chat    settings.chat_rate_limit_per_minute   per 60 s
#   upload  settings.upload_rate_limit_per_hour   per 3600 s
#
# DESIGN DECISION: Token bucket over a fixed or sliding window. A tenant
# may burst up to the full allowance (a batch of uploads after a quiet
# hour) and is then paced at the refill rate, and Retry-After is exact:
# the time until one whole token is back.
#
# DESIGN DECISION: Refill and take run in one Lua script. Redis executes
# scripts atomically, so concurrent API workers sharing a tenant can never
# both spend the last token. Buckets are shared by every API process and
# survive restarts; an idle bucket expires once it would be full again.
#
# DESIGN DECISION: Graceful degradation. If Redis is unavailable, the
# request is allowed through with a warning, as an outage of the limiter
# must not take the API down with it.
#
# Uses Redis db 2 (db 0/1 reserved for Celery).
# =============================================================================

from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import Callable

from redis.exceptions import RedisError

from docrag.config import settings
from docrag.services.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

# KEYS[1] bucket hash
# ARGV: capacity, refill rate (tokens/s), now (s), ttl (s)
# Returns 0 when a token was taken, otherwise the wait in milliseconds.
TOKEN_BUCKET_SCRIPT = """
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])

local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1])
local ts = tonumber(state[2])
if tokens == nil or ts == nil then
    tokens = capacity
    ts = now
end

tokens = math.min(capacity, tokens + math.max(now - ts, 0) * rate)

local wait_ms = 0
if tokens >= 1 then
    tokens = tokens - 1
else
    wait_ms = math.ceil((1 - tokens) / rate * 1000)
end

redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(now))
redis.call('EXPIRE', KEYS[1], ttl)
return wait_ms
"""

_LIMITS: dict[str, tuple[Callable[[], int], float]] = {
    "chat": (lambda: settings.chat_rate_limit_per_minute, 60.0),
    "upload": (lambda: settings.upload_rate_limit_per_hour, 3600.0),
}

# Lazy Redis connection
_redis_client = None


def _get_rate_limit_redis():
    """Lazily create and cache the async Redis client for rate limiting."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        _redis_client = aioredis.from_url(
            settings.rate_limit_redis_url,
            decode_responses=True,
        )
    return _redis_client


def bucket_key(name: str, tenant_id: uuid.UUID) -> str:
    return f"ratelimit:{name}:{tenant_id}"


async def check_rate_limit(name: str, tenant_id: uuid.UUID) -> None:
    """
    Apply the named limit ("chat" or "upload") to a tenant.

    Raises:
        RateLimitExceededError: no token left; carries the whole seconds
            until the next one (at least 1).

    No-op when:
    - settings.rate_limit_enabled is False
    - Redis is unavailable (graceful degradation)
    """
    if not settings.rate_limit_enabled:
        return

    capacity_of, period_seconds = _LIMITS[name]
    capacity = capacity_of()
    if capacity < 1:
        raise ValueError(f"Rate limit '{name}' must allow at least one request")
    refill_rate = capacity / period_seconds

    try:
        r = _get_rate_limit_redis()
        wait_ms = await r.eval(
            TOKEN_BUCKET_SCRIPT,
            1,
            bucket_key(name, tenant_id),
            capacity,
            refill_rate,
            time.time(),
            math.ceil(period_seconds),
        )
    except (RedisError, OSError) as e:
        logger.warning(
            "Rate limiter unavailable (Redis error): %s. Allowing request through.",
            e,
        )
        return

    wait_ms = int(wait_ms)
    if wait_ms > 0:
        retry_after = max(1, math.ceil(wait_ms / 1000))
        logger.warning(
            "Rate limit '%s' exceeded for tenant %s, retry in %ds",
            name, tenant_id, retry_after,
        )
        raise RateLimitExceededError(retry_after)
