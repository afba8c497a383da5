"""Redis-backed per-client rate limiting with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Tuple

from fastapi import Request
import redis.asyncio as redis

from config import settings
from services.errors import APIError

logger = logging.getLogger(__name__)

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


class RateLimitedError(APIError):
    def __init__(self, scope: str, retry_after: int):
        super().__init__(
            status_code=429,
            detail=f"Too many {scope} requests. Try again later.",
            error_code="RATE_LIMITED",
            headers={"Retry-After": str(retry_after)},
        )


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit


async def _consume_redis_quota(key: str, limit: int, window_seconds: int) -> bool:
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        current = await redis_client.incr(key)
        if current == 1:
            await redis_client.expire(key, window_seconds)
    finally:
        await redis_client.aclose()
    return current <= limit


def rate_limit(scope: str, limit: int, window_seconds: int) -> Callable:
    """Return a FastAPI dependency that caps requests per client and scope."""

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"loyalty:rate:{scope}:{_client_identifier(request)}"
        try:
            allowed = await _consume_redis_quota(key, limit, window_seconds)
        except Exception as exc:
            logger.debug("Redis unavailable for rate limit %s, using local counter: %s", scope, exc)
            allowed = await _consume_local_quota(key, limit, window_seconds)

        if not allowed:
            logger.info("rate_limited scope=%s key=%s", scope, key)
            raise RateLimitedError(scope, window_seconds)

    return _dependency
