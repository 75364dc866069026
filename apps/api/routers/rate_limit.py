"""Per-client request quotas for the credential, checkout and enhancement endpoints.

Counters live in Redis (fixed window, ``INCR`` + ``EXPIRE``). When Redis is
unreachable each process falls back to its own in-memory window, so limits
still apply, just per worker.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "reel:rate"

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def client_identifier(request: Request) -> str:
    """The socket peer, or the first forwarded hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client and request.client.host else ""
    if peer and peer in settings.RATE_LIMIT_TRUSTED_PROXIES:
        forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return peer or "unknown"


async def _redis_hit(key: str, window_seconds: int) -> int:
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        current = await redis_client.incr(key)
        if current == 1:
            await redis_client.expire(key, window_seconds)
        return int(current)
    finally:
        await redis_client.aclose()


async def _local_hit(key: str, window_seconds: int) -> int:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count


def rate_limit(scope: str, limit: int, window_seconds: int) -> Callable[[Request], Awaitable[None]]:
    """Dependency allowing ``limit`` calls per client per ``window_seconds`` for ``scope``."""

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"{RATE_LIMIT_KEY_PREFIX}:{scope}:{client_identifier(request)}"
        try:
            hits = await _redis_hit(key, window_seconds)
        except (redis.RedisError, OSError) as exc:
            logger.debug("Rate limit store unavailable, counting locally: %s", exc)
            hits = await _local_hit(key, window_seconds)

        if hits > limit:
            raise HTTPException(status_code=429, detail="Too many requests. Try again later.")

    return _dependency
