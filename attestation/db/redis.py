"""Redis connection management.

When REDIS_URL is configured we create one connection pool for the
process and the entity-storage backend keeps its documents there, so
every API instance and every CLI run sees the same attestations.  When it
is not set, redis_pool is None and entity storage falls back to the
in-memory resource connector; no Redis server is needed for development
or tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from attestation.core.config import SETTINGS

logger = logging.getLogger(__name__)


def create_redis(url: str) -> aioredis.Redis:  # type: ignore[type-arg]
    return aioredis.from_url(
        url,
        decode_responses=True,  # resource documents are JSON text
        max_connections=20,
    )


if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = create_redis(SETTINGS.redis_url)  # type: ignore[type-arg]
else:
    redis_pool = None


async def redis_status(client) -> str:
    """``ok``, ``error`` or ``disabled``; used by /health."""
    if client is None:
        return "disabled"
    try:
        await client.ping()
    except Exception:
        logger.exception("Redis health check failed")
        return "error"
    return "ok"


@asynccontextmanager
async def lifespan_redis():
    """Verify the connection on startup and release the pool on shutdown."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, entity storage is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except Exception:
        # Keep serving: nft attestations do not need Redis, and /health
        # reports the outage.
        logger.exception("Redis connection failed on startup")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
