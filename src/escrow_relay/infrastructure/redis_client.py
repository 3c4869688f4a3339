"""Redis client for completion idempotency claims.

A completion is claimed by its transaction id before the record store is
touched, so replaying the same signature is rejected even after the
status has moved on. Redis is optional: without it the claim is skipped
and the record store's conditional update remains the only guard.

Usage:
    from escrow_relay.infrastructure.redis_client import completion_claim

    async with completion_claim(transaction_id):
        await reconciler.complete(...)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from escrow_relay.config import get_settings
from escrow_relay.domain.exceptions import DuplicateOperationError
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

COMPLETION_KEY_PREFIX = "idempotency:completion:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    # Verify connectivity
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def set_redis(client: aioredis.Redis | None) -> None:
    """Install a client directly, bypassing settings."""
    global _redis_client
    _redis_client = client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def claim_transaction(transaction_id: str) -> bool | None:
    """Atomically claim ``transaction_id`` for reconciliation.

    Returns True if claimed, False if it was already claimed, and None if
    Redis is not available.
    """
    if _redis_client is None:
        return None
    settings = get_settings()
    try:
        claimed = await _redis_client.set(
            f"{COMPLETION_KEY_PREFIX}{transaction_id}",
            "1",
            nx=True,
            ex=settings.redis_idempotency_ttl_seconds,
        )
    except RedisError as exc:
        logger.warning("idempotency.redis_error", error=str(exc))
        return None
    return bool(claimed)


async def release_transaction(transaction_id: str) -> None:
    if _redis_client is None:
        return
    try:
        await _redis_client.delete(f"{COMPLETION_KEY_PREFIX}{transaction_id}")
    except RedisError as exc:
        logger.warning("idempotency.release_failed", transaction_id=transaction_id, error=str(exc))


@asynccontextmanager
async def completion_claim(transaction_id: str) -> AsyncIterator[None]:
    """Hold the claim for ``transaction_id`` while reconciling.

    Raises DuplicateOperationError if the id was already claimed. The claim
    is released if the body raises, so the caller may retry.
    """
    claimed = await claim_transaction(transaction_id)
    if claimed is False:
        raise DuplicateOperationError(transaction_id)
    if claimed is None:
        logger.warning("idempotency.skipped", transaction_id=transaction_id)
    try:
        yield
    except BaseException:
        if claimed:
            await release_transaction(transaction_id)
        raise
