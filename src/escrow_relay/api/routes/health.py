"""Liveness and dependency probe.

The record store and the RPC node decide the overall status. Redis only
backs the completion claims, so "disabled" or "unhealthy" there is
reported without degrading the relay.
"""

from __future__ import annotations

from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from escrow_relay.infrastructure.database.engine import get_session_factory
from escrow_relay.infrastructure.redis_client import get_redis
from escrow_relay.ledger.client import get_ledger
from escrow_relay.logging_config import get_logger
from escrow_relay.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

VERSION = "0.1.0"
HEALTHY = "healthy"


async def _probe_database() -> str:
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


async def _probe_ledger() -> str:
    try:
        healthy = await get_ledger().is_healthy()
    except RuntimeError as exc:
        healthy = False
        logger.error("health.ledger_check_failed", error=str(exc))
    return HEALTHY if healthy else "unhealthy"


async def _probe_redis() -> str:
    try:
        await get_redis().ping()
    except RuntimeError:
        return "disabled"
    except RedisError as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Reports the relay's status and that of the record store, RPC node and Redis.",
)
async def health_check() -> HealthResponse:
    database = await _probe_database()
    ledger = await _probe_ledger()
    return HealthResponse(
        status="ok" if database == ledger == HEALTHY else "degraded",
        version=VERSION,
        database=database,
        ledger=ledger,
        redis=await _probe_redis(),
    )
