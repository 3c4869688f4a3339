"""ASGI entry point for the Escrow Relay.

Startup order matters: the fee sponsor loads before anything touches the
network, because a relay that cannot pay fees has nothing to serve. The
record store and the ledger client follow. Redis comes last and is
optional; without it duplicate completions are still caught by the
record store, just later.

    uvicorn escrow_relay.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from redis.exceptions import RedisError

from escrow_relay.api.middleware import setup_middleware
from escrow_relay.api.routes.escrow import router as escrow_router
from escrow_relay.api.routes.health import VERSION
from escrow_relay.api.routes.health import router as health_router
from escrow_relay.api.routes.instructions import router as instructions_router
from escrow_relay.config import get_settings
from escrow_relay.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = get_logger(__name__)


async def _start_services() -> None:
    from escrow_relay.infrastructure.database.engine import init_db
    from escrow_relay.infrastructure.redis_client import init_redis
    from escrow_relay.ledger.client import init_ledger
    from escrow_relay.ledger.sponsor import init_sponsor

    init_sponsor()
    await init_db()
    init_ledger()
    try:
        await init_redis()
    except (RedisError, OSError) as exc:
        logger.warning("app.redis_unavailable", error=str(exc))


async def _stop_services() -> None:
    from escrow_relay.infrastructure.database.engine import close_db
    from escrow_relay.infrastructure.redis_client import close_redis
    from escrow_relay.ledger.client import close_ledger

    await close_ledger()
    await close_db()
    await close_redis()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)
    logger.info(
        "app.starting",
        env=settings.app_env,
        program_id=settings.escrow_program_id,
        rpc_url=settings.solana_rpc_url,
    )

    await _start_services()
    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    logger.info("app.shutting_down")
    await _stop_services()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Build the FastAPI app with middleware and the health, escrow and instruction routers."""
    settings = get_settings()
    docs_enabled = settings.is_development

    app = FastAPI(
        title="Escrow Relay",
        description=(
            "Prepares fee-sponsored Solana escrow transactions and reconciles "
            "the off-chain escrow records once they are submitted."
        ),
        version=VERSION,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
    )
    setup_middleware(app)

    for router in (health_router, escrow_router, instructions_router):
        app.include_router(router)
    return app


app = create_app()
