"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the ledger client, the fee sponsor, services and configuration. Tests swap
the ledger and sponsor through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends

from escrow_relay.config import Settings, get_settings
from escrow_relay.infrastructure.database.engine import get_async_session
from escrow_relay.ledger.client import LedgerClient, get_ledger
from escrow_relay.ledger.sponsor import get_sponsor
from escrow_relay.services.completion_reconciler import CompletionReconciler
from escrow_relay.services.escrow_service import EscrowService
from escrow_relay.services.preparation_service import TransactionPreparationService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from solders.keypair import Keypair
    from sqlalchemy.ext.asyncio import AsyncSession


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_ledger_client() -> LedgerClient:
    """Provide the ledger RPC client."""
    return get_ledger()


def get_fee_sponsor() -> Keypair:
    """Provide the fee sponsor keypair."""
    return get_sponsor()


async def get_preparation_service(
    session: AsyncSession = Depends(get_db_session),
    ledger: LedgerClient = Depends(get_ledger_client),
    sponsor: Keypair = Depends(get_fee_sponsor),
    settings: Settings = Depends(get_app_settings),
) -> TransactionPreparationService:
    return TransactionPreparationService(
        session,
        ledger,
        sponsor,
        program_id=settings.escrow_program_id,
        fee_collector=settings.fee_collector_address or None,
    )


async def get_reconciler(
    session: AsyncSession = Depends(get_db_session),
    ledger: LedgerClient = Depends(get_ledger_client),
    settings: Settings = Depends(get_app_settings),
) -> CompletionReconciler:
    return CompletionReconciler(
        session,
        program_id=settings.escrow_program_id,
        ledger=ledger,
        verify_finality=settings.verify_completion_finality,
    )


async def get_escrow_service(
    session: AsyncSession = Depends(get_db_session),
) -> EscrowService:
    return EscrowService(session)
