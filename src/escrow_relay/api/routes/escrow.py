"""Escrow REST API routes.

Every lifecycle operation is a prepare/complete pair: prepare returns a
sponsor-signed transaction for the parties to sign and submit, complete
reconciles the local record once the caller reports the transaction id.

Routes:
    POST   /api/v1/escrows/prepare/create                — Prepare a new escrow
    POST   /api/v1/escrows/complete/create               — Record a submitted create
    POST   /api/v1/escrows/{address}/{operation}/prepare — Prepare an operation
    POST   /api/v1/escrows/{address}/{operation}/complete — Reconcile an operation
    GET    /api/v1/escrows?party=...                     — Escrows of a party
    GET    /api/v1/escrows/{address}                     — Record details
    GET    /api/v1/escrows/{address}/status              — Status + allowed operations
    GET    /api/v1/escrows/{address}/events              — Audit trail
    GET    /api/v1/escrows/{address}/onchain             — Decoded on-chain account
    PATCH  /api/v1/escrows/{address}                     — Update the description
    DELETE /api/v1/escrows/{address}                     — Delete (created/completed only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from solders.keypair import Keypair  # noqa: TC002 - FastAPI resolves annotations
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from escrow_relay.api.deps import (
    get_db_session,
    get_escrow_service,
    get_fee_sponsor,
    get_ledger_client,
    get_preparation_service,
    get_reconciler,
)
from escrow_relay.domain.enums import EscrowStatus, Operation
from escrow_relay.domain.exceptions import InvalidInputError
from escrow_relay.infrastructure.redis_client import completion_claim
from escrow_relay.ledger.client import LedgerClient  # noqa: TC001
from escrow_relay.logging_config import get_logger
from escrow_relay.schemas.escrow import (
    CompleteCreateRequest,
    CompleteRequest,
    CompleteResponse,
    EscrowEventResponse,
    EscrowResponse,
    EscrowStatusResponse,
    OnChainSnapshotResponse,
    PrepareCreateRequest,
    PrepareRequest,
    PrepareResponse,
    UpdateDescriptionRequest,
)
from escrow_relay.services.completion_reconciler import CompletionReconciler  # noqa: TC001
from escrow_relay.services.escrow_service import EscrowService  # noqa: TC001
from escrow_relay.services.preparation_service import TransactionPreparationService  # noqa: TC001

router = APIRouter(prefix="/api/v1/escrows", tags=["Escrow"])
logger = get_logger(__name__)


def _parse_operation(raw: str) -> Operation:
    """Accept ``seller_confirm`` and ``seller-confirm`` alike; create has its own routes."""
    try:
        operation = Operation(raw.replace("-", "_").lower())
    except ValueError as err:
        raise InvalidInputError(f"Unknown operation: {raw}", field="operation") from err
    if operation == Operation.CREATE:
        raise InvalidInputError("Use /prepare/create and /complete/create", field="operation")
    return operation


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "/prepare/create",
    response_model=PrepareResponse,
    summary="Prepare a sponsor-signed create transaction",
)
async def prepare_create(
    request: PrepareCreateRequest,
    svc: TransactionPreparationService = Depends(get_preparation_service),
) -> PrepareResponse:
    prepared = await svc.prepare_create(
        initiator=request.initiator,
        initiator_role=request.role,
        amount=request.amount,
        arbiter=request.arbiter,
        currency_kind=request.currency_kind,
        mint_address=request.mint_address,
        random_seed=request.random_seed,
    )
    return PrepareResponse(**prepared.to_dict())


@router.post(
    "/complete/create",
    response_model=CompleteResponse,
    status_code=201,
    summary="Record a submitted create transaction",
)
async def complete_create(
    request: CompleteCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    reconciler: CompletionReconciler = Depends(get_reconciler),
    svc: TransactionPreparationService = Depends(get_preparation_service),
    sponsor: Keypair = Depends(get_fee_sponsor),
) -> CompleteResponse:
    """Insert the record in status ``created``; fails if the address exists."""
    async with completion_claim(request.transaction_id):
        record = await reconciler.complete_create(
            escrow_address=request.escrow_address,
            vault_address=request.vault_address,
            random_seed=request.random_seed,
            initiator=request.initiator,
            initiator_role=request.role,
            amount=request.amount,
            arbiter=request.arbiter,
            currency_kind=request.currency_kind,
            mint_address=request.mint_address,
            fee_sponsor=str(sponsor.pubkey()),
            fee_collector=svc.fee_collector,
            transaction_id=request.transaction_id,
            description=request.description,
        )
        await session.commit()
    return CompleteResponse(
        escrow_address=record.address,
        status=record.status,
        last_transaction_id=record.last_transaction_id,
    )


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------


@router.post(
    "/{address}/{operation}/prepare",
    response_model=PrepareResponse,
    summary="Prepare a sponsor-signed transaction for an operation",
)
async def prepare_operation(
    address: str,
    operation: str,
    request: PrepareRequest,
    svc: TransactionPreparationService = Depends(get_preparation_service),
) -> PrepareResponse:
    prepared = await svc.prepare(_parse_operation(operation), address, request.acting_party)
    return PrepareResponse(**prepared.to_dict())


@router.post(
    "/{address}/{operation}/complete",
    response_model=CompleteResponse,
    summary="Reconcile the record after an operation was submitted",
)
async def complete_operation(
    address: str,
    operation: str,
    request: CompleteRequest,
    session: AsyncSession = Depends(get_db_session),
    reconciler: CompletionReconciler = Depends(get_reconciler),
) -> CompleteResponse:
    parsed = _parse_operation(operation)
    async with completion_claim(request.transaction_id):
        record = await reconciler.complete(
            parsed, address, request.acting_party, request.transaction_id
        )
        await session.commit()
    return CompleteResponse(
        escrow_address=record.address,
        status=record.status,
        last_transaction_id=record.last_transaction_id,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[EscrowResponse],
    summary="List escrows where a party is buyer, seller or arbiter",
)
async def list_escrows(
    party: str = Query(..., min_length=32, max_length=44),
    status: EscrowStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowResponse]:
    records = await svc.list_for_party(party, status=status, limit=limit, offset=offset)
    return [EscrowResponse.model_validate(r) for r in records]


@router.get(
    "/{address}",
    response_model=EscrowResponse,
    summary="Get escrow record details",
)
async def get_escrow(
    address: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    record = await svc.get_escrow(address)
    return EscrowResponse.model_validate(record)


@router.get(
    "/{address}/status",
    response_model=EscrowStatusResponse,
    summary="Get status and the operations allowed from it",
)
async def get_escrow_status(
    address: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowStatusResponse:
    return EscrowStatusResponse(**await svc.get_status(address))


@router.get(
    "/{address}/events",
    response_model=list[EscrowEventResponse],
    summary="Get audit trail",
)
async def get_escrow_events(
    address: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowEventResponse]:
    events = await svc.get_events(address)
    return [EscrowEventResponse.model_validate(e) for e in events]


@router.get(
    "/{address}/onchain",
    response_model=OnChainSnapshotResponse,
    summary="Decode the live on-chain escrow account",
)
async def get_onchain_snapshot(
    address: str,
    svc: EscrowService = Depends(get_escrow_service),
    ledger: LedgerClient = Depends(get_ledger_client),
) -> OnChainSnapshotResponse:
    return OnChainSnapshotResponse(**await svc.get_onchain_snapshot(address, ledger))


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


@router.patch(
    "/{address}",
    response_model=EscrowResponse,
    summary="Update the escrow description",
)
async def update_escrow_description(
    address: str,
    request: UpdateDescriptionRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    record = await svc.update_description(address, request.description, request.actor)
    return EscrowResponse.model_validate(record)


@router.delete(
    "/{address}",
    status_code=204,
    summary="Delete an escrow record without funds in custody",
)
async def delete_escrow(
    address: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> Response:
    await svc.delete_escrow(address)
    return Response(status_code=204)
