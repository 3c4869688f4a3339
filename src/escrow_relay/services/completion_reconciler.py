"""Completion Reconciler — moves the off-chain record after a submission.

The caller reports a transaction id once the remaining parties have signed
and submitted. The reconciler re-checks that the local record is still in
the status the operation expects and then advances it with a single
conditional update, so a lost race surfaces as a precondition conflict
instead of silently overwriting the status.

The ledger stays authoritative. By default the transaction id is trusted
as reported; with ``verify_completion_finality`` the signature status is
checked on the ledger first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from solders.signature import Signature
from statemachine.exceptions import TransitionNotAllowed

from escrow_relay.domain.enums import (
    EVENT_BY_OPERATION,
    CurrencyKind,
    EscrowStatus,
    Operation,
    Role,
)
from escrow_relay.domain.exceptions import (
    EscrowAlreadyExistsError,
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
    PreconditionConflictError,
)
from escrow_relay.domain.parties import ensure_acting_party, joiner_role
from escrow_relay.domain.state_machine import validate_transition
from escrow_relay.infrastructure.database.orm_models import EscrowRecord
from escrow_relay.infrastructure.database.repositories import (
    EscrowRecordRepository,
    EventRepository,
)
from escrow_relay.ledger.addresses import AddressResolver, parse_pubkey
from escrow_relay.ledger.codec import parse_seed
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_relay.ledger.client import LedgerClient

logger = get_logger(__name__)

# BIGINT column limit; the codec itself accepts the full u64 range.
MAX_RECORD_AMOUNT = 2**63 - 1


def parse_transaction_id(value: str) -> str:
    """Validate a base58 64-byte transaction signature and return it normalized."""
    try:
        return str(Signature.from_string(value))
    except (ValueError, TypeError) as err:
        raise InvalidInputError(
            f"transaction_id is not a valid signature: {value!r}", field="transaction_id"
        ) from err


class CompletionReconciler:
    """Applies reported completions to the escrow record store."""

    def __init__(
        self,
        session: AsyncSession,
        program_id: str,
        ledger: LedgerClient | None = None,
        verify_finality: bool = False,
    ) -> None:
        if verify_finality and ledger is None:
            raise ValueError("verify_finality requires a ledger client")
        self._records = EscrowRecordRepository(session)
        self._events = EventRepository(session)
        self._resolver = AddressResolver(program_id)
        self._ledger = ledger
        self._verify_finality = verify_finality

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def complete_create(
        self,
        *,
        escrow_address: str,
        vault_address: str,
        random_seed: str | bytes,
        initiator: str,
        initiator_role: Role,
        amount: int,
        arbiter: str,
        currency_kind: CurrencyKind,
        fee_sponsor: str,
        fee_collector: str,
        transaction_id: str,
        mint_address: str | None = None,
        description: str | None = None,
    ) -> EscrowRecord:
        """Insert the record for a submitted create in status ``created``.

        Raises:
            InvalidInputError: Malformed input or addresses that do not
                derive from the seed.
            EscrowAlreadyExistsError: The address already has a record,
                which is left untouched.
        """
        seed = parse_seed(random_seed)
        initiator_key = str(parse_pubkey(initiator, "initiator"))
        arbiter_key = str(parse_pubkey(arbiter, "arbiter"))
        fee_sponsor_key = str(parse_pubkey(fee_sponsor, "fee_sponsor"))
        fee_collector_key = str(parse_pubkey(fee_collector, "fee_collector"))
        tx_id = parse_transaction_id(transaction_id)
        role = Role(initiator_role)
        currency = CurrencyKind(currency_kind)
        mint = _validate_currency(currency, mint_address)
        _validate_amount(amount)
        if initiator_key == arbiter_key:
            raise InvalidInputError("The arbiter cannot be the initiator", field="arbiter")

        self._resolver.verify_escrow_addresses(seed, escrow_address, vault_address)
        await self._check_finality(tx_id)

        record = EscrowRecord(
            address=str(parse_pubkey(escrow_address, "escrow_address")),
            vault_address=str(parse_pubkey(vault_address, "vault_address")),
            program_id=str(self._resolver.program_id),
            random_seed=seed.hex(),
            arbiter=arbiter_key,
            buyer=initiator_key if role == Role.BUYER else None,
            seller=initiator_key if role == Role.SELLER else None,
            initiator_role=role.name.lower(),
            amount=amount,
            currency_kind=currency.value,
            mint_address=mint,
            fee_sponsor=fee_sponsor_key,
            fee_collector=fee_collector_key,
            status=EscrowStatus.CREATED.value,
            last_transaction_id=tx_id,
            description=description,
        )
        if not await self._records.insert_if_absent(record):
            raise EscrowAlreadyExistsError(record.address)

        await self._events.record(
            escrow_address=record.address,
            event_type=EVENT_BY_OPERATION[Operation.CREATE],
            old_status=None,
            new_status=EscrowStatus.CREATED,
            actor=initiator_key,
            transaction_id=tx_id,
            metadata={"amount": amount, "currency_kind": currency.value},
        )
        logger.info(
            "escrow.reconciled",
            operation=Operation.CREATE.value,
            escrow=record.address,
            status=record.status,
            transaction_id=tx_id,
        )
        return record

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def complete(
        self,
        operation: Operation,
        escrow_address: str,
        acting_party: str,
        transaction_id: str,
    ) -> EscrowRecord:
        """Advance the record for a submitted lifecycle operation.

        Raises:
            InvalidInputError: Malformed addresses or transaction id.
            EscrowNotFoundError: No record for ``escrow_address``.
            PreconditionConflictError: The record is not in a status the
                operation can start from, or it changed concurrently.
        """
        operation = Operation(operation)
        if operation == Operation.CREATE:
            raise InvalidInputError("Use complete_create for create")
        address = str(parse_pubkey(escrow_address, "escrow_address"))
        actor = str(parse_pubkey(acting_party, "acting_party"))
        tx_id = parse_transaction_id(transaction_id)

        record = await self._records.get_by_address(address)
        if record is None:
            raise EscrowNotFoundError(address)

        old_status = EscrowStatus(record.status)
        try:
            new_status = EscrowStatus(validate_transition(old_status.value, operation.value))
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(old_status.value, operation.value) from err

        ensure_acting_party(
            operation, actor, buyer=record.buyer, seller=record.seller, arbiter=record.arbiter
        )

        values: dict = {"status": new_status.value, "last_transaction_id": tx_id}
        if operation == Operation.JOIN:
            role = joiner_role(record.buyer, record.seller)
            values["buyer" if role == Role.BUYER else "seller"] = actor

        await self._check_finality(tx_id)

        updated = await self._records.conditional_update(address, old_status, values)
        if updated is None:
            raise PreconditionConflictError(
                f"Escrow {address} changed while completing {operation.value}",
                code="CONCURRENT_UPDATE",
            )

        await self._events.record(
            escrow_address=address,
            event_type=EVENT_BY_OPERATION[operation],
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            transaction_id=tx_id,
        )
        logger.info(
            "escrow.reconciled",
            operation=operation.value,
            escrow=address,
            old_status=old_status.value,
            status=new_status.value,
            transaction_id=tx_id,
        )
        return updated

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _check_finality(self, transaction_id: str) -> None:
        if not self._verify_finality:
            return
        status = await self._ledger.get_signature_status(Signature.from_string(transaction_id))
        if status is None:
            raise PreconditionConflictError(
                f"Transaction {transaction_id} is unknown to the ledger",
                code="TRANSACTION_NOT_FOUND",
            )
        if not status.succeeded:
            raise PreconditionConflictError(
                f"Transaction {transaction_id} failed on the ledger: {status.error}",
                code="TRANSACTION_FAILED",
            )
        logger.debug(
            "ledger.signature_confirmed",
            transaction_id=transaction_id,
            confirmation_status=status.confirmation_status,
        )


def _validate_currency(currency: CurrencyKind, mint_address: str | None) -> str | None:
    if currency == CurrencyKind.TOKEN:
        if not mint_address:
            raise InvalidInputError("Token escrows require mint_address", field="mint_address")
        return str(parse_pubkey(mint_address, "mint_address"))
    if mint_address:
        raise InvalidInputError("Native escrows must not set mint_address", field="mint_address")
    return None


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInputError("amount must be an integer", field="amount")
    if not 0 < amount <= MAX_RECORD_AMOUNT:
        raise InvalidInputError(
            f"amount must be between 1 and {MAX_RECORD_AMOUNT}", field="amount"
        )
