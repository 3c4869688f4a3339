"""Transaction Preparation Service — the prepare half of every operation.

Resolves addresses, composes the account plan, encodes the instruction and
hands the result to the sponsor-signing assembler. Nothing is persisted:
a failed preparation leaves no trace, and a successful one only produces
a transaction the caller may or may not submit.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

from escrow_relay.domain.enums import CurrencyKind, Operation, Role
from escrow_relay.domain.exceptions import (
    EscrowAlreadyExistsError,
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
)
from escrow_relay.domain.parties import ensure_acting_party, joiner_role
from escrow_relay.domain.state_machine import is_transition_allowed
from escrow_relay.infrastructure.database.repositories import EscrowRecordRepository
from escrow_relay.ledger.accounts import AccountSetBuilder, EscrowContext
from escrow_relay.ledger.addresses import AddressResolver, parse_pubkey
from escrow_relay.ledger.assembler import PreparedTransaction, SponsoredTransactionAssembler
from escrow_relay.ledger.codec import parse_seed
from escrow_relay.logging_config import get_logger
from escrow_relay.services.completion_reconciler import MAX_RECORD_AMOUNT

if TYPE_CHECKING:
    from solders.keypair import Keypair
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_relay.infrastructure.database.orm_models import EscrowRecord
    from escrow_relay.ledger.client import LedgerClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedOperation:
    """A prepared transaction plus the escrow it targets."""

    operation: Operation
    prepared: PreparedTransaction
    escrow_address: str
    vault_address: str
    random_seed: str | None = None
    fee_collector: str | None = None

    def to_dict(self) -> dict:
        body = {
            "operation": self.operation.value,
            **self.prepared.to_dict(),
            "escrow_address": self.escrow_address,
            "vault_address": self.vault_address,
        }
        if self.random_seed is not None:
            body["random_seed"] = self.random_seed
        if self.fee_collector is not None:
            body["fee_collector"] = self.fee_collector
        return body


class TransactionPreparationService:
    """Prepares sponsor-signed transactions for every escrow operation."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerClient,
        sponsor: Keypair,
        program_id: str,
        fee_collector: str | None = None,
    ) -> None:
        self._records = EscrowRecordRepository(session)
        self._resolver = AddressResolver(program_id, ledger)
        self._builder = AccountSetBuilder(self._resolver, sponsor.pubkey())
        self._assembler = SponsoredTransactionAssembler(ledger, sponsor)
        self._fee_collector = (
            parse_pubkey(fee_collector, "fee_collector") if fee_collector else sponsor.pubkey()
        )

    @property
    def fee_collector(self) -> str:
        return str(self._fee_collector)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def prepare_create(
        self,
        *,
        initiator: str,
        initiator_role: Role,
        amount: int,
        arbiter: str,
        currency_kind: CurrencyKind,
        mint_address: str | None = None,
        random_seed: str | bytes | None = None,
    ) -> PreparedOperation:
        """Prepare a create. A fresh random seed is drawn unless one is given."""
        initiator_key = parse_pubkey(initiator, "initiator")
        arbiter_key = parse_pubkey(arbiter, "arbiter")
        if initiator_key == arbiter_key:
            raise InvalidInputError("The arbiter cannot be the initiator", field="arbiter")
        role = Role(initiator_role)
        currency = CurrencyKind(currency_kind)
        if currency == CurrencyKind.TOKEN and not mint_address:
            raise InvalidInputError("Token escrows require mint_address", field="mint_address")
        if currency == CurrencyKind.NATIVE and mint_address:
            raise InvalidInputError("Native escrows must not set mint_address", field="mint_address")
        mint = parse_pubkey(mint_address, "mint_address") if mint_address else None
        if isinstance(amount, bool) or not isinstance(amount, int) or not 0 < amount <= MAX_RECORD_AMOUNT:
            raise InvalidInputError(
                f"amount must be an integer between 1 and {MAX_RECORD_AMOUNT}", field="amount"
            )

        seed = parse_seed(random_seed) if random_seed is not None else secrets.token_bytes(32)

        plan = self._builder.build_create(
            initiator=initiator_key,
            role=role,
            amount=amount,
            arbiter=arbiter_key,
            fee_collector=self._fee_collector,
            random_seed=seed,
            mint=mint,
        )
        escrow = self._resolver.derive_escrow_address(seed)
        if await self._records.get_by_address(str(escrow)) is not None:
            raise EscrowAlreadyExistsError(str(escrow))
        vault = self._resolver.derive_vault_address(escrow)

        prepared = await self._assembler.assemble(plan.instructions, plan.required_signers)
        logger.info(
            "escrow.prepared",
            operation=Operation.CREATE.value,
            escrow=str(escrow),
            currency_kind=currency.value,
            instruction_count=prepared.instruction_count,
        )
        return PreparedOperation(
            operation=Operation.CREATE,
            prepared=prepared,
            escrow_address=str(escrow),
            vault_address=str(vault),
            random_seed=seed.hex(),
            fee_collector=str(self._fee_collector),
        )

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def prepare(
        self,
        operation: Operation,
        escrow_address: str,
        acting_party: str,
    ) -> PreparedOperation:
        """Prepare any post-create operation on an existing escrow.

        Raises:
            EscrowNotFoundError: No record for the address.
            InvalidStateTransitionError: The record's status does not allow it.
            InvalidInputError: The acting party cannot sign this operation.
        """
        operation = Operation(operation)
        if operation == Operation.CREATE:
            raise InvalidInputError("Use prepare_create for create")
        address = str(parse_pubkey(escrow_address, "escrow_address"))
        actor = parse_pubkey(acting_party, "acting_party")

        record = await self._records.get_by_address(address)
        if record is None:
            raise EscrowNotFoundError(address)
        if not is_transition_allowed(record.status, operation.value):
            raise InvalidStateTransitionError(record.status, operation.value)
        ensure_acting_party(
            operation, str(actor), buyer=record.buyer, seller=record.seller, arbiter=record.arbiter
        )

        role = joiner_role(record.buyer, record.seller) if operation == Operation.JOIN else None
        plan = await self._builder.build(operation, _context_from_record(record), actor, role=role)
        prepared = await self._assembler.assemble(plan.instructions, plan.required_signers)

        logger.info(
            "escrow.prepared",
            operation=operation.value,
            escrow=address,
            status=record.status,
            auxiliary_instructions=len(plan.auxiliary),
            instruction_count=prepared.instruction_count,
        )
        return PreparedOperation(
            operation=operation,
            prepared=prepared,
            escrow_address=address,
            vault_address=record.vault_address,
        )


def _context_from_record(record: EscrowRecord) -> EscrowContext:
    return EscrowContext(
        escrow=parse_pubkey(record.address, "escrow_address"),
        vault=parse_pubkey(record.vault_address, "vault_address"),
        arbiter=parse_pubkey(record.arbiter, "arbiter"),
        currency_kind=CurrencyKind(record.currency_kind),
        buyer=parse_pubkey(record.buyer, "buyer") if record.buyer else None,
        seller=parse_pubkey(record.seller, "seller") if record.seller else None,
        mint=parse_pubkey(record.mint_address, "mint_address") if record.mint_address else None,
    )
