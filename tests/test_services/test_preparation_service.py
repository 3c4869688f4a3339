"""Tests for the TransactionPreparationService.

These tests verify that:
    1. prepare_create derives the escrow from a fresh or given seed and
       never persists anything.
    2. prepare refuses operations the record's status or the acting party
       cannot support, before the ledger is contacted.
    3. Join transactions carry the role the initiator left open.
    4. A ledger outage while preparing leaves the record store untouched.
"""

from __future__ import annotations

import base64

import pytest
from solders.keypair import Keypair
from solders.transaction import Transaction
from sqlalchemy import func, select

from escrow_relay.domain.enums import CurrencyKind, EscrowStatus, Operation, Role
from escrow_relay.domain.exceptions import (
    EscrowAlreadyExistsError,
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
)
from escrow_relay.infrastructure.database.orm_models import EscrowEvent, EscrowRecord
from escrow_relay.infrastructure.database.repositories import EscrowRecordRepository
from escrow_relay.services.completion_reconciler import CompletionReconciler
from escrow_relay.services.preparation_service import TransactionPreparationService


@pytest.fixture
def service(db_session, fake_ledger, sponsor, program_id) -> TransactionPreparationService:
    return TransactionPreparationService(db_session, fake_ledger, sponsor, program_id)


def _decode(prepared) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(prepared.prepared.transaction))


class TestPrepareCreate:
    @pytest.mark.asyncio
    async def test_fresh_seed(self, service, resolver, db_session, buyer, arbiter, sponsor) -> None:
        result = await service.prepare_create(
            initiator=str(buyer.pubkey()),
            initiator_role=Role.BUYER,
            amount=5_000,
            arbiter=str(arbiter.pubkey()),
            currency_kind=CurrencyKind.NATIVE,
        )

        seed = bytes.fromhex(result.random_seed)
        escrow = resolver.derive_escrow_address(seed)
        assert result.escrow_address == str(escrow)
        assert result.vault_address == str(resolver.derive_vault_address(escrow))
        assert result.fee_collector == str(sponsor.pubkey())
        assert result.prepared.still_required_signers == (str(buyer.pubkey()),)
        assert result.prepared.instruction_count == 1
        assert await EscrowRecordRepository(db_session).get_by_address(str(escrow)) is None

    @pytest.mark.asyncio
    async def test_given_seed_is_used(self, service, resolver, seed, buyer, arbiter) -> None:
        result = await service.prepare_create(
            initiator=str(buyer.pubkey()),
            initiator_role=Role.BUYER,
            amount=5_000,
            arbiter=str(arbiter.pubkey()),
            currency_kind=CurrencyKind.NATIVE,
            random_seed=seed.hex(),
        )
        assert result.escrow_address == str(resolver.derive_escrow_address(seed))
        body = result.to_dict()
        assert body["operation"] == "create"
        assert body["random_seed"] == seed.hex()

    @pytest.mark.asyncio
    async def test_configured_fee_collector(
        self, db_session, fake_ledger, sponsor, program_id, buyer, arbiter
    ) -> None:
        collector = Keypair().pubkey()
        service = TransactionPreparationService(
            db_session, fake_ledger, sponsor, program_id, fee_collector=str(collector)
        )
        result = await service.prepare_create(
            initiator=str(buyer.pubkey()),
            initiator_role=Role.BUYER,
            amount=1,
            arbiter=str(arbiter.pubkey()),
            currency_kind=CurrencyKind.NATIVE,
        )
        assert result.fee_collector == str(collector)
        data = bytes(_decode(result).message.instructions[0].data)
        assert data[74:106] == bytes(collector)

    @pytest.mark.asyncio
    async def test_taken_address(
        self, service, db_session, program_id, create_kwargs, seed, buyer, arbiter
    ) -> None:
        await CompletionReconciler(db_session, program_id).complete_create(**create_kwargs())
        with pytest.raises(EscrowAlreadyExistsError):
            await service.prepare_create(
                initiator=str(buyer.pubkey()),
                initiator_role=Role.BUYER,
                amount=1,
                arbiter=str(arbiter.pubkey()),
                currency_kind=CurrencyKind.NATIVE,
                random_seed=seed,
            )

    @pytest.mark.asyncio
    async def test_token_requires_mint(self, service, buyer, arbiter, fake_ledger) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await service.prepare_create(
                initiator=str(buyer.pubkey()),
                initiator_role=Role.BUYER,
                amount=1,
                arbiter=str(arbiter.pubkey()),
                currency_kind=CurrencyKind.TOKEN,
            )
        assert exc_info.value.field == "mint_address"
        assert fake_ledger.blockhash_calls == 0

    @pytest.mark.asyncio
    async def test_arbiter_cannot_initiate(self, service, buyer) -> None:
        with pytest.raises(InvalidInputError):
            await service.prepare_create(
                initiator=str(buyer.pubkey()),
                initiator_role=Role.BUYER,
                amount=1,
                arbiter=str(buyer.pubkey()),
                currency_kind=CurrencyKind.NATIVE,
            )


class TestPrepare:
    @pytest.mark.asyncio
    async def test_join_takes_open_role(self, service, db_session, program_id, create_kwargs) -> None:
        record = await CompletionReconciler(db_session, program_id).complete_create(**create_kwargs())
        joiner = Keypair().pubkey()

        result = await service.prepare(Operation.JOIN, record.address, str(joiner))

        data = bytes(_decode(result).message.instructions[0].data)
        assert data == bytes([1, Role.SELLER]) + bytes(joiner)
        assert result.prepared.still_required_signers == (str(joiner),)
        assert result.vault_address == record.vault_address

    @pytest.mark.asyncio
    async def test_status_checked_before_ledger(
        self, service, db_session, program_id, create_kwargs, buyer, fake_ledger
    ) -> None:
        record = await CompletionReconciler(db_session, program_id).complete_create(**create_kwargs())
        with pytest.raises(InvalidStateTransitionError):
            await service.prepare(Operation.FUND, record.address, str(buyer.pubkey()))
        assert fake_ledger.blockhash_calls == 0

    @pytest.mark.asyncio
    async def test_participant_cannot_join(
        self, service, db_session, program_id, create_kwargs, arbiter
    ) -> None:
        record = await CompletionReconciler(db_session, program_id).complete_create(**create_kwargs())
        with pytest.raises(InvalidInputError):
            await service.prepare(Operation.JOIN, record.address, str(arbiter.pubkey()))

    @pytest.mark.asyncio
    async def test_unknown_escrow(self, service, buyer) -> None:
        with pytest.raises(EscrowNotFoundError):
            await service.prepare(Operation.JOIN, str(Keypair().pubkey()), str(buyer.pubkey()))

    @pytest.mark.asyncio
    async def test_malformed_escrow_address(self, service, buyer) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await service.prepare(Operation.JOIN, "xyz", str(buyer.pubkey()))
        assert exc_info.value.field == "escrow_address"


async def _row_counts(session) -> tuple[int, int]:
    records = await session.scalar(select(func.count()).select_from(EscrowRecord))
    events = await session.scalar(select(func.count()).select_from(EscrowEvent))
    return records, events


class TestLedgerFailures:
    """A failed checkpoint fetch or existence check aborts with nothing stored."""

    @pytest.mark.asyncio
    async def test_create_checkpoint_unavailable(
        self, service, db_session, fake_ledger, buyer, arbiter
    ) -> None:
        fake_ledger.unavailable.add("getLatestBlockhash")

        with pytest.raises(LedgerUnavailableError) as exc_info:
            await service.prepare_create(
                initiator=str(buyer.pubkey()),
                initiator_role=Role.BUYER,
                amount=5_000,
                arbiter=str(arbiter.pubkey()),
                currency_kind=CurrencyKind.NATIVE,
            )

        assert exc_info.value.category == "external"
        assert exc_info.value.method == "getLatestBlockhash"
        assert await _row_counts(db_session) == (0, 0)

    @pytest.mark.asyncio
    async def test_join_checkpoint_unavailable(
        self, service, db_session, program_id, create_kwargs, fake_ledger, seller
    ) -> None:
        record = await CompletionReconciler(db_session, program_id).complete_create(**create_kwargs())
        before = await _row_counts(db_session)
        fake_ledger.unavailable.add("getLatestBlockhash")

        with pytest.raises(LedgerUnavailableError):
            await service.prepare(Operation.JOIN, record.address, str(seller.pubkey()))

        assert await _row_counts(db_session) == before
        stored = await EscrowRecordRepository(db_session).get_by_address(record.address)
        assert stored.status == EscrowStatus.CREATED
        assert stored.seller is None

    @pytest.mark.asyncio
    async def test_token_fund_existence_check_unavailable(
        self,
        service,
        db_session,
        program_id,
        create_kwargs,
        fake_ledger,
        mint,
        buyer,
        seller,
        new_tx_id,
    ) -> None:
        reconciler = CompletionReconciler(db_session, program_id)
        record = await reconciler.complete_create(
            **create_kwargs(currency_kind=CurrencyKind.TOKEN, mint_address=str(mint))
        )
        await reconciler.complete(Operation.JOIN, record.address, str(seller.pubkey()), new_tx_id())
        before = await _row_counts(db_session)
        fake_ledger.unavailable.add("getAccountInfo")

        with pytest.raises(LedgerUnavailableError) as exc_info:
            await service.prepare(Operation.FUND, record.address, str(buyer.pubkey()))

        assert exc_info.value.method == "getAccountInfo"
        assert fake_ledger.blockhash_calls == 0
        assert await _row_counts(db_session) == before
        stored = await EscrowRecordRepository(db_session).get_by_address(record.address)
        assert stored.status == EscrowStatus.INITIALIZED
