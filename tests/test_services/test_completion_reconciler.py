"""Tests for the CompletionReconciler.

These tests verify that:
    1. A create completion inserts the record in ``created`` with an event.
    2. A duplicate create is rejected and leaves the first record untouched.
    3. Each lifecycle completion moves exactly one edge of the status graph.
    4. Out-of-order completions, wrong acting parties and lost races are
       precondition conflicts or validation errors that change nothing.
    5. With finality checks on, unknown or failed signatures are refused.
"""

from __future__ import annotations

import pytest
from solders.keypair import Keypair

from escrow_relay.domain.enums import CurrencyKind, EscrowStatus, EventType, Operation, Role
from escrow_relay.domain.exceptions import (
    EscrowAlreadyExistsError,
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
    PreconditionConflictError,
)
from escrow_relay.infrastructure.database.repositories import (
    EscrowRecordRepository,
    EventRepository,
)
from escrow_relay.ledger.client import SignatureStatus
from escrow_relay.services.completion_reconciler import CompletionReconciler


@pytest.fixture
def reconciler(db_session, program_id) -> CompletionReconciler:
    return CompletionReconciler(db_session, program_id)


async def _advance(reconciler, address, steps, new_tx_id) -> None:
    for operation, actor in steps:
        await reconciler.complete(operation, address, str(actor.pubkey()), new_tx_id())


class TestCompleteCreate:
    @pytest.mark.asyncio
    async def test_inserts_created_record(self, reconciler, db_session, create_kwargs, buyer) -> None:
        kwargs = create_kwargs(description="Logo design")
        record = await reconciler.complete_create(**kwargs)

        assert record.status == EscrowStatus.CREATED
        assert record.buyer == str(buyer.pubkey())
        assert record.seller is None
        assert record.initiator_role == "buyer"
        assert record.last_transaction_id == kwargs["transaction_id"]
        assert record.description == "Logo design"

        events = await EventRepository(db_session).get_by_escrow(record.address)
        assert [e.event_type for e in events] == [EventType.ESCROW_CREATED]
        assert events[0].old_status is None

    @pytest.mark.asyncio
    async def test_seller_initiated(self, reconciler, create_kwargs, seller) -> None:
        record = await reconciler.complete_create(
            **create_kwargs(initiator=str(seller.pubkey()), initiator_role=Role.SELLER)
        )
        assert record.seller == str(seller.pubkey())
        assert record.buyer is None

    @pytest.mark.asyncio
    async def test_duplicate_create_leaves_record_unchanged(
        self, reconciler, db_session, create_kwargs
    ) -> None:
        first = await reconciler.complete_create(**create_kwargs())

        with pytest.raises(EscrowAlreadyExistsError):
            await reconciler.complete_create(**create_kwargs(amount=999))

        stored = await EscrowRecordRepository(db_session).get_by_address(first.address, refresh=True)
        assert stored.amount == 1_000_000
        assert stored.last_transaction_id == first.last_transaction_id

    @pytest.mark.asyncio
    async def test_foreign_escrow_address_rejected(self, reconciler, create_kwargs) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await reconciler.complete_create(**create_kwargs(escrow_address=str(Keypair().pubkey())))
        assert exc_info.value.field == "escrow_address"

    @pytest.mark.asyncio
    async def test_token_escrow_requires_mint(self, reconciler, create_kwargs) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await reconciler.complete_create(**create_kwargs(currency_kind=CurrencyKind.TOKEN))
        assert exc_info.value.field == "mint_address"

    @pytest.mark.asyncio
    async def test_native_escrow_rejects_mint(self, reconciler, create_kwargs, mint) -> None:
        with pytest.raises(InvalidInputError):
            await reconciler.complete_create(**create_kwargs(mint_address=str(mint)))

    @pytest.mark.asyncio
    async def test_token_escrow_stores_mint(self, reconciler, create_kwargs, mint) -> None:
        record = await reconciler.complete_create(
            **create_kwargs(currency_kind=CurrencyKind.TOKEN, mint_address=str(mint))
        )
        assert record.currency_kind == "token"
        assert record.mint_address == str(mint)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 2**63])
    async def test_amount_out_of_range(self, reconciler, create_kwargs, amount) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await reconciler.complete_create(**create_kwargs(amount=amount))
        assert exc_info.value.field == "amount"

    @pytest.mark.asyncio
    async def test_arbiter_cannot_be_initiator(self, reconciler, create_kwargs, buyer) -> None:
        with pytest.raises(InvalidInputError):
            await reconciler.complete_create(**create_kwargs(arbiter=str(buyer.pubkey())))

    @pytest.mark.asyncio
    async def test_malformed_transaction_id(self, reconciler, create_kwargs) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await reconciler.complete_create(**create_kwargs(transaction_id="not-a-signature"))
        assert exc_info.value.field == "transaction_id"


class TestComplete:
    @pytest.mark.asyncio
    async def test_join_fills_missing_side(
        self, reconciler, db_session, create_kwargs, seller, new_tx_id
    ) -> None:
        record = await reconciler.complete_create(**create_kwargs())
        tx_id = new_tx_id()

        updated = await reconciler.complete(Operation.JOIN, record.address, str(seller.pubkey()), tx_id)

        assert updated.status == EscrowStatus.INITIALIZED
        assert updated.seller == str(seller.pubkey())
        assert updated.last_transaction_id == tx_id
        events = await EventRepository(db_session).get_by_escrow(record.address)
        assert [e.event_type for e in events] == [EventType.ESCROW_CREATED, EventType.PARTY_JOINED]
        assert events[-1].old_status == "created"
        assert events[-1].new_status == "initialized"

    @pytest.mark.asyncio
    async def test_seller_confirm_rejected_until_funded(
        self, reconciler, create_kwargs, buyer, seller, new_tx_id
    ) -> None:
        record = await reconciler.complete_create(**create_kwargs())
        await _advance(reconciler, record.address, [(Operation.JOIN, seller)], new_tx_id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await reconciler.complete(
                Operation.SELLER_CONFIRM, record.address, str(seller.pubkey()), new_tx_id()
            )
        assert exc_info.value.current_state == "initialized"
        assert record.status == EscrowStatus.INITIALIZED

        await _advance(reconciler, record.address, [(Operation.FUND, buyer)], new_tx_id)
        updated = await reconciler.complete(
            Operation.SELLER_CONFIRM, record.address, str(seller.pubkey()), new_tx_id()
        )
        assert updated.status == EscrowStatus.SELLER_CONFIRMED

    @pytest.mark.asyncio
    async def test_wrong_party_rejected(self, reconciler, create_kwargs, seller, new_tx_id) -> None:
        record = await reconciler.complete_create(**create_kwargs())
        await _advance(reconciler, record.address, [(Operation.JOIN, seller)], new_tx_id)

        with pytest.raises(InvalidInputError) as exc_info:
            await reconciler.complete(Operation.FUND, record.address, str(seller.pubkey()), new_tx_id())
        assert exc_info.value.field == "acting_party"

    @pytest.mark.asyncio
    async def test_unknown_escrow(self, reconciler, seller, new_tx_id) -> None:
        with pytest.raises(EscrowNotFoundError):
            await reconciler.complete(
                Operation.JOIN, str(Keypair().pubkey()), str(seller.pubkey()), new_tx_id()
            )

    @pytest.mark.asyncio
    async def test_create_not_accepted_here(self, reconciler, seller, new_tx_id) -> None:
        with pytest.raises(InvalidInputError):
            await reconciler.complete(
                Operation.CREATE, str(Keypair().pubkey()), str(seller.pubkey()), new_tx_id()
            )

    @pytest.mark.asyncio
    async def test_lost_race_is_a_conflict(
        self, reconciler, db_session, create_kwargs, seller, new_tx_id, monkeypatch
    ) -> None:
        record = await reconciler.complete_create(**create_kwargs())

        async def _no_match(self, address, expected_status, values):
            return None

        monkeypatch.setattr(EscrowRecordRepository, "conditional_update", _no_match)
        with pytest.raises(PreconditionConflictError) as exc_info:
            await reconciler.complete(Operation.JOIN, record.address, str(seller.pubkey()), new_tx_id())
        assert exc_info.value.code == "CONCURRENT_UPDATE"

        events = await EventRepository(db_session).get_by_escrow(record.address)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_closed_escrow_cannot_close_again(
        self, reconciler, create_kwargs, buyer, seller, arbiter, new_tx_id
    ) -> None:
        record = await reconciler.complete_create(**create_kwargs())
        await _advance(
            reconciler,
            record.address,
            [
                (Operation.JOIN, seller),
                (Operation.FUND, buyer),
                (Operation.ARBITER_CANCEL, arbiter),
                (Operation.CLOSE, buyer),
            ],
            new_tx_id,
        )
        with pytest.raises(InvalidStateTransitionError):
            await reconciler.complete(Operation.CLOSE, record.address, str(buyer.pubkey()), new_tx_id())


class TestConditionalUpdate:
    @pytest.mark.asyncio
    async def test_stale_expected_status_matches_nothing(
        self, reconciler, db_session, create_kwargs
    ) -> None:
        record = await reconciler.complete_create(**create_kwargs())
        repo = EscrowRecordRepository(db_session)

        result = await repo.conditional_update(
            record.address, EscrowStatus.FUNDED, {"status": EscrowStatus.SELLER_CONFIRMED.value}
        )

        assert result is None
        stored = await repo.get_by_address(record.address, refresh=True)
        assert stored.status == EscrowStatus.CREATED


class TestFinality:
    @pytest.fixture
    def checking_reconciler(self, db_session, program_id, fake_ledger) -> CompletionReconciler:
        return CompletionReconciler(db_session, program_id, ledger=fake_ledger, verify_finality=True)

    @pytest.mark.asyncio
    async def test_unknown_signature_refused(self, checking_reconciler, create_kwargs) -> None:
        with pytest.raises(PreconditionConflictError) as exc_info:
            await checking_reconciler.complete_create(**create_kwargs())
        assert exc_info.value.code == "TRANSACTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_failed_signature_refused(
        self, checking_reconciler, create_kwargs, fake_ledger
    ) -> None:
        kwargs = create_kwargs()
        fake_ledger.signatures[kwargs["transaction_id"]] = SignatureStatus(
            slot=10, confirmation_status="confirmed", error="InstructionError(0, Custom(3))"
        )
        with pytest.raises(PreconditionConflictError) as exc_info:
            await checking_reconciler.complete_create(**kwargs)
        assert exc_info.value.code == "TRANSACTION_FAILED"

    @pytest.mark.asyncio
    async def test_confirmed_signature_accepted(
        self, checking_reconciler, create_kwargs, fake_ledger
    ) -> None:
        kwargs = create_kwargs()
        fake_ledger.signatures[kwargs["transaction_id"]] = SignatureStatus(
            slot=10, confirmation_status="finalized", error=None
        )
        record = await checking_reconciler.complete_create(**kwargs)
        assert record.status == EscrowStatus.CREATED

    def test_requires_ledger(self, db_session, program_id) -> None:
        with pytest.raises(ValueError):
            CompletionReconciler(db_session, program_id, verify_finality=True)
