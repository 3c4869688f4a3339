"""Escrow Service — reads and the few direct edits of escrow records.

Status changes never happen here; they go through the
CompletionReconciler. This service covers lookups, the allowed-operations
view, the audit trail, the on-chain snapshot, description edits and the
guarded delete.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_relay.domain.enums import EscrowStatus, EventType
from escrow_relay.domain.exceptions import (
    DeletionNotAllowedError,
    EscrowNotFoundError,
    InvalidInputError,
    PreconditionConflictError,
)
from escrow_relay.domain.state_machine import EscrowStateMachine
from escrow_relay.infrastructure.database.repositories import (
    EscrowRecordRepository,
    EventRepository,
)
from escrow_relay.ledger.addresses import parse_pubkey
from escrow_relay.ledger.codec import decode_escrow_account
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_relay.infrastructure.database.orm_models import EscrowEvent, EscrowRecord
    from escrow_relay.ledger.client import LedgerClient

logger = get_logger(__name__)

DELETABLE_STATUSES = frozenset({EscrowStatus.CREATED, EscrowStatus.COMPLETED})
MAX_DESCRIPTION_LENGTH = 2000


class EscrowService:
    """Read access and description/delete management for escrow records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._records = EscrowRecordRepository(session)
        self._events = EventRepository(session)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, address: str) -> EscrowRecord:
        """Get a record or raise EscrowNotFoundError."""
        return await self._get_record_or_raise(address)

    async def get_status(self, address: str) -> dict:
        """Status plus the operations that may be prepared from it."""
        record = await self._get_record_or_raise(address)
        sm = EscrowStateMachine(current_status=record.status)
        return {
            "escrow_address": record.address,
            "status": record.status,
            "last_transaction_id": record.last_transaction_id,
            "allowed_operations": sm.get_allowed_events(),
        }

    async def get_events(self, address: str) -> list[EscrowEvent]:
        """Audit trail, oldest first."""
        record = await self._get_record_or_raise(address)
        return await self._events.get_by_escrow(record.address)

    async def list_for_party(
        self,
        party: str,
        status: EscrowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EscrowRecord]:
        party_key = str(parse_pubkey(party, "party"))
        return await self._records.list_by_party(party_key, status=status, limit=limit, offset=offset)

    async def get_onchain_snapshot(self, address: str, ledger: LedgerClient) -> dict:
        """Decode the live escrow account and compare it with the record."""
        record = await self._get_record_or_raise(address)
        data = await ledger.get_account_data(parse_pubkey(record.address, "escrow_address"))
        if data is None:
            return {
                "escrow_address": record.address,
                "exists": False,
                "record_status": record.status,
                "account": None,
            }
        try:
            account = decode_escrow_account(data)
        except InvalidInputError as err:
            logger.warning("escrow.onchain_undecodable", escrow=record.address, error=err.message)
            raise PreconditionConflictError(
                f"On-chain account {record.address} is not a readable escrow: {err.message}",
                code="ONCHAIN_ACCOUNT_UNREADABLE",
            ) from err
        return {
            "escrow_address": record.address,
            "exists": True,
            "record_status": record.status,
            "account": account.to_dict(),
        }

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def update_description(
        self, address: str, description: str | None, actor: str
    ) -> EscrowRecord:
        """Replace the free-text description. Only parties may edit it."""
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise InvalidInputError(
                f"description is longer than {MAX_DESCRIPTION_LENGTH} characters",
                field="description",
            )
        actor_key = str(parse_pubkey(actor, "actor"))
        record = await self._get_record_or_raise(address)
        if actor_key not in {record.buyer, record.seller, record.arbiter}:
            raise InvalidInputError(
                f"{actor_key} is not a participant of escrow {record.address}", field="actor"
            )

        await self._records.update_description(record, description)
        status = EscrowStatus(record.status)
        await self._events.record(
            escrow_address=record.address,
            event_type=EventType.DESCRIPTION_UPDATED,
            old_status=status,
            new_status=status,
            actor=actor_key,
        )
        logger.info("escrow.description_updated", escrow=record.address, actor=actor_key)
        return record

    async def delete_escrow(self, address: str) -> None:
        """Delete a record that has no funds in custody."""
        record = await self._get_record_or_raise(address)
        if EscrowStatus(record.status) not in DELETABLE_STATUSES:
            raise DeletionNotAllowedError(record.address, record.status)
        await self._records.delete(record)
        logger.info("escrow.deleted", escrow=record.address, status=record.status)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_record_or_raise(self, address: str) -> EscrowRecord:
        key = str(parse_pubkey(address, "escrow_address"))
        record = await self._records.get_by_address(key)
        if record is None:
            raise EscrowNotFoundError(key)
        return record
