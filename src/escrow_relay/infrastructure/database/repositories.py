"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from escrow_relay.infrastructure.database.orm_models import EscrowEvent, EscrowRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_relay.domain.enums import EscrowStatus, EventType


class EscrowRecordRepository:
    """Data access for escrow records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_address(self, address: str, *, refresh: bool = False) -> EscrowRecord | None:
        """Fetch a record by escrow address.

        ``refresh`` overwrites any copy already in the identity map, which
        is needed after a bulk UPDATE.
        """
        stmt = select(EscrowRecord).where(EscrowRecord.address == address)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def insert_if_absent(self, record: EscrowRecord) -> bool:
        """Insert ``record`` unless its address is taken.

        Returns False, leaving the existing row untouched, when the address
        already exists. A concurrent insert that wins the race surfaces as
        an IntegrityError on flush and also returns False; the session must
        then be rolled back by the caller.
        """
        if await self.get_by_address(record.address) is not None:
            return False
        self._session.add(record)
        try:
            await self._session.flush()
        except IntegrityError:
            return False
        return True

    async def conditional_update(
        self,
        address: str,
        expected_status: EscrowStatus,
        values: dict[str, Any],
    ) -> EscrowRecord | None:
        """Apply ``values`` only if the record is still in ``expected_status``.

        This is a single ``UPDATE ... WHERE address = ? AND status = ?``.
        Returns the refreshed record, or None if no row matched.
        """
        result = await self._session.execute(
            update(EscrowRecord)
            .where(
                EscrowRecord.address == address,
                EscrowRecord.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await self.get_by_address(address, refresh=True)

    async def update_description(self, record: EscrowRecord, description: str | None) -> EscrowRecord:
        record.description = description
        await self._session.flush()
        return record

    async def list_by_party(
        self,
        party: str,
        status: EscrowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EscrowRecord]:
        """Records where ``party`` is buyer, seller or arbiter, newest first."""
        stmt = select(EscrowRecord).where(
            or_(
                EscrowRecord.buyer == party,
                EscrowRecord.seller == party,
                EscrowRecord.arbiter == party,
            )
        )
        if status is not None:
            stmt = stmt.where(EscrowRecord.status == status.value)
        stmt = stmt.order_by(EscrowRecord.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, record: EscrowRecord) -> None:
        """Delete a record and its audit trail."""
        await self._session.execute(
            delete(EscrowEvent).where(EscrowEvent.escrow_address == record.address)
        )
        await self._session.delete(record)
        await self._session.flush()


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        escrow_address: str,
        event_type: EventType,
        old_status: EscrowStatus | None,
        new_status: EscrowStatus,
        actor: str,
        transaction_id: str | None = None,
        metadata: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            escrow_address=escrow_address,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            transaction_id=transaction_id,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_escrow(self, escrow_address: str) -> list[EscrowEvent]:
        """Fetch all events for an escrow in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.escrow_address == escrow_address)
            .order_by(EscrowEvent.created_at.asc())
        )
        return list(result.scalars().all())
