"""SQLAlchemy 2.0 ORM models for the Escrow Relay.

Two tables:
    1. escrow_records — Off-chain mirror of each on-chain escrow account.
    2. escrow_events  — Append-only audit log of every status change.

Layout notes:
    - The base58 escrow address is the natural primary key; it is unique
      on the ledger and every API path is keyed by it.
    - Amounts are integral smallest-unit quantities (lamports or token base
      units) stored as BIGINT.
    - JSON columns become JSONB on PostgreSQL.
    - CHECK constraints mirror the enums so bad values fail at the DB level.
    - escrow_events is append-only: no UPDATE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Base58 public keys are at most 44 characters, signatures at most 88.
PUBKEY_LEN = 44
SIGNATURE_LEN = 88

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base shared by the record and event tables."""

    pass


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """Stamp updated_at when a loaded record is flushed; bulk UPDATEs rely on onupdate."""
    target.updated_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. escrow_records
# ---------------------------------------------------------------------------
class EscrowRecord(Base):
    """Local record of one escrow account and its last reconciled status."""

    __tablename__ = "escrow_records"

    # --- Identity ---
    address: Mapped[str] = mapped_column(
        String(PUBKEY_LEN),
        primary_key=True,
        comment="Escrow program-derived address",
    )
    vault_address: Mapped[str] = mapped_column(
        String(PUBKEY_LEN),
        nullable=False,
        comment="Vault program-derived address holding custody",
    )
    program_id: Mapped[str] = mapped_column(String(PUBKEY_LEN), nullable=False)
    random_seed: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Hex of the 32-byte seed the escrow address derives from",
    )

    # --- Parties ---
    arbiter: Mapped[str] = mapped_column(String(PUBKEY_LEN), nullable=False)
    buyer: Mapped[str | None] = mapped_column(String(PUBKEY_LEN), nullable=True, default=None)
    seller: Mapped[str | None] = mapped_column(String(PUBKEY_LEN), nullable=True, default=None)
    initiator_role: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="Role of the party that created the escrow (buyer or seller)",
    )

    # --- Custody ---
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Smallest-unit amount held in custody",
    )
    currency_kind: Mapped[str] = mapped_column(String(10), nullable=False)
    mint_address: Mapped[str | None] = mapped_column(
        String(PUBKEY_LEN),
        nullable=True,
        default=None,
        comment="Token mint, set only for token escrows",
    )
    fee_sponsor: Mapped[str] = mapped_column(String(PUBKEY_LEN), nullable=False)
    fee_collector: Mapped[str] = mapped_column(String(PUBKEY_LEN), nullable=False)

    # --- Status ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="created",
        comment="Last reconciled lifecycle state",
    )
    last_transaction_id: Mapped[str | None] = mapped_column(
        String(SIGNATURE_LEN), nullable=True, default=None
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    events: Mapped[list[EscrowEvent]] = relationship(
        "EscrowEvent",
        back_populates="escrow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EscrowEvent.created_at.asc()",
        lazy="noload",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('created', 'initialized', 'funded', 'seller_confirmed', "
            "'completed', 'cancelled', 'closed')",
            name="ck_escrow_record_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_escrow_record_positive_amount"),
        CheckConstraint(
            "currency_kind IN ('native', 'token')",
            name="ck_escrow_record_currency_kind",
        ),
        CheckConstraint(
            "(currency_kind = 'token') = (mint_address IS NOT NULL)",
            name="ck_escrow_record_mint_matches_currency",
        ),
        CheckConstraint(
            "initiator_role IN ('buyer', 'seller')",
            name="ck_escrow_record_initiator_role",
        ),
        Index("idx_escrow_record_status", "status"),
        Index("idx_escrow_record_buyer", "buyer"),
        Index("idx_escrow_record_seller", "seller"),
        Index("idx_escrow_record_arbiter", "arbiter"),
        Index("idx_escrow_record_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EscrowRecord address={self.address} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 2. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of one status change.

    Written in the same database transaction as the status update it
    describes, so the log and the record never disagree.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    escrow_address: Mapped[str] = mapped_column(
        String(PUBKEY_LEN),
        ForeignKey("escrow_records.address", ondelete="CASCADE"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Status before this event (null for creation)",
    )
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(PUBKEY_LEN),
        nullable=False,
        comment="Public key of the acting party",
    )
    transaction_id: Mapped[str | None] = mapped_column(String(SIGNATURE_LEN), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONVariant,
        nullable=True,
        default=None,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    escrow: Mapped[EscrowRecord] = relationship("EscrowRecord", back_populates="events")

    __table_args__ = (
        Index("idx_event_escrow", "escrow_address"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


event.listen(EscrowRecord, "before_update", _set_updated_at)
