"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API. They
are separate from the ORM models to maintain clean boundaries between the
API and database layers. Public keys are plain base58 strings here; the
services do the structural validation so that every entry point rejects
bad keys the same way.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from escrow_relay.domain.enums import CurrencyKind, Role

# Upper bound of the record store's BIGINT amount column.
MAX_AMOUNT = 2**63 - 1

Base58Key = Annotated[
    str,
    Field(min_length=32, max_length=44, examples=["9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"]),
]

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class PrepareCreateRequest(BaseModel):
    """Request body for preparing a new escrow."""

    initiator: Base58Key
    initiator_role: Literal["buyer", "seller"] = Field(
        ..., description="Role the initiator takes; the joiner gets the other one"
    )
    amount: int = Field(
        ...,
        gt=0,
        le=MAX_AMOUNT,
        description="Smallest-unit amount (lamports or token base units)",
    )
    arbiter: Base58Key
    currency_kind: CurrencyKind = CurrencyKind.NATIVE
    mint_address: str | None = Field(default=None, description="Token mint, required for token escrows")
    random_seed: str | None = Field(
        default=None,
        pattern=r"^[0-9a-fA-F]{64}$",
        description="Hex of a 32-byte seed; a fresh one is drawn when omitted",
    )

    @property
    def role(self) -> Role:
        return Role[self.initiator_role.upper()]


class PrepareRequest(BaseModel):
    """Request body for preparing an operation on an existing escrow."""

    acting_party: Base58Key


class CompleteCreateRequest(BaseModel):
    """Request body for reporting a submitted create transaction."""

    escrow_address: Base58Key
    vault_address: Base58Key
    random_seed: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$")
    initiator: Base58Key
    initiator_role: Literal["buyer", "seller"]
    amount: int = Field(..., gt=0, le=MAX_AMOUNT)
    arbiter: Base58Key
    currency_kind: CurrencyKind = CurrencyKind.NATIVE
    mint_address: str | None = None
    transaction_id: str = Field(..., min_length=64, max_length=88)
    description: str | None = Field(default=None, max_length=2000)

    @property
    def role(self) -> Role:
        return Role[self.initiator_role.upper()]


class CompleteRequest(BaseModel):
    """Request body for reporting a submitted lifecycle transaction."""

    acting_party: Base58Key
    transaction_id: str = Field(..., min_length=64, max_length=88)


class UpdateDescriptionRequest(BaseModel):
    actor: Base58Key
    description: str | None = Field(default=None, max_length=2000)


class DecodeInstructionRequest(BaseModel):
    """Raw instruction data to decode for diagnostics."""

    data: str = Field(..., min_length=1)
    encoding: Literal["base64", "hex"] = "base64"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class PrepareResponse(BaseModel):
    """A sponsor-signed transaction awaiting the remaining signatures."""

    operation: str
    transaction: str = Field(description="Base64 wire transaction, sponsor signature filled in")
    still_required_signers: list[str]
    checkpoint: str = Field(description="Recent blockhash the transaction is stamped with")
    last_valid_block_height: int
    instruction_count: int
    fee_payer: str
    escrow_address: str
    vault_address: str
    random_seed: str | None = None
    fee_collector: str | None = None


class CompleteResponse(BaseModel):
    escrow_address: str
    status: str
    last_transaction_id: str | None


class EscrowResponse(BaseModel):
    """Response schema for an escrow record."""

    model_config = ConfigDict(from_attributes=True)

    address: str
    vault_address: str
    program_id: str
    random_seed: str
    arbiter: str
    buyer: str | None
    seller: str | None
    initiator_role: str
    amount: int
    currency_kind: str
    mint_address: str | None
    fee_sponsor: str
    fee_collector: str
    status: str
    last_transaction_id: str | None
    description: str | None
    created_at: datetime
    updated_at: datetime


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    escrow_address: str
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    transaction_id: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class EscrowStatusResponse(BaseModel):
    """Lightweight status check response."""

    escrow_address: str
    status: str
    last_transaction_id: str | None
    allowed_operations: list[str] = Field(
        description="Operations that can be prepared from the current status"
    )


class OnChainSnapshotResponse(BaseModel):
    escrow_address: str
    exists: bool
    record_status: str
    account: dict | None


class DecodeInstructionResponse(BaseModel):
    opcode: int
    name: str
    fields: dict
    missing: list[str]
    trailing_bytes: int
    complete: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    ledger: str = "unknown"
    redis: str = "unknown"
