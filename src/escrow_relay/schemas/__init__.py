"""Pydantic API schemas."""

from escrow_relay.schemas.escrow import (
    CompleteCreateRequest,
    CompleteRequest,
    CompleteResponse,
    DecodeInstructionRequest,
    DecodeInstructionResponse,
    EscrowEventResponse,
    EscrowResponse,
    EscrowStatusResponse,
    HealthResponse,
    OnChainSnapshotResponse,
    PrepareCreateRequest,
    PrepareRequest,
    PrepareResponse,
    UpdateDescriptionRequest,
)

__all__ = [
    "CompleteCreateRequest",
    "CompleteRequest",
    "CompleteResponse",
    "DecodeInstructionRequest",
    "DecodeInstructionResponse",
    "EscrowEventResponse",
    "EscrowResponse",
    "EscrowStatusResponse",
    "HealthResponse",
    "OnChainSnapshotResponse",
    "PrepareCreateRequest",
    "PrepareRequest",
    "PrepareResponse",
    "UpdateDescriptionRequest",
]
