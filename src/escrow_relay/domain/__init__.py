"""Domain layer — pure business logic with zero framework dependencies."""

from escrow_relay.domain.enums import (
    CurrencyKind,
    EscrowStatus,
    EventType,
    OnChainState,
    Opcode,
    Operation,
    Role,
)
from escrow_relay.domain.exceptions import (
    EscrowAlreadyExistsError,
    EscrowNotFoundError,
    EscrowRelayError,
    InvalidInputError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
    PreconditionConflictError,
)
from escrow_relay.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "CurrencyKind",
    "EscrowStatus",
    "EventType",
    "OnChainState",
    "Opcode",
    "Operation",
    "Role",
    "EscrowAlreadyExistsError",
    "EscrowNotFoundError",
    "EscrowRelayError",
    "InvalidInputError",
    "InvalidStateTransitionError",
    "LedgerUnavailableError",
    "PreconditionConflictError",
    "EscrowStateMachine",
    "validate_transition",
]
