"""Domain enumerations for the Escrow Relay.

These enums define the canonical states, operations and roles used
throughout the system. They are framework-agnostic.
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Off-chain status of an escrow record.

    Transitions are guarded by EscrowStateMachine (domain/state_machine.py).
    """

    CREATED = "created"
    INITIALIZED = "initialized"
    FUNDED = "funded"
    SELLER_CONFIRMED = "seller_confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class Operation(enum.StrEnum):
    """Lifecycle operations that have a prepare/complete pair.

    The value doubles as the state machine event name, except CREATE
    which has no prior state.
    """

    CREATE = "create"
    JOIN = "join"
    FUND = "fund"
    SELLER_CONFIRM = "seller_confirm"
    BUYER_CONFIRM = "buyer_confirm"
    ARBITER_CONFIRM = "arbiter_confirm"
    ARBITER_CANCEL = "arbiter_cancel"
    MUTUAL_CANCEL = "mutual_cancel"
    CLOSE = "close"


class Opcode(enum.IntEnum):
    """First byte of every escrow program instruction."""

    CREATE = 0
    JOIN = 1
    FUND = 2
    BUYER_CONFIRM = 3
    ARBITER_CONFIRM = 4
    ARBITER_CANCEL = 5
    CLOSE = 6
    GET_ESCROW_INFO = 7  # log-only, decoded for diagnostics but never prepared
    MUTUAL_CANCEL = 8
    SELLER_CONFIRM = 9


OPCODE_BY_OPERATION: dict[Operation, Opcode] = {
    Operation.CREATE: Opcode.CREATE,
    Operation.JOIN: Opcode.JOIN,
    Operation.FUND: Opcode.FUND,
    Operation.SELLER_CONFIRM: Opcode.SELLER_CONFIRM,
    Operation.BUYER_CONFIRM: Opcode.BUYER_CONFIRM,
    Operation.ARBITER_CONFIRM: Opcode.ARBITER_CONFIRM,
    Operation.ARBITER_CANCEL: Opcode.ARBITER_CANCEL,
    Operation.MUTUAL_CANCEL: Opcode.MUTUAL_CANCEL,
    Operation.CLOSE: Opcode.CLOSE,
}


class Role(enum.IntEnum):
    """Party role as encoded in the create/join role byte."""

    BUYER = 0
    SELLER = 1


class CurrencyKind(enum.StrEnum):
    NATIVE = "native"
    TOKEN = "token"


class OnChainState(enum.IntEnum):
    """State byte of the program's escrow account."""

    UNINITIALIZED = 0
    CREATED = 1
    INITIALIZED = 2
    FUNDED = 3
    SELLER_CONFIRMED = 4
    BUYER_CONFIRMED = 5
    COMPLETED = 6
    CANCELLED = 7


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every status change produces exactly one event.
    """

    ESCROW_CREATED = "ESCROW_CREATED"
    PARTY_JOINED = "PARTY_JOINED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    SELLER_CONFIRMED = "SELLER_CONFIRMED"
    BUYER_CONFIRMED = "BUYER_CONFIRMED"
    ARBITER_CONFIRMED = "ARBITER_CONFIRMED"
    ARBITER_CANCELLED = "ARBITER_CANCELLED"
    MUTUALLY_CANCELLED = "MUTUALLY_CANCELLED"
    ESCROW_CLOSED = "ESCROW_CLOSED"
    DESCRIPTION_UPDATED = "DESCRIPTION_UPDATED"


EVENT_BY_OPERATION: dict[Operation, EventType] = {
    Operation.CREATE: EventType.ESCROW_CREATED,
    Operation.JOIN: EventType.PARTY_JOINED,
    Operation.FUND: EventType.ESCROW_FUNDED,
    Operation.SELLER_CONFIRM: EventType.SELLER_CONFIRMED,
    Operation.BUYER_CONFIRM: EventType.BUYER_CONFIRMED,
    Operation.ARBITER_CONFIRM: EventType.ARBITER_CONFIRMED,
    Operation.ARBITER_CANCEL: EventType.ARBITER_CANCELLED,
    Operation.MUTUAL_CANCEL: EventType.MUTUALLY_CANCELLED,
    Operation.CLOSE: EventType.ESCROW_CLOSED,
}
