"""Which party may act on which operation.

The program checks signers itself; these rules only reject requests that
could never produce a valid transaction, before any RPC call is made.
"""

from __future__ import annotations

from escrow_relay.domain.enums import Operation, Role
from escrow_relay.domain.exceptions import InvalidInputError, PreconditionConflictError


def joiner_role(buyer: str | None, seller: str | None) -> Role:
    """The role a joiner takes: whichever side the initiator left open."""
    if buyer is None and seller is None:
        raise PreconditionConflictError(
            "Escrow has neither buyer nor seller", code="PARTY_MISSING"
        )
    if buyer is not None and seller is not None:
        raise PreconditionConflictError(
            "Escrow already has both buyer and seller", code="ALREADY_JOINED"
        )
    return Role.BUYER if buyer is None else Role.SELLER


def ensure_acting_party(
    operation: Operation,
    acting_party: str,
    *,
    buyer: str | None,
    seller: str | None,
    arbiter: str,
) -> None:
    """Raise InvalidInputError if ``acting_party`` cannot sign ``operation``."""
    if operation == Operation.JOIN:
        if acting_party in {buyer, seller, arbiter}:
            raise InvalidInputError(
                "Joiner is already a participant of this escrow", field="acting_party"
            )
        return

    allowed: dict[Operation, set[str | None]] = {
        Operation.FUND: {buyer},
        Operation.SELLER_CONFIRM: {seller},
        Operation.BUYER_CONFIRM: {buyer},
        Operation.ARBITER_CONFIRM: {arbiter},
        Operation.ARBITER_CANCEL: {arbiter},
        Operation.MUTUAL_CANCEL: {buyer, seller},
        Operation.CLOSE: {buyer, seller, arbiter},
    }
    parties = allowed.get(operation)
    if parties is None:
        raise InvalidInputError(f"Operation {operation.value} has no acting-party rule")
    if acting_party not in parties - {None}:
        raise InvalidInputError(
            f"{acting_party} is not allowed to {operation.value} this escrow",
            field="acting_party",
        )
