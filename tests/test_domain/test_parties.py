"""Tests for the acting-party rules and the joiner role."""

from __future__ import annotations

import pytest

from escrow_relay.domain.enums import Operation, Role
from escrow_relay.domain.exceptions import InvalidInputError, PreconditionConflictError
from escrow_relay.domain.parties import ensure_acting_party, joiner_role

BUYER = "buyer-key"
SELLER = "seller-key"
ARBITER = "arbiter-key"
OUTSIDER = "outsider-key"


def _check(operation: Operation, actor: str, *, seller: str | None = SELLER) -> None:
    ensure_acting_party(operation, actor, buyer=BUYER, seller=seller, arbiter=ARBITER)


class TestJoinerRole:
    def test_buyer_initiated_escrow_gets_a_seller(self) -> None:
        assert joiner_role(BUYER, None) == Role.SELLER

    def test_seller_initiated_escrow_gets_a_buyer(self) -> None:
        assert joiner_role(None, SELLER) == Role.BUYER

    def test_already_joined(self) -> None:
        with pytest.raises(PreconditionConflictError) as exc_info:
            joiner_role(BUYER, SELLER)
        assert exc_info.value.code == "ALREADY_JOINED"

    def test_no_parties(self) -> None:
        with pytest.raises(PreconditionConflictError) as exc_info:
            joiner_role(None, None)
        assert exc_info.value.code == "PARTY_MISSING"


class TestEnsureActingParty:
    @pytest.mark.parametrize(
        ("operation", "actor"),
        [
            (Operation.FUND, BUYER),
            (Operation.SELLER_CONFIRM, SELLER),
            (Operation.BUYER_CONFIRM, BUYER),
            (Operation.ARBITER_CONFIRM, ARBITER),
            (Operation.ARBITER_CANCEL, ARBITER),
            (Operation.MUTUAL_CANCEL, BUYER),
            (Operation.MUTUAL_CANCEL, SELLER),
            (Operation.CLOSE, BUYER),
            (Operation.CLOSE, SELLER),
            (Operation.CLOSE, ARBITER),
        ],
    )
    def test_allowed(self, operation: Operation, actor: str) -> None:
        _check(operation, actor)

    @pytest.mark.parametrize(
        ("operation", "actor"),
        [
            (Operation.FUND, SELLER),
            (Operation.SELLER_CONFIRM, BUYER),
            (Operation.BUYER_CONFIRM, ARBITER),
            (Operation.ARBITER_CONFIRM, BUYER),
            (Operation.ARBITER_CANCEL, SELLER),
            (Operation.MUTUAL_CANCEL, ARBITER),
            (Operation.CLOSE, OUTSIDER),
        ],
    )
    def test_rejected(self, operation: Operation, actor: str) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            _check(operation, actor)
        assert exc_info.value.field == "acting_party"

    def test_outsider_may_join(self) -> None:
        _check(Operation.JOIN, OUTSIDER, seller=None)

    @pytest.mark.parametrize("actor", [BUYER, ARBITER])
    def test_participant_cannot_join(self, actor: str) -> None:
        with pytest.raises(InvalidInputError):
            _check(Operation.JOIN, actor, seller=None)

    def test_missing_party_never_matches(self) -> None:
        with pytest.raises(InvalidInputError):
            ensure_acting_party(
                Operation.SELLER_CONFIRM, SELLER, buyer=BUYER, seller=None, arbiter=ARBITER
            )
