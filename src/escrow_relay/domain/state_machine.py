"""Escrow Record State Machine Guard.

Uses python-statemachine to enforce the off-chain status graph. The ledger
program is the real authority; this guard only keeps the local mirror from
moving along an edge the program could never have taken.

Transition table:
    created          -> initialized       (join)
    initialized      -> funded            (fund)
    funded           -> seller_confirmed  (seller_confirm)
    seller_confirmed -> completed         (buyer_confirm)
    seller_confirmed -> completed         (arbiter_confirm)
    funded           -> cancelled         (arbiter_cancel, mutual_cancel)
    seller_confirmed -> cancelled         (arbiter_cancel, mutual_cancel)
    completed        -> closed            (close)
    cancelled        -> closed            (close)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow record status transitions.

    Usage:
        sm = EscrowStateMachine(current_status="funded")
        sm.seller_confirm()
        sm.status  # "seller_confirmed"
    """

    # --- States ---
    created = State(initial=True)
    initialized = State()
    funded = State()
    seller_confirmed = State()
    completed = State()
    cancelled = State()
    closed = State(final=True)

    # --- Events / Transitions ---
    join = created.to(initialized)
    fund = initialized.to(funded)
    seller_confirm = funded.to(seller_confirmed)
    buyer_confirm = seller_confirmed.to(completed)
    arbiter_confirm = seller_confirmed.to(completed)
    arbiter_cancel = funded.to(cancelled) | seller_confirmed.to(cancelled)
    mutual_cancel = funded.to(cancelled) | seller_confirmed.to(cancelled)
    close = completed.to(closed) | cancelled.to(closed)

    def __init__(self, current_status: str = "created") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: An EscrowStatus value, e.g. "funded".
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


KNOWN_EVENTS = frozenset(
    {
        "join",
        "fund",
        "seller_confirm",
        "buyer_confirm",
        "arbiter_confirm",
        "arbiter_cancel",
        "mutual_cancel",
        "close",
    }
)


def validate_transition(current_status: str, event_name: str) -> str:
    """Fire ``event_name`` on a throwaway machine and return the new status.

    Raises:
        TransitionNotAllowed: If the event cannot fire from current_status.
        ValueError: If the status or event name is unknown.
    """
    sm = EscrowStateMachine(current_status=current_status)

    if event_name not in KNOWN_EVENTS:
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    getattr(sm, event_name)()
    return sm.status


def is_transition_allowed(current_status: str, event_name: str) -> bool:
    """Return True if ``event_name`` can fire from ``current_status``."""
    try:
        validate_transition(current_status, event_name)
    except TransitionNotAllowed:
        return False
    return True
