"""Escrow State Machine Guard.

Uses python-statemachine to enforce legal escrow transitions at the domain
level. The ledger backends consult it before committing anything, so an
illegal transition (e.g., PENDING -> RELEASED) can never be written.

Transition table:
    UNFUNDED   -> PENDING     (create)
    PENDING    -> COMPLETED   (submit_proof)
    PENDING    -> REFUNDED    (refund)
    COMPLETED  -> RELEASED    (release)

RELEASED and REFUNDED are final. Completion forecloses refund: once a proof
exists the escrow can only be released or left as is.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from wap3_escrow.domain.enums import EscrowStatus
from wap3_escrow.domain.exceptions import EscrowNotFoundError, InvalidStateTransitionError


class EscrowStateMachine(StateMachine):
    """State machine that guards the escrow lifecycle.

    Usage:
        sm = EscrowStateMachine(current_status="PENDING")
        sm.submit_proof()   # transitions to COMPLETED
        sm.status           # "COMPLETED"
    """

    # --- States ---
    UNFUNDED = State("UNFUNDED", initial=True)
    PENDING = State("PENDING")
    COMPLETED = State("COMPLETED")
    RELEASED = State("RELEASED", final=True)
    REFUNDED = State("REFUNDED", final=True)

    # --- Events / Transitions ---
    create = UNFUNDED.to(PENDING)
    submit_proof = PENDING.to(COMPLETED)
    release = COMPLETED.to(RELEASED)
    refund = PENDING.to(REFUNDED)

    def __init__(self, current_status: str = "UNFUNDED") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "PENDING").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


# Why a refused event was refused, keyed by (event, current status).
_REJECTION_REASONS: dict[tuple[str, EscrowStatus], str] = {
    ("create", EscrowStatus.PENDING): "ALREADY_FUNDED",
    ("create", EscrowStatus.COMPLETED): "ALREADY_FUNDED",
    ("create", EscrowStatus.RELEASED): "ALREADY_FUNDED",
    ("create", EscrowStatus.REFUNDED): "ALREADY_FUNDED",
    ("submit_proof", EscrowStatus.COMPLETED): "ALREADY_COMPLETED",
    ("submit_proof", EscrowStatus.RELEASED): "ALREADY_COMPLETED",
    ("submit_proof", EscrowStatus.REFUNDED): "ALREADY_REFUNDED",
    ("release", EscrowStatus.PENDING): "NOT_COMPLETED",
    ("release", EscrowStatus.RELEASED): "ALREADY_RELEASED",
    ("release", EscrowStatus.REFUNDED): "ALREADY_REFUNDED",
    ("refund", EscrowStatus.COMPLETED): "ALREADY_COMPLETED",
    ("refund", EscrowStatus.RELEASED): "ALREADY_RELEASED",
    ("refund", EscrowStatus.REFUNDED): "ALREADY_REFUNDED",
}


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


def guard_transition(
    escrow_id: int,
    current_status: EscrowStatus,
    event_name: str,
    caller: str | None = None,
) -> EscrowStatus:
    """Fire `event_name` from `current_status` and return the resulting status.

    Translates refusals into the domain taxonomy: an unfunded escrow yields
    EscrowNotFoundError, any other refusal InvalidStateTransitionError with
    the specific reason.
    """
    if current_status == EscrowStatus.UNFUNDED and event_name != "create":
        raise EscrowNotFoundError(escrow_id, caller=caller)
    try:
        return EscrowStatus(validate_transition(current_status, event_name))
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(
            escrow_id=escrow_id,
            current_state=str(current_status),
            attempted=event_name,
            reason=_REJECTION_REASONS.get((event_name, current_status), "NOT_ALLOWED"),
            caller=caller,
        ) from err
