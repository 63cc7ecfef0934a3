"""Domain enumerations for WAP3 escrow.

These enums define the canonical escrow states, ledger event names and
audit status labels. They are framework-agnostic (no web3, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of a single escrow.

    An escrow occupies exactly one of these at any time. The ledger's four
    storage flags (funded/completed/released/refunded) are derived from it.
    See domain/state_machine.py for the transition table.
    """

    UNFUNDED = "UNFUNDED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class EventType(enum.StrEnum):
    """Events emitted by the ledger, one per accepted transition.

    Values match the contract's event names so log filters can use them directly.
    """

    ESCROW_CREATED = "EscrowCreated"
    PROOF_SUBMITTED = "ProofSubmitted"
    PAYMENT_RELEASED = "PaymentReleased"
    PAYMENT_REFUNDED = "PaymentRefunded"


class AuditStatus(enum.StrEnum):
    """Status labels written into audit records and shown to users."""

    PENDING = "pending"
    COMPLETED = "completed"
    SETTLED = "settled"
    REFUNDED = "refunded"
