"""Domain layer: escrow state, ledger contract and errors, with zero transport dependencies."""

from wap3_escrow.domain.chains import CHAIN_CONFIGS, ChainConfig, get_chain_config
from wap3_escrow.domain.enums import AuditStatus, EscrowStatus, EventType
from wap3_escrow.domain.exceptions import (
    ConsistencyViolationError,
    DuplicateOperationError,
    EscrowError,
    EscrowNotFoundError,
    EscrowUnknownError,
    InvalidInputError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
    TransferFailedError,
    UnauthorizedError,
)
from wap3_escrow.domain.ledger_protocol import Ledger
from wap3_escrow.domain.models import (
    ZERO_ADDRESS,
    ZERO_HASH,
    CreateResult,
    Escrow,
    LedgerEvent,
    TransitionReceipt,
)
from wap3_escrow.domain.state_machine import (
    EscrowStateMachine,
    guard_transition,
    validate_transition,
)

__all__ = [
    "CHAIN_CONFIGS",
    "ChainConfig",
    "get_chain_config",
    "AuditStatus",
    "EscrowStatus",
    "EventType",
    "ConsistencyViolationError",
    "DuplicateOperationError",
    "EscrowError",
    "EscrowNotFoundError",
    "EscrowUnknownError",
    "InvalidInputError",
    "InvalidStateTransitionError",
    "LedgerUnavailableError",
    "TransferFailedError",
    "UnauthorizedError",
    "Ledger",
    "ZERO_ADDRESS",
    "ZERO_HASH",
    "CreateResult",
    "Escrow",
    "LedgerEvent",
    "TransitionReceipt",
    "EscrowStateMachine",
    "guard_transition",
    "validate_transition",
]
