"""Domain exceptions for WAP3 escrow.

These exceptions are framework-agnostic and represent ledger rule violations
or infrastructure failures. Every error carries the offending escrow id and
caller (when known) for diagnostics. They are translated to HTTP responses
by the API layer's middleware.
"""

from __future__ import annotations


class EscrowError(Exception):
    """Base exception for all escrow errors."""

    def __init__(
        self,
        message: str,
        code: str = "ESCROW_ERROR",
        escrow_id: int | None = None,
        caller: str | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.escrow_id = escrow_id
        self.caller = caller
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serialize for error responses and structured logs."""
        return {
            "error": self.code,
            "message": self.message,
            "escrow_id": self.escrow_id,
            "caller": self.caller,
        }


# --- Input Errors ---


class InvalidInputError(EscrowError):
    """Raised for a null agent, a non-positive amount or a malformed handle.

    `reason` narrows the kind: INVALID_AGENT, NO_FUNDS, INVALID_ADDRESS,
    INVALID_HASH or INVALID_ESCROW_ID.
    """

    def __init__(
        self,
        message: str,
        reason: str = "INVALID_INPUT",
        escrow_id: int | None = None,
        caller: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="INVALID_INPUT",
            escrow_id=escrow_id,
            caller=caller,
        )
        self.reason = reason


# --- Lookup Errors ---


class EscrowNotFoundError(EscrowError):
    """Raised when an escrow id was never allocated (or is not funded)."""

    def __init__(self, escrow_id: int, caller: str | None = None) -> None:
        super().__init__(
            message=f"Escrow not found or not funded: {escrow_id}",
            code="NOT_FOUND",
            escrow_id=escrow_id,
            caller=caller,
        )


class EscrowUnknownError(EscrowNotFoundError):
    """Raised by the audit reconciler when asked about a non-existent escrow."""

    def __init__(self, escrow_id: int) -> None:
        super().__init__(escrow_id)
        self.message = f"Cannot audit unknown escrow: {escrow_id}"
        self.code = "ESCROW_UNKNOWN"
        self.args = (self.message,)


# --- Capability Errors ---


class UnauthorizedError(EscrowError):
    """Raised when the caller is not the payer/agent recorded on the escrow."""

    def __init__(self, escrow_id: int, caller: str, required_role: str) -> None:
        super().__init__(
            message=f"Only the {required_role} may perform this action on escrow {escrow_id}",
            code="UNAUTHORIZED",
            escrow_id=escrow_id,
            caller=caller,
        )
        self.required_role = required_role


# --- State Machine Errors ---


class InvalidStateTransitionError(EscrowError):
    """Raised when a transition is illegal from the escrow's current state.

    `reason` is one of ALREADY_COMPLETED, ALREADY_RELEASED, ALREADY_REFUNDED
    or NOT_COMPLETED.
    """

    def __init__(
        self,
        escrow_id: int,
        current_state: str,
        attempted: str,
        reason: str,
        caller: str | None = None,
    ) -> None:
        super().__init__(
            message=(
                f"Invalid state transition on escrow {escrow_id}: "
                f"{attempted} from {current_state} ({reason})"
            ),
            code="INVALID_STATE_TRANSITION",
            escrow_id=escrow_id,
            caller=caller,
        )
        self.current_state = current_state
        self.attempted = attempted
        self.reason = reason


# --- Value Movement Errors ---


class TransferFailedError(EscrowError):
    """Raised when the ledger rejects the movement of the escrowed value."""

    def __init__(
        self,
        message: str,
        escrow_id: int | None = None,
        caller: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="TRANSFER_FAILED",
            escrow_id=escrow_id,
            caller=caller,
        )


# --- Infrastructure Errors ---


class LedgerUnavailableError(EscrowError):
    """Raised when the ledger or its query endpoint cannot be reached.

    For a mutating call this means the outcome is indeterminate: re-read the
    escrow before retrying (a blind retry of create mints a duplicate escrow).
    """

    def __init__(
        self,
        message: str,
        escrow_id: int | None = None,
        caller: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="LEDGER_UNAVAILABLE",
            escrow_id=escrow_id,
            caller=caller,
        )


class ConsistencyViolationError(EscrowError):
    """Raised when ledger data contradicts the escrow invariants.

    Examples: two creation events for one escrow id, or a snapshot that is
    both released and refunded. Never swallowed.
    """

    def __init__(self, message: str, escrow_id: int | None = None) -> None:
        super().__init__(
            message=message,
            code="CONSISTENCY_VIOLATION",
            escrow_id=escrow_id,
        )


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowError):
    """Raised when an idempotency key on the REST create endpoint was already used."""

    def __init__(self, idempotency_key: str, caller: str | None = None) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
            caller=caller,
        )
        self.idempotency_key = idempotency_key
