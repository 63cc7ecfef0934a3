"""Escrow snapshot and ledger event value objects.

The ledger stores four independent flags per escrow; here an escrow carries a
single EscrowStatus and the flags are derived, so combinations such as
released-and-refunded cannot be constructed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from wap3_escrow.domain.enums import AuditStatus, EscrowStatus, EventType
from wap3_escrow.domain.exceptions import ConsistencyViolationError

ZERO_ADDRESS = "0x" + "0" * 40
ZERO_HASH = "0x" + "0" * 64


def is_zero_hash(value: str) -> bool:
    return int(value, 16) == 0


@dataclass(frozen=True)
class Escrow:
    """Point-in-time snapshot of one escrow record.

    Attributes:
        escrow_id: Ledger-assigned id, never reused.
        payer: Identity that locked the funds; the only one allowed to release/refund.
        agent: Identity doing the task; the only one allowed to submit proof.
        amount: Locked value in wei.
        task_id: 32-byte correlation handle (hash of the negotiation).
        proof_hash: 32-byte proof locator, zero until proof submission.
        status: Current lifecycle state.
    """

    escrow_id: int
    payer: str = ZERO_ADDRESS
    agent: str = ZERO_ADDRESS
    amount: int = 0
    task_id: str = ZERO_HASH
    proof_hash: str = ZERO_HASH
    status: EscrowStatus = EscrowStatus.UNFUNDED

    def __post_init__(self) -> None:
        has_proof = not is_zero_hash(self.proof_hash)
        if self.status == EscrowStatus.UNFUNDED:
            return
        if self.amount <= 0:
            raise ConsistencyViolationError(
                f"Funded escrow {self.escrow_id} has non-positive amount {self.amount}",
                escrow_id=self.escrow_id,
            )
        if self.completed and not has_proof:
            raise ConsistencyViolationError(
                f"Escrow {self.escrow_id} is {self.status} without a proof hash",
                escrow_id=self.escrow_id,
            )
        if not self.completed and has_proof:
            raise ConsistencyViolationError(
                f"Escrow {self.escrow_id} is {self.status} but carries a proof hash",
                escrow_id=self.escrow_id,
            )

    @classmethod
    def unfunded(cls, escrow_id: int) -> Escrow:
        """The zero-valued record a ledger returns for an id never allocated."""
        return cls(escrow_id=escrow_id)

    @classmethod
    def from_flags(
        cls,
        escrow_id: int,
        payer: str,
        agent: str,
        amount: int,
        task_id: str,
        proof_hash: str,
        funded: bool,
        completed: bool,
        released: bool,
        refunded: bool,
    ) -> Escrow:
        """Build a snapshot from the ledger's flag layout, rejecting illegal combinations."""
        if released and refunded:
            raise ConsistencyViolationError(
                f"Escrow {escrow_id} is both released and refunded", escrow_id=escrow_id
            )
        if (completed or released or refunded) and not funded:
            raise ConsistencyViolationError(
                f"Escrow {escrow_id} has lifecycle flags but is not funded",
                escrow_id=escrow_id,
            )
        if released and not completed:
            raise ConsistencyViolationError(
                f"Escrow {escrow_id} was released without completion", escrow_id=escrow_id
            )
        if refunded and completed:
            raise ConsistencyViolationError(
                f"Escrow {escrow_id} was refunded after completion", escrow_id=escrow_id
            )

        if not funded:
            return cls.unfunded(escrow_id)
        if refunded:
            status = EscrowStatus.REFUNDED
        elif released:
            status = EscrowStatus.RELEASED
        elif completed:
            status = EscrowStatus.COMPLETED
        else:
            status = EscrowStatus.PENDING
        return cls(
            escrow_id=escrow_id,
            payer=payer,
            agent=agent,
            amount=amount,
            task_id=task_id,
            proof_hash=proof_hash,
            status=status,
        )

    # --- Ledger flag view ---

    @property
    def funded(self) -> bool:
        return self.status != EscrowStatus.UNFUNDED

    @property
    def completed(self) -> bool:
        return self.status in (EscrowStatus.COMPLETED, EscrowStatus.RELEASED)

    @property
    def released(self) -> bool:
        return self.status == EscrowStatus.RELEASED

    @property
    def refunded(self) -> bool:
        return self.status == EscrowStatus.REFUNDED

    @property
    def is_terminal(self) -> bool:
        return self.status in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)

    @property
    def status_label(self) -> AuditStatus:
        """User-facing label, first true flag wins: refunded > released > completed > pending."""
        if self.refunded:
            return AuditStatus.REFUNDED
        if self.released:
            return AuditStatus.SETTLED
        if self.completed:
            return AuditStatus.COMPLETED
        return AuditStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "escrow_id": self.escrow_id,
            "payer": self.payer,
            "agent": self.agent,
            "amount": self.amount,
            "task_id": self.task_id,
            "proof_hash": self.proof_hash,
            "status": str(self.status),
            "funded": self.funded,
            "completed": self.completed,
            "released": self.released,
            "refunded": self.refunded,
        }


@dataclass(frozen=True)
class LedgerEvent:
    """One entry of the ledger's append-only event log.

    Attributes:
        event_type: Which transition produced it.
        escrow_id: The escrow the transition applied to (the indexed filter key).
        tx_hash: Identifier of the transaction that emitted it.
        block_number: Position of that transaction in the ledger's total order.
        log_index: Position of the event within the block.
        args: Remaining event arguments (payer, agent, amount, proof hash, ...).
    """

    event_type: EventType
    escrow_id: int
    tx_hash: str
    block_number: int = 0
    log_index: int = 0
    args: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionReceipt:
    """Result of an accepted mutating transition."""

    escrow_id: int
    tx_hash: str
    event: LedgerEvent | None = None


@dataclass(frozen=True)
class CreateResult:
    """What `create` hands back: the new escrow id and the creating transaction."""

    escrow_id: int
    tx_hash: str

