"""Ledger Protocol.

Defines the interface every ledger backend must implement. The ledger is the
single serialization point for escrow transitions: it totally orders them,
atomically commits or rejects each one, and emits exactly one event per
accepted transition.

This is a Protocol (structural subtyping) so backends don't need to inherit
from a base class. The domain layer has ZERO imports from web3 or any
transport library.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from wap3_escrow.domain.chains import ChainConfig
    from wap3_escrow.domain.enums import EventType
    from wap3_escrow.domain.models import Escrow, LedgerEvent, TransitionReceipt


@runtime_checkable
class Ledger(Protocol):
    """Protocol that all ledger backends must satisfy.

    Concrete implementations:
        - infrastructure/ledger/memory.py  (in-process, per-escrow locks)
        - infrastructure/ledger/evm.py     (deployed AgentEscrow contract via web3.py)

    Every mutating call either fully commits or raises one of the domain
    errors without any observable effect.
    """

    @property
    def chain(self) -> ChainConfig:
        """Identity of the chain this ledger runs on."""
        ...

    async def create_escrow(
        self, caller: str, agent: str, task_id: str, amount: int
    ) -> TransitionReceipt:
        """Lock `amount` wei from `caller` for `agent`. Emits EscrowCreated."""
        ...

    async def submit_proof(
        self, caller: str, escrow_id: int, proof_hash: str
    ) -> TransitionReceipt:
        """Record the proof and mark the escrow completed. Emits ProofSubmitted."""
        ...

    async def release(self, caller: str, escrow_id: int) -> TransitionReceipt:
        """Pay the agent. Emits PaymentReleased."""
        ...

    async def refund(self, caller: str, escrow_id: int) -> TransitionReceipt:
        """Return the funds to the payer. Emits PaymentRefunded."""
        ...

    async def read(self, escrow_id: int) -> Escrow:
        """Current snapshot; the zero-valued record for an id never allocated."""
        ...

    async def query_events(
        self, event_type: EventType, escrow_id: int
    ) -> list[LedgerEvent]:
        """All events of `event_type` whose indexed escrow id equals `escrow_id`."""
        ...

    async def ping(self) -> bool:
        """Cheap liveness check used by health endpoints."""
        ...
