"""Escrow Client: the caller-facing wrapper around a ledger.

One instance per caller identity. The client keeps no escrow state of its
own: every call goes to the ledger, which is the only concurrency control,
so any number of clients may act on the same escrow at once and every
mutating call either fully commits or raises without observable effect.

Both REST routes and MCP tools call into this client.

Warning:
    `create` is not idempotent. If it raises LedgerUnavailableError the
    outcome is unknown; check the ledger before retrying or a second escrow
    will be minted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from wap3_escrow.domain.exceptions import EscrowNotFoundError, InvalidInputError
from wap3_escrow.domain.models import CreateResult
from wap3_escrow.hashing import is_zero_hash, normalize_address, normalize_hash32
from wap3_escrow.logging_config import get_logger
from wap3_escrow.units import format_ether

if TYPE_CHECKING:
    from wap3_escrow.domain.enums import AuditStatus
    from wap3_escrow.domain.ledger_protocol import Ledger
    from wap3_escrow.domain.models import Escrow

logger = get_logger(__name__)


class EscrowClient:
    """Issues escrow transitions on behalf of one caller."""

    def __init__(self, ledger: Ledger, caller: str) -> None:
        self._ledger = ledger
        self._caller = normalize_address(caller, "caller")

    @property
    def caller(self) -> str:
        return self._caller

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create(self, agent: str, task_id: str, amount: int) -> CreateResult:
        """Lock `amount` wei for `agent`, with the caller as payer."""
        receipt = await self._ledger.create_escrow(
            self._caller, agent, normalize_hash32(task_id, "task_id"), amount
        )
        logger.info(
            "escrow.created",
            escrow_id=receipt.escrow_id,
            caller=self._caller,
            agent=agent,
            amount=format_ether(amount),
            tx_hash=receipt.tx_hash,
        )
        return CreateResult(escrow_id=receipt.escrow_id, tx_hash=receipt.tx_hash)

    async def submit_proof(self, escrow_id: int, proof_hash: str) -> str:
        """Record proof of completion; the caller must be the escrow's agent."""
        _check_escrow_id(escrow_id)
        proof_hash = normalize_hash32(proof_hash, "proof_hash")
        # A completed escrow must carry a non-zero proof hash
        if is_zero_hash(proof_hash):
            raise InvalidInputError(
                "Proof hash must be non-zero",
                reason="INVALID_HASH",
                escrow_id=escrow_id,
                caller=self._caller,
            )
        receipt = await self._ledger.submit_proof(self._caller, escrow_id, proof_hash)
        logger.info(
            "escrow.proof_submitted",
            escrow_id=escrow_id,
            caller=self._caller,
            proof_hash=proof_hash,
            tx_hash=receipt.tx_hash,
        )
        return receipt.tx_hash

    async def settle(self, escrow_id: int) -> str:
        """Release the locked payment to the agent; the caller must be the payer."""
        _check_escrow_id(escrow_id)
        receipt = await self._ledger.release(self._caller, escrow_id)
        logger.info(
            "escrow.released", escrow_id=escrow_id, caller=self._caller, tx_hash=receipt.tx_hash
        )
        return receipt.tx_hash

    async def refund(self, escrow_id: int) -> str:
        """Return the locked payment to the payer; only possible before proof."""
        _check_escrow_id(escrow_id)
        receipt = await self._ledger.refund(self._caller, escrow_id)
        logger.info(
            "escrow.refunded", escrow_id=escrow_id, caller=self._caller, tx_hash=receipt.tx_hash
        )
        return receipt.tx_hash

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def read(self, escrow_id: int) -> Escrow:
        """Current snapshot. Check `funded` before trusting the other fields."""
        _check_escrow_id(escrow_id)
        return await self._ledger.read(escrow_id)

    async def status(self, escrow_id: int) -> AuditStatus:
        """Display label of a funded escrow.

        Raises:
            EscrowNotFoundError: If the id was never allocated.
        """
        escrow = await self.read(escrow_id)
        if not escrow.funded:
            raise EscrowNotFoundError(escrow_id, caller=self._caller)
        return escrow.status_label


def _check_escrow_id(escrow_id: int) -> None:
    if isinstance(escrow_id, bool) or not isinstance(escrow_id, int) or escrow_id < 0:
        raise InvalidInputError(
            f"Escrow id must be a non-negative integer, got {escrow_id!r}",
            reason="INVALID_ESCROW_ID",
            escrow_id=None,
        )
