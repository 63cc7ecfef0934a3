"""In-process ledger backend.

Stands in for the escrow contract when no chain is available (tests, the
simulation, the development server). It keeps the contract's guarantees:

    - Every transition on an existing escrow runs under that escrow's own
      asyncio.Lock; preconditions are re-checked on the stored record inside
      the lock, so of several racing attempts exactly one can win.
    - Ids are allocated under a separate lock that guards only the counter,
      and only when create succeeds (a rejected create consumes no id).
    - Value moves from the payer into ledger custody on create, and out of
      custody to exactly one destination when the terminal flag flips.
    - Each accepted transition appends exactly one event to the log.

Fault injection hooks (`set_available`, `reject_transfers_to`, `latency`,
`import_events`) let tests exercise the failure paths of callers.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING

from wap3_escrow.domain.chains import ChainConfig, get_chain_config
from wap3_escrow.domain.enums import EscrowStatus, EventType
from wap3_escrow.domain.exceptions import (
    EscrowError,
    EscrowNotFoundError,
    InvalidInputError,
    LedgerUnavailableError,
    TransferFailedError,
    UnauthorizedError,
)
from wap3_escrow.domain.models import Escrow, LedgerEvent, TransitionReceipt
from wap3_escrow.domain.state_machine import guard_transition
from wap3_escrow.hashing import (
    ZERO_ADDRESS,
    is_zero_hash,
    keccak_hex,
    normalize_address,
    normalize_hash32,
)
from wap3_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping

logger = get_logger(__name__)


class InMemoryLedger:
    """Escrow ledger held in process memory."""

    def __init__(
        self,
        chain: ChainConfig | None = None,
        accounts: Mapping[str, int] | None = None,
        default_balance: int = 0,
        latency: float = 0.0,
    ) -> None:
        """Initialize an empty ledger.

        Args:
            chain: Chain identity reported in audit records. Defaults to hardhat-local.
            accounts: Initial balances in wei, keyed by address.
            default_balance: Balance in wei of any address not seen before.
            latency: Seconds awaited before every call, to force interleavings.
        """
        self._chain = chain or get_chain_config("hardhat-local")
        self._default_balance = default_balance
        self._latency = latency

        self._records: dict[int, Escrow] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._alloc_lock = asyncio.Lock()
        self._next_escrow_id = 0

        self._events: list[LedgerEvent] = []
        self._block_number = 0

        self._balances: dict[str, int] = {}
        self._escrowed = 0
        self._rejecting: set[str] = set()
        self._available = True

        for address, wei in (accounts or {}).items():
            self.fund_account(address, wei)

    # ------------------------------------------------------------------
    # Introspection & fault injection
    # ------------------------------------------------------------------

    @property
    def chain(self) -> ChainConfig:
        return self._chain

    @property
    def next_escrow_id(self) -> int:
        return self._next_escrow_id

    @property
    def escrowed_balance(self) -> int:
        """Total wei currently held in custody for funded, unsettled escrows."""
        return self._escrowed

    @property
    def events(self) -> tuple[LedgerEvent, ...]:
        return tuple(self._events)

    def fund_account(self, address: str, wei: int) -> None:
        address = normalize_address(address)
        self._balances[address] = self.balance_of(address) + wei

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), self._default_balance)

    def reject_transfers_to(self, address: str) -> None:
        """Make every value movement to `address` fail, like a reverting recipient."""
        self._rejecting.add(normalize_address(address))

    def set_available(self, available: bool) -> None:
        self._available = available

    def import_events(self, events: Iterable[LedgerEvent]) -> None:
        """Append externally produced events verbatim, e.g. when replaying another log."""
        self._events.extend(events)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_escrow(
        self, caller: str, agent: str, task_id: str, amount: int
    ) -> TransitionReceipt:
        async with self._transition("create", caller, None):
            payer = normalize_address(caller, "caller")
            try:
                agent = normalize_address(agent, "agent")
            except InvalidInputError as err:
                raise InvalidInputError(
                    f"Invalid agent: {agent!r}", reason="INVALID_AGENT", caller=payer
                ) from err
            if agent == ZERO_ADDRESS:
                raise InvalidInputError(
                    "Agent must not be the zero address", reason="INVALID_AGENT", caller=payer
                )
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidInputError(
                    f"No funds sent: amount must be positive, got {amount!r}",
                    reason="NO_FUNDS",
                    caller=payer,
                )
            task_id = normalize_hash32(task_id, "task_id")

            available = self.balance_of(payer)
            if available < amount:
                raise TransferFailedError(
                    f"Payer balance {available} wei cannot cover {amount} wei",
                    caller=payer,
                )

            escrow_id = self._next_escrow_id
            status = guard_transition(escrow_id, EscrowStatus.UNFUNDED, "create", payer)
            record = Escrow(
                escrow_id=escrow_id,
                payer=payer,
                agent=agent,
                amount=amount,
                task_id=task_id,
                status=status,
            )

            self._balances[payer] = available - amount
            self._escrowed += amount
            self._records[escrow_id] = record
            self._locks[escrow_id] = asyncio.Lock()
            self._next_escrow_id += 1

            return self._emit(
                EventType.ESCROW_CREATED,
                escrow_id,
                {"payer": payer, "agent": agent, "amount": amount, "taskId": task_id},
            )

    async def submit_proof(
        self, caller: str, escrow_id: int, proof_hash: str
    ) -> TransitionReceipt:
        async with self._transition("submit_proof", caller, escrow_id):
            record, caller = self._authorize(escrow_id, caller, role="agent")
            status = guard_transition(escrow_id, record.status, "submit_proof", caller)
            proof_hash = normalize_hash32(proof_hash, "proof_hash")
            if is_zero_hash(proof_hash):
                raise InvalidInputError(
                    "Proof hash must be non-zero",
                    reason="INVALID_HASH",
                    escrow_id=escrow_id,
                    caller=caller,
                )

            self._records[escrow_id] = replace(record, proof_hash=proof_hash, status=status)
            return self._emit(
                EventType.PROOF_SUBMITTED,
                escrow_id,
                {"agent": record.agent, "proofHash": proof_hash},
            )

    async def release(self, caller: str, escrow_id: int) -> TransitionReceipt:
        async with self._transition("release", caller, escrow_id):
            record, caller = self._authorize(escrow_id, caller, role="payer")
            status = guard_transition(escrow_id, record.status, "release", caller)

            self._pay_out(record, record.agent, caller)
            self._records[escrow_id] = replace(record, status=status)
            return self._emit(
                EventType.PAYMENT_RELEASED,
                escrow_id,
                {"payer": record.payer, "agent": record.agent, "amount": record.amount},
            )

    async def refund(self, caller: str, escrow_id: int) -> TransitionReceipt:
        async with self._transition("refund", caller, escrow_id):
            record, caller = self._authorize(escrow_id, caller, role="payer")
            status = guard_transition(escrow_id, record.status, "refund", caller)

            self._pay_out(record, record.payer, caller)
            self._records[escrow_id] = replace(record, status=status)
            return self._emit(
                EventType.PAYMENT_REFUNDED,
                escrow_id,
                {"payer": record.payer, "amount": record.amount},
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def read(self, escrow_id: int) -> Escrow:
        await self._enter()
        self._check_escrow_id(escrow_id)
        return self._records.get(escrow_id) or Escrow.unfunded(escrow_id)

    async def query_events(
        self, event_type: EventType, escrow_id: int
    ) -> list[LedgerEvent]:
        await self._enter()
        return [
            evt
            for evt in self._events
            if evt.event_type == event_type and evt.escrow_id == escrow_id
        ]

    async def ping(self) -> bool:
        return self._available

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _enter(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)
        if not self._available:
            raise LedgerUnavailableError("In-memory ledger is marked unavailable")

    @asynccontextmanager
    async def _transition(
        self, op: str, caller: str, escrow_id: int | None
    ) -> AsyncIterator[None]:
        """Serialize a transition: the allocation lock for create, the escrow's lock otherwise."""
        await self._enter()
        try:
            if escrow_id is None:
                lock = self._alloc_lock
            else:
                self._check_escrow_id(escrow_id)
                # Unknown ids get a private lock: the body fails with NotFound anyway.
                lock = self._locks.get(escrow_id) or asyncio.Lock()
            async with lock:
                yield
        except EscrowError as exc:
            logger.warning(
                "ledger.transition_rejected",
                op=op,
                escrow_id=exc.escrow_id if exc.escrow_id is not None else escrow_id,
                caller=exc.caller or caller,
                code=exc.code,
                reason=getattr(exc, "reason", None),
            )
            raise

    def _authorize(self, escrow_id: int, caller: str, role: str) -> tuple[Escrow, str]:
        """Load the stored record and check the caller holds `role` on it."""
        caller = normalize_address(caller, "caller")
        record = self._records.get(escrow_id)
        if record is None or not record.funded:
            raise EscrowNotFoundError(escrow_id, caller=caller)
        if caller != getattr(record, role):
            raise UnauthorizedError(escrow_id, caller, required_role=role)
        return record, caller

    def _pay_out(self, record: Escrow, recipient: str, caller: str) -> None:
        if recipient in self._rejecting:
            raise TransferFailedError(
                f"Transfer of {record.amount} wei to {recipient} was rejected",
                escrow_id=record.escrow_id,
                caller=caller,
            )
        self._escrowed -= record.amount
        self._balances[recipient] = self.balance_of(recipient) + record.amount

    def _emit(self, event_type: EventType, escrow_id: int, args: dict) -> TransitionReceipt:
        self._block_number += 1
        tx_hash = keccak_hex(
            f"{self._chain.chain_id}:{self._block_number}:{event_type}:{escrow_id}"
        )
        event = LedgerEvent(
            event_type=event_type,
            escrow_id=escrow_id,
            tx_hash=tx_hash,
            block_number=self._block_number,
            log_index=0,
            args=args,
        )
        self._events.append(event)
        logger.debug(
            "ledger.transition_committed",
            event_type=str(event_type),
            escrow_id=escrow_id,
            tx_hash=tx_hash,
        )
        return TransitionReceipt(escrow_id=escrow_id, tx_hash=tx_hash, event=event)

    @staticmethod
    def _check_escrow_id(escrow_id: int) -> None:
        if isinstance(escrow_id, bool) or not isinstance(escrow_id, int) or escrow_id < 0:
            raise InvalidInputError(
                f"Escrow id must be a non-negative integer, got {escrow_id!r}",
                reason="INVALID_ESCROW_ID",
            )
