"""EVM ledger backend: the deployed AgentEscrow contract via web3.py.

The contract executes and orders transitions; this adapter only submits
transactions, awaits their receipts, reads state and queries the event log,
translating web3 failures into the domain taxonomy:

    - A revert reason ("only payer", "already completed", ...) becomes the
      matching domain error (see REVERT_REASONS).
    - Transport failures and timeouts become LedgerUnavailableError. A
      mutating call that times out waiting for its receipt is indeterminate:
      re-read the escrow before retrying.

Transactions are sent with `{"from": caller}`, so the node must manage the
caller's key (e.g. a Hardhat development node).
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from wap3_escrow.domain.enums import EventType
from wap3_escrow.domain.exceptions import (
    EscrowError,
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
    TransferFailedError,
    UnauthorizedError,
)
from wap3_escrow.domain.models import Escrow, LedgerEvent, TransitionReceipt
from wap3_escrow.hashing import is_zero_hash, normalize_address, normalize_hash32
from wap3_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from wap3_escrow.config import Settings
    from wap3_escrow.domain.chains import ChainConfig

logger = get_logger(__name__)

_ESCROW_ID_INPUT = {"name": "escrowId", "type": "uint256"}

# Only escrowId is indexed; pass the compiled artifact's ABI if the deployment differs.
AGENT_ESCROW_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "createEscrow",
        "stateMutability": "payable",
        "inputs": [
            {"name": "agent", "type": "address"},
            {"name": "taskId", "type": "bytes32"},
        ],
        "outputs": [{"name": "escrowId", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "submitProof",
        "stateMutability": "nonpayable",
        "inputs": [_ESCROW_ID_INPUT, {"name": "proofHash", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "releasePayment",
        "stateMutability": "nonpayable",
        "inputs": [_ESCROW_ID_INPUT],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "refund",
        "stateMutability": "nonpayable",
        "inputs": [_ESCROW_ID_INPUT],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getEscrow",
        "stateMutability": "view",
        "inputs": [_ESCROW_ID_INPUT],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "payer", "type": "address"},
                    {"name": "agent", "type": "address"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "taskId", "type": "bytes32"},
                    {"name": "proofHash", "type": "bytes32"},
                    {"name": "funded", "type": "bool"},
                    {"name": "completed", "type": "bool"},
                    {"name": "released", "type": "bool"},
                    {"name": "refunded", "type": "bool"},
                ],
            }
        ],
    },
    {
        "type": "event",
        "name": "EscrowCreated",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": "uint256", "indexed": True},
            {"name": "payer", "type": "address", "indexed": False},
            {"name": "agent", "type": "address", "indexed": False},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "taskId", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "ProofSubmitted",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": "uint256", "indexed": True},
            {"name": "agent", "type": "address", "indexed": False},
            {"name": "proofHash", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "PaymentReleased",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": "uint256", "indexed": True},
            {"name": "payer", "type": "address", "indexed": False},
            {"name": "agent", "type": "address", "indexed": False},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "PaymentRefunded",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": "uint256", "indexed": True},
            {"name": "payer", "type": "address", "indexed": False},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
]

# Contract revert reason -> (error kind, detail)
REVERT_REASONS: dict[str, tuple[str, str]] = {
    "invalid agent": ("input", "INVALID_AGENT"),
    "no funds sent": ("input", "NO_FUNDS"),
    "escrow not found or not funded": ("not_found", ""),
    "only agent": ("unauthorized", "agent"),
    "only payer": ("unauthorized", "payer"),
    "already completed": ("state", "ALREADY_COMPLETED"),
    "already released": ("state", "ALREADY_RELEASED"),
    "already refunded": ("state", "ALREADY_REFUNDED"),
    "task not completed": ("state", "NOT_COMPLETED"),
    "transfer failed": ("transfer", ""),
}


def map_revert_reason(
    message: str,
    escrow_id: int | None = None,
    caller: str | None = None,
    attempted: str = "",
) -> EscrowError:
    """Translate a contract revert message into the matching domain error."""
    text = (message or "").lower()
    for reason, (kind, detail) in REVERT_REASONS.items():
        if reason not in text:
            continue
        if kind == "input":
            return InvalidInputError(message, reason=detail, escrow_id=escrow_id, caller=caller)
        if kind == "not_found":
            return EscrowNotFoundError(escrow_id if escrow_id is not None else -1, caller=caller)
        if kind == "unauthorized":
            return UnauthorizedError(
                escrow_id if escrow_id is not None else -1, caller or "", required_role=detail
            )
        if kind == "state":
            return InvalidStateTransitionError(
                escrow_id=escrow_id if escrow_id is not None else -1,
                current_state="unknown",
                attempted=attempted,
                reason=detail,
                caller=caller,
            )
        return TransferFailedError(message, escrow_id=escrow_id, caller=caller)
    return EscrowError(
        f"Ledger rejected the transaction: {message}",
        code="LEDGER_REJECTED",
        escrow_id=escrow_id,
        caller=caller,
    )


class EvmLedger:
    """Ledger backed by an AgentEscrow deployment."""

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        chain: ChainConfig,
        abi: list[dict[str, Any]] | None = None,
        timeout: float = 10.0,
        confirmation_timeout: float = 120.0,
        from_block: int = 0,
    ) -> None:
        self._w3 = w3
        self._chain = chain
        self._timeout = timeout
        self._confirmation_timeout = confirmation_timeout
        self._from_block = from_block
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=abi or AGENT_ESCROW_ABI,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> EvmLedger:
        if not settings.escrow_contract_address:
            raise ValueError("ESCROW_CONTRACT_ADDRESS is required for the evm ledger backend")
        chain = settings.chain
        w3 = AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        return cls(
            w3,
            settings.escrow_contract_address,
            chain,
            timeout=settings.ledger_timeout_seconds,
            confirmation_timeout=settings.tx_confirmation_timeout_seconds,
        )

    @property
    def chain(self) -> ChainConfig:
        return self._chain

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_escrow(
        self, caller: str, agent: str, task_id: str, amount: int
    ) -> TransitionReceipt:
        caller = normalize_address(caller, "caller")
        fn = self._contract.functions.createEscrow(
            normalize_address(agent, "agent"), Web3.to_bytes(hexstr=task_id)
        )
        receipt = await self._transact("create", caller, None, fn, value=amount)
        events = self._contract.events.EscrowCreated().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise LedgerUnavailableError(
                "Create transaction mined without an EscrowCreated event", caller=caller
            )
        event = self._to_ledger_event(EventType.ESCROW_CREATED, events[0])
        return TransitionReceipt(escrow_id=event.escrow_id, tx_hash=event.tx_hash, event=event)

    async def submit_proof(
        self, caller: str, escrow_id: int, proof_hash: str
    ) -> TransitionReceipt:
        caller = normalize_address(caller, "caller")
        proof_hash = normalize_hash32(proof_hash, "proof_hash")
        # The contract stores a zero hash without complaint
        if is_zero_hash(proof_hash):
            raise InvalidInputError(
                "Proof hash must be non-zero",
                reason="INVALID_HASH",
                escrow_id=escrow_id,
                caller=caller,
            )
        fn = self._contract.functions.submitProof(escrow_id, Web3.to_bytes(hexstr=proof_hash))
        receipt = await self._transact("submit_proof", caller, escrow_id, fn)
        return TransitionReceipt(escrow_id=escrow_id, tx_hash=Web3.to_hex(receipt["transactionHash"]))

    async def release(self, caller: str, escrow_id: int) -> TransitionReceipt:
        caller = normalize_address(caller, "caller")
        fn = self._contract.functions.releasePayment(escrow_id)
        receipt = await self._transact("release", caller, escrow_id, fn)
        return TransitionReceipt(escrow_id=escrow_id, tx_hash=Web3.to_hex(receipt["transactionHash"]))

    async def refund(self, caller: str, escrow_id: int) -> TransitionReceipt:
        caller = normalize_address(caller, "caller")
        fn = self._contract.functions.refund(escrow_id)
        receipt = await self._transact("refund", caller, escrow_id, fn)
        return TransitionReceipt(escrow_id=escrow_id, tx_hash=Web3.to_hex(receipt["transactionHash"]))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def read(self, escrow_id: int) -> Escrow:
        try:
            raw = await self._call(self._contract.functions.getEscrow(escrow_id).call())
        except ContractLogicError as err:
            mapped = map_revert_reason(str(err), escrow_id=escrow_id)
            if isinstance(mapped, EscrowNotFoundError):
                return Escrow.unfunded(escrow_id)
            raise mapped from err

        payer, agent, amount, task_id, proof_hash, funded, completed, released, refunded = raw
        return Escrow.from_flags(
            escrow_id=escrow_id,
            payer=payer,
            agent=agent,
            amount=int(amount),
            task_id=Web3.to_hex(task_id),
            proof_hash=Web3.to_hex(proof_hash),
            funded=funded,
            completed=completed,
            released=released,
            refunded=refunded,
        )

    async def query_events(
        self, event_type: EventType, escrow_id: int
    ) -> list[LedgerEvent]:
        event = getattr(self._contract.events, str(event_type))()
        logs = await self._call(
            event.get_logs(argument_filters={"escrowId": escrow_id}, from_block=self._from_block),
            escrow_id=escrow_id,
        )
        return [self._to_ledger_event(event_type, log) for log in logs]

    async def ping(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self._w3.is_connected(), self._timeout))
        except (TimeoutError, OSError):
            return False

    async def close(self) -> None:
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[Any], escrow_id: int | None = None) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self._timeout)
        except (TimeoutError, OSError) as err:
            raise LedgerUnavailableError(
                f"Ledger query failed at {self._chain.rpc_url}: {err}", escrow_id=escrow_id
            ) from err

    async def _transact(
        self,
        op: str,
        caller: str,
        escrow_id: int | None,
        fn: Any,
        value: int = 0,
    ) -> Any:
        tx: dict[str, Any] = {"from": caller}
        if value:
            tx["value"] = value
        try:
            tx_hash = await asyncio.wait_for(fn.transact(tx), self._timeout)
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._confirmation_timeout
            )
        except ContractLogicError as err:
            mapped = map_revert_reason(str(err), escrow_id=escrow_id, caller=caller, attempted=op)
            logger.warning(
                "ledger.transition_rejected",
                op=op,
                escrow_id=escrow_id,
                caller=caller,
                code=mapped.code,
                revert=str(err),
            )
            raise mapped from err
        except TimeExhausted as err:
            raise LedgerUnavailableError(
                f"{op} was not confirmed within {self._confirmation_timeout}s; "
                "outcome is indeterminate, re-read the escrow before retrying",
                escrow_id=escrow_id,
                caller=caller,
            ) from err
        except (TimeoutError, OSError) as err:
            raise LedgerUnavailableError(
                f"{op} could not be submitted to {self._chain.rpc_url}: {err}",
                escrow_id=escrow_id,
                caller=caller,
            ) from err

        if receipt["status"] != 1:
            raise EscrowError(
                f"{op} transaction reverted without a reason",
                code="LEDGER_REJECTED",
                escrow_id=escrow_id,
                caller=caller,
            )
        logger.info(
            "ledger.transition_committed",
            op=op,
            escrow_id=escrow_id,
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block=receipt["blockNumber"],
        )
        return receipt

    @staticmethod
    def _to_ledger_event(event_type: EventType, log: Any) -> LedgerEvent:
        args = {
            key: Web3.to_hex(value) if isinstance(value, bytes | bytearray) else value
            for key, value in dict(log["args"]).items()
            if key != "escrowId"
        }
        return LedgerEvent(
            event_type=event_type,
            escrow_id=int(log["args"]["escrowId"]),
            tx_hash=Web3.to_hex(log["transactionHash"]),
            block_number=int(log["blockNumber"]),
            log_index=int(log["logIndex"]),
            args=args,
        )
