"""Tests for the caller-facing EscrowClient."""

from __future__ import annotations

import pytest
from conftest import AGENT, AMOUNT, PAYER, PROOF_HASH, TASK_ID

from wap3_escrow.domain.enums import AuditStatus, EscrowStatus
from wap3_escrow.domain.exceptions import (
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
    UnauthorizedError,
)
from wap3_escrow.domain.models import ZERO_HASH, TransitionReceipt
from wap3_escrow.hashing import keccak_hex, normalize_address
from wap3_escrow.services.escrow_client import EscrowClient


class TestConstruction:
    def test_caller_is_checksummed(self, ledger) -> None:
        client = EscrowClient(ledger, PAYER.upper().replace("0X", "0x"))
        assert client.caller == normalize_address(PAYER)
        assert client.ledger is ledger

    def test_invalid_caller_rejected(self, ledger) -> None:
        with pytest.raises(InvalidInputError):
            EscrowClient(ledger, "not-an-address")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_happy_path(self, payer_client: EscrowClient, agent_client: EscrowClient) -> None:
        created = await payer_client.create(AGENT, TASK_ID, AMOUNT)
        assert created.escrow_id == 0
        assert created.tx_hash.startswith("0x")
        assert await payer_client.status(created.escrow_id) == AuditStatus.PENDING

        proof_tx = await agent_client.submit_proof(created.escrow_id, PROOF_HASH)
        assert await agent_client.status(created.escrow_id) == AuditStatus.COMPLETED

        settle_tx = await payer_client.settle(created.escrow_id)
        assert await payer_client.status(created.escrow_id) == AuditStatus.SETTLED
        assert len({created.tx_hash, proof_tx, settle_tx}) == 3

    @pytest.mark.asyncio
    async def test_refund_path(self, payer_client: EscrowClient) -> None:
        created = await payer_client.create(AGENT, TASK_ID, AMOUNT)
        await payer_client.refund(created.escrow_id)

        escrow = await payer_client.read(created.escrow_id)
        assert escrow.status == EscrowStatus.REFUNDED
        assert await payer_client.status(created.escrow_id) == AuditStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_clients_share_ledger_state(
        self, payer_client: EscrowClient, agent_client: EscrowClient
    ) -> None:
        created = await payer_client.create(AGENT, TASK_ID, AMOUNT)
        await agent_client.submit_proof(created.escrow_id, PROOF_HASH)

        with pytest.raises(InvalidStateTransitionError):
            await payer_client.refund(created.escrow_id)


class TestRejections:
    @pytest.mark.asyncio
    async def test_stranger_cannot_settle(
        self,
        ledger,
        payer_client: EscrowClient,
        agent_client: EscrowClient,
        stranger_client: EscrowClient,
    ) -> None:
        created = await payer_client.create(AGENT, TASK_ID, AMOUNT)
        await agent_client.submit_proof(created.escrow_id, PROOF_HASH)
        before = await payer_client.read(created.escrow_id)
        balances = (ledger.balance_of(PAYER), ledger.balance_of(AGENT), ledger.escrowed_balance)

        with pytest.raises(UnauthorizedError):
            await stranger_client.settle(created.escrow_id)

        assert await payer_client.read(created.escrow_id) == before
        assert (ledger.balance_of(PAYER), ledger.balance_of(AGENT), ledger.escrowed_balance) == balances

    @pytest.mark.asyncio
    async def test_second_proof_keeps_first_hash(
        self, payer_client: EscrowClient, agent_client: EscrowClient
    ) -> None:
        created = await payer_client.create(AGENT, TASK_ID, AMOUNT)
        await agent_client.submit_proof(created.escrow_id, PROOF_HASH)

        with pytest.raises(InvalidStateTransitionError):
            await agent_client.submit_proof(created.escrow_id, keccak_hex("replacement"))

        assert (await agent_client.read(created.escrow_id)).proof_hash == PROOF_HASH

    @pytest.mark.asyncio
    async def test_status_of_unknown_escrow(self, payer_client: EscrowClient) -> None:
        with pytest.raises(EscrowNotFoundError):
            await payer_client.status(5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("escrow_id", [-1, True, "0"])
    async def test_malformed_escrow_id(self, payer_client: EscrowClient, escrow_id) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await payer_client.settle(escrow_id)
        assert exc_info.value.reason == "INVALID_ESCROW_ID"

    @pytest.mark.asyncio
    async def test_malformed_task_id(self, payer_client: EscrowClient) -> None:
        with pytest.raises(InvalidInputError) as exc_info:
            await payer_client.create(AGENT, "0x1234", AMOUNT)
        assert exc_info.value.reason == "INVALID_HASH"

    @pytest.mark.asyncio
    async def test_malformed_proof_hash(
        self, payer_client: EscrowClient, agent_client: EscrowClient
    ) -> None:
        created = await payer_client.create(AGENT, TASK_ID, AMOUNT)
        with pytest.raises(InvalidInputError):
            await agent_client.submit_proof(created.escrow_id, "proof")


class RecordingLedger:
    """Accepts every proof, like a contract with no zero-hash check."""

    def __init__(self) -> None:
        self.proofs: list[str] = []

    async def submit_proof(self, caller: str, escrow_id: int, proof_hash: str) -> TransitionReceipt:
        self.proofs.append(proof_hash)
        return TransitionReceipt(escrow_id=escrow_id, tx_hash="0x" + "11" * 32)


class TestProofValidation:
    @pytest.mark.asyncio
    async def test_zero_proof_never_reaches_ledger(self) -> None:
        recording = RecordingLedger()
        client = EscrowClient(recording, AGENT)

        with pytest.raises(InvalidInputError) as exc_info:
            await client.submit_proof(0, ZERO_HASH)

        assert exc_info.value.reason == "INVALID_HASH"
        assert exc_info.value.escrow_id == 0
        assert recording.proofs == []

    @pytest.mark.asyncio
    async def test_proof_forwarded_normalized(self) -> None:
        recording = RecordingLedger()
        client = EscrowClient(recording, AGENT)

        await client.submit_proof(0, PROOF_HASH.upper().replace("0X", "0x"))

        assert recording.proofs == [PROOF_HASH]
