"""End-to-end escrow scenarios: negotiate, fund, prove, settle or refund, audit.

Each scenario drives the clients and the reconciler against one in-memory
ledger, the way the REST routes and MCP tools do.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import AGENT, PAYER, STRANGER

from wap3_escrow.domain.enums import AuditStatus
from wap3_escrow.domain.exceptions import (
    EscrowError,
    InvalidStateTransitionError,
    UnauthorizedError,
)
from wap3_escrow.hashing import keccak_hex
from wap3_escrow.infrastructure.ledger import InMemoryLedger
from wap3_escrow.schemas.negotiation import (
    create_ap2_intent,
    create_x402_trigger,
    hash_ap2_intent,
)
from wap3_escrow.services.escrow_client import EscrowClient
from wap3_escrow.services.reconciler import AuditReconciler
from wap3_escrow.units import to_wei


def _negotiate(description: str, amount: str = "0.05"):
    intent = create_ap2_intent(description, amount, requirements=["json output"])
    trigger = create_x402_trigger(intent.intent_id, amount, AGENT)
    return intent, trigger


class TestScenarios:
    @pytest.mark.asyncio
    async def test_happy_path(self, ledger: InMemoryLedger) -> None:
        payer = EscrowClient(ledger, PAYER)
        agent = EscrowClient(ledger, AGENT)
        intent, trigger = _negotiate("Translate 20 documents")

        created = await payer.create(AGENT, hash_ap2_intent(intent), to_wei(trigger.amount))
        proof_hash = keccak_hex("translated-documents-bundle")
        await agent.submit_proof(created.escrow_id, proof_hash)
        await payer.settle(created.escrow_id)

        record = await AuditReconciler(ledger).reconcile(created.escrow_id, intent, trigger)
        assert record.escrow.status == AuditStatus.SETTLED
        assert record.escrow.amount == "0.05"
        assert record.intent.intent_id == intent.intent_id
        assert record.proof.proof_hash == proof_hash
        assert record.tx.create_tx == created.tx_hash
        assert ledger.balance_of(AGENT) == to_wei("0.05")

    @pytest.mark.asyncio
    async def test_refund_before_proof(self, ledger: InMemoryLedger) -> None:
        payer = EscrowClient(ledger, PAYER)
        agent = EscrowClient(ledger, AGENT)
        intent, trigger = _negotiate("Label 1000 tweets")

        created = await payer.create(AGENT, hash_ap2_intent(intent), to_wei("0.05"))
        await payer.refund(created.escrow_id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await agent.submit_proof(created.escrow_id, keccak_hex("late"))
        assert exc_info.value.reason == "ALREADY_REFUNDED"

        record = await AuditReconciler(ledger).reconcile(created.escrow_id, intent, trigger)
        assert record.escrow.status == AuditStatus.REFUNDED
        assert record.tx.settle_tx is None
        assert ledger.balance_of(PAYER) == to_wei("10")

    @pytest.mark.asyncio
    async def test_independent_escrows(self, ledger: InMemoryLedger) -> None:
        payer = EscrowClient(ledger, PAYER)
        agent = EscrowClient(ledger, AGENT)
        tasks = [_negotiate(f"Task {n}", "0.1") for n in range(3)]

        created = await asyncio.gather(
            *(payer.create(AGENT, hash_ap2_intent(i), to_wei("0.1")) for i, _ in tasks)
        )
        ids = sorted(c.escrow_id for c in created)
        assert ids == [0, 1, 2]

        await agent.submit_proof(ids[0], keccak_hex("proof-0"))
        await payer.settle(ids[0])
        await payer.refund(ids[1])

        labels = [await payer.status(i) for i in ids]
        assert labels == [AuditStatus.SETTLED, AuditStatus.REFUNDED, AuditStatus.PENDING]
        assert ledger.escrowed_balance == to_wei("0.1")

    @pytest.mark.asyncio
    async def test_refund_proof_race(self) -> None:
        ledger = InMemoryLedger(accounts={PAYER: to_wei("1")}, latency=0.001)
        payer = EscrowClient(ledger, PAYER)
        agent = EscrowClient(ledger, AGENT)
        intent, trigger = _negotiate("Race")
        created = await payer.create(AGENT, hash_ap2_intent(intent), to_wei("0.05"))

        results = await asyncio.gather(
            payer.refund(created.escrow_id),
            agent.submit_proof(created.escrow_id, keccak_hex("race-proof")),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, EscrowError)) == 1
        record = await AuditReconciler(ledger).reconcile(created.escrow_id, intent, trigger)
        assert record.escrow.status in (AuditStatus.REFUNDED, AuditStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_impersonation_rejected(self, ledger: InMemoryLedger) -> None:
        payer = EscrowClient(ledger, PAYER)
        impostor = EscrowClient(ledger, STRANGER)
        intent, _ = _negotiate("Guarded task")
        created = await payer.create(AGENT, hash_ap2_intent(intent), to_wei("0.05"))

        with pytest.raises(UnauthorizedError):
            await impostor.submit_proof(created.escrow_id, keccak_hex("fake"))
        with pytest.raises(UnauthorizedError):
            await impostor.refund(created.escrow_id)

        assert await payer.status(created.escrow_id) == AuditStatus.PENDING
