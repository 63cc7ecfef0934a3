#!/usr/bin/env python3
"""WAP3 Escrow: End-to-End Simulation.

Runs four scenarios against the in-memory ledger with PayerBot and AgentBot:

    Scenario 1: Happy Path
        - Payer negotiates an AP2 intent and x402 trigger, locks 0.05 ETH
        - Agent submits proof -> settlement workflow releases the payment
        - Audit record exported: status "settled", settle_tx set

    Scenario 2: Refund
        - Payer locks funds, the agent never delivers
        - Payer refunds -> audit record: status "refunded", settle_tx null

    Scenario 3: Multiple Tasks
        - One payer, three agents, three escrows settled independently

    Scenario 4: Race
        - The payer's refund and the agent's proof are fired concurrently
        - Exactly one of them wins; the audit shows which

Usage:
    # With the configured database (PostgreSQL by default):
    python simulation.py

    # Without Docker (SQLite in-memory):
    python simulation.py --sqlite

    # Run a specific scenario and keep the audit JSON files:
    python simulation.py --sqlite --scenario 1 --audit-dir ./out
"""

from __future__ import annotations

import argparse
import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from wap3_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

# Module-level state
_ledger = None
_audit_dir: Path | None = None


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------
async def init_environment(use_sqlite: bool = False, audit_dir: Path | None = None) -> None:
    """Create a fresh in-memory ledger and the audit tables."""
    global _ledger, _audit_dir

    if use_sqlite:
        os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    from wap3_escrow.config import get_settings
    from wap3_escrow.infrastructure.database.engine import init_db
    from wap3_escrow.infrastructure.ledger import InMemoryLedger, set_ledger

    get_settings.cache_clear()
    _ledger = InMemoryLedger(latency=0.001)
    set_ledger(_ledger)
    _audit_dir = audit_dir
    await init_db()
    logger.info("simulation.initialized", sqlite=use_sqlite, audit_dir=str(audit_dir))


async def shutdown_environment() -> None:
    from wap3_escrow.infrastructure.database.engine import close_db
    from wap3_escrow.infrastructure.ledger import set_ledger

    set_ledger(None)
    await close_db()


async def export_audit(escrow_id: int, intent: Any, trigger: Any) -> dict:
    """Reconcile and persist one audit record, returning it as JSON data."""
    from wap3_escrow.infrastructure.database.engine import session_scope
    from wap3_escrow.services.audit_service import AuditService
    from wap3_escrow.services.reconciler import AuditReconciler

    async with session_scope() as session:
        service = AuditService(AuditReconciler(_ledger), session, output_dir=_audit_dir)
        export = await service.export(escrow_id, intent, trigger)
    if export.path:
        print(f"  Audit written to {export.path}")
    return export.record.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class PayerBot:
    """Simulated buyer that negotiates, funds and settles escrows."""

    address: str = "0x" + "b0" * 20
    balance_eth: str = "10"
    _client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        from wap3_escrow.services.escrow_client import EscrowClient
        from wap3_escrow.units import to_wei

        _ledger.fund_account(self.address, to_wei(self.balance_eth))
        self._client = EscrowClient(_ledger, self.address)

    @property
    def client(self) -> Any:
        return self._client

    def negotiate(self, task: str, amount_eth: str, agent: str) -> tuple[Any, Any]:
        """Produce the AP2 intent and x402 trigger for a task."""
        from wap3_escrow.schemas.negotiation import create_ap2_intent, create_x402_trigger

        intent = create_ap2_intent(task, amount_eth, requirements=["deliver proof hash"])
        trigger = create_x402_trigger(intent.intent_id, amount_eth, agent)
        logger.info("🔵 PAYER: Negotiated", intent_id=intent.intent_id[:18] + "...")
        return intent, trigger

    async def fund(self, agent: str, intent: Any, amount_eth: str) -> int:
        from wap3_escrow.schemas.negotiation import hash_ap2_intent
        from wap3_escrow.units import to_wei

        result = await self._client.create(agent, hash_ap2_intent(intent), to_wei(amount_eth))
        logger.info(
            "🔵 PAYER: Escrow funded",
            escrow_id=result.escrow_id,
            tx_hash=result.tx_hash[:18] + "...",
        )
        return result.escrow_id

    async def refund(self, escrow_id: int) -> str:
        tx_hash = await self._client.refund(escrow_id)
        logger.info("🔵 PAYER: Refunded", escrow_id=escrow_id)
        return tx_hash


@dataclass
class AgentBot:
    """Simulated agent that does the task and submits a proof hash."""

    address: str = "0x" + "a1" * 20

    async def deliver(self, escrow_id: int, work: str) -> str:
        from wap3_escrow.hashing import keccak_hex
        from wap3_escrow.services.escrow_client import EscrowClient

        proof_hash = keccak_hex(f"proof:{escrow_id}:{work}")
        tx_hash = await EscrowClient(_ledger, self.address).submit_proof(escrow_id, proof_hash)
        logger.info("🟢 AGENT: Proof submitted", escrow_id=escrow_id, proof=proof_hash[:18] + "...")
        return tx_hash


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_audit(record: dict) -> None:
    """Pretty-print the MVP-style audit summary."""
    escrow = record["escrow"]
    tx = record["tx"]
    print(f"  Escrow #{escrow['escrow_id']}: {escrow['amount']} ETH -> {escrow['status']}")
    print(f"  Proof:  {record['proof']['uri'] or '(none)'}")
    print(f"  Create: {tx['create_tx']}")
    print(f"  Proof:  {tx['proof_tx']}")
    print(f"  Settle: {tx['settle_tx']}")
    print(f"  Chain:  {record['chain']['name']} ({record['chain']['chain_id']})")


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    """Payer funds, agent proves, the settlement workflow pays out."""
    from wap3_escrow.orchestration.settlement import run_settlement_workflow
    from wap3_escrow.services.reconciler import AuditReconciler
    from wap3_escrow.units import format_ether

    banner("SCENARIO 1: Happy Path (fund, prove, settle)")

    payer = PayerBot()
    agent = AgentBot()

    section("Step 1: Payer negotiates and funds the escrow")
    intent, trigger = payer.negotiate("Summarize the Q3 report", "0.05", agent.address)
    escrow_id = await payer.fund(agent.address, intent, "0.05")

    section("Step 2: Agent delivers and submits proof")
    await agent.deliver(escrow_id, "summary.md")

    section("Step 3: Automated settlement")
    outcome = await run_settlement_workflow(
        payer.client, AuditReconciler(_ledger), escrow_id, intent, trigger
    )
    print(f"  {outcome['initial_status']} -> {outcome['final_status']} ({outcome['settle_tx']})")
    print(f"  Agent balance: {format_ether(_ledger.balance_of(agent.address))} ETH")

    section("Step 4: Audit export")
    print_audit(await export_audit(escrow_id, intent, trigger))


# ===========================================================================
# Scenario 2: Refund
# ===========================================================================
async def scenario_2_refund() -> None:
    """The agent never delivers; the payer takes the funds back."""
    from wap3_escrow.units import format_ether

    banner("SCENARIO 2: Refund (agent never delivers)")

    payer = PayerBot()
    agent = AgentBot(address="0x" + "a2" * 20)

    section("Step 1: Payer funds the escrow")
    intent, trigger = payer.negotiate("Label 500 images", "0.1", agent.address)
    escrow_id = await payer.fund(agent.address, intent, "0.1")
    print(f"  Payer balance after funding: {format_ether(_ledger.balance_of(payer.address))} ETH")

    section("Step 2: No proof arrives, payer refunds")
    await payer.refund(escrow_id)
    print(f"  Payer balance after refund:  {format_ether(_ledger.balance_of(payer.address))} ETH")

    section("Step 3: Audit export")
    print_audit(await export_audit(escrow_id, intent, trigger))


# ===========================================================================
# Scenario 3: Multiple Tasks
# ===========================================================================
async def scenario_3_multiple_tasks() -> None:
    """One payer, three agents, three independent escrows."""
    from wap3_escrow.units import format_ether, to_wei

    banner("SCENARIO 3: Multiple Independent Escrows")

    payer = PayerBot()
    tasks = [
        ("Image classification batch", AgentBot(address="0x" + "c1" * 20), "0.05"),
        ("Text summarization", AgentBot(address="0x" + "c2" * 20), "0.08"),
        ("Data extraction", AgentBot(address="0x" + "c3" * 20), "0.12"),
    ]

    section("Step 1: Payer funds one escrow per task")
    escrows = []
    for name, agent, amount in tasks:
        intent, _ = payer.negotiate(name, amount, agent.address)
        escrows.append((await payer.fund(agent.address, intent, amount), agent, name))

    section("Step 2: Agents deliver concurrently")
    await asyncio.gather(*(agent.deliver(eid, name) for eid, agent, name in escrows))

    section("Step 3: Payer releases every payment")
    await asyncio.gather(*(payer.client.settle(eid) for eid, _, _ in escrows))

    total = sum(to_wei(amount) for _, _, amount in tasks)
    for eid, _, name in escrows:
        print(f"  Escrow {eid} ({name}): {await payer.client.status(eid)}")
    print(f"\n  Total paid out: {format_ether(total)} ETH")


# ===========================================================================
# Scenario 4: Race
# ===========================================================================
async def scenario_4_race() -> None:
    """Refund and proof submitted at the same time: exactly one commits."""
    banner("SCENARIO 4: Refund vs. Proof Race")

    payer = PayerBot()
    agent = AgentBot(address="0x" + "d4" * 20)

    intent, trigger = payer.negotiate("Translate the manual", "0.02", agent.address)
    escrow_id = await payer.fund(agent.address, intent, "0.02")

    section("Both parties act at once")
    results = await asyncio.gather(
        payer.refund(escrow_id),
        agent.deliver(escrow_id, "manual_fr.pdf"),
        return_exceptions=True,
    )
    for who, result in zip(("refund", "proof"), results, strict=True):
        outcome = f"rejected ({result.code})" if isinstance(result, Exception) else "committed"
        print(f"  {who}: {outcome}")

    print_audit(await export_audit(escrow_id, intent, trigger))


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_refund,
    3: scenario_3_multiple_tasks,
    4: scenario_4_race,
}


async def run(scenario: int = 0, use_sqlite: bool = False, audit_dir: Path | None = None) -> None:
    """Run one scenario, or all of them when `scenario` is 0."""
    await init_environment(use_sqlite=use_sqlite, audit_dir=audit_dir)

    try:
        print("\n" + "=" * 70)
        print("  WAP3 ESCROW SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'configured DATABASE_URL'}")
        print("=" * 70 + "\n")

        if scenario and scenario not in SCENARIOS:
            print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
            return
        for num in [scenario] if scenario else sorted(SCENARIOS):
            await SCENARIOS[num]()

        print("\n" + "=" * 70)
        print("  ✅ SIMULATION COMPLETED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_environment()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="WAP3 Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    parser.add_argument(
        "--audit-dir",
        type=Path,
        default=None,
        help="Also write every exported audit record as a JSON file here.",
    )
    args = parser.parse_args()

    asyncio.run(run(args.scenario, use_sqlite=args.sqlite, audit_dir=args.audit_dir))
