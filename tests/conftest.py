"""Shared test fixtures for the WAP3 escrow test suite.

Provides:
    - Well-known payer/agent/stranger addresses
    - A funded in-memory ledger and clients bound to it
    - Negotiation documents for audit tests
    - An isolated in-memory SQLite session for repository tests
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wap3_escrow.hashing import keccak_hex
from wap3_escrow.infrastructure.database.orm_models import Base
from wap3_escrow.infrastructure.ledger import InMemoryLedger
from wap3_escrow.schemas.negotiation import AP2Intent, X402Trigger
from wap3_escrow.services.escrow_client import EscrowClient
from wap3_escrow.units import to_wei

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

PAYER = "0x" + "b0" * 20
AGENT = "0x" + "a1" * 20
STRANGER = "0x" + "5e" * 20

TASK_ID = keccak_hex("classify-images-001")
PROOF_HASH = keccak_hex("proof-for-classify-images-001")
AMOUNT = to_wei("0.05")

# ---------------------------------------------------------------------------
# Ledger Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Return a fresh ledger where the payer holds 10 ETH."""
    return InMemoryLedger(accounts={PAYER: to_wei("10")})


@pytest.fixture
def payer_client(ledger: InMemoryLedger) -> EscrowClient:
    return EscrowClient(ledger, PAYER)


@pytest.fixture
def agent_client(ledger: InMemoryLedger) -> EscrowClient:
    return EscrowClient(ledger, AGENT)


@pytest.fixture
def stranger_client(ledger: InMemoryLedger) -> EscrowClient:
    return EscrowClient(ledger, STRANGER)


# ---------------------------------------------------------------------------
# Negotiation Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def intent() -> AP2Intent:
    """Return a deterministic AP2 intent."""
    return AP2Intent(
        intent_id=keccak_hex("intent-001"),
        task_description="Classify 500 images into 10 categories",
        requirements=["accuracy >= 0.9"],
        max_payment="0.05",
        deadline=1_760_000_000,
        metadata={"created_at": "2025-10-01T00:00:00+00:00"},
    )


@pytest.fixture
def trigger(intent: AP2Intent) -> X402Trigger:
    """Return a deterministic x402 trigger for `intent`."""
    return X402Trigger(
        payment_id=keccak_hex("payment-001"),
        intent_id=intent.intent_id,
        amount="0.05",
        recipient=AGENT,
        conditions=["proof submitted"],
        metadata={"created_at": "2025-10-01T00:00:00+00:00"},
    )


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_session() -> AsyncIterator[AsyncSession]:
    """Yield a session on a fresh in-memory SQLite database with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()
