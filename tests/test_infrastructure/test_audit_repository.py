"""Tests for the audit record repository on SQLite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.exc import IntegrityError

from wap3_escrow.domain.enums import AuditStatus
from wap3_escrow.infrastructure.database import AuditRecordRow, AuditRepository
from wap3_escrow.schemas.audit import (
    AuditRecord,
    ChainSection,
    EscrowSection,
    IntentSection,
    ProofSection,
    TriggerSection,
    TxSection,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

ZERO = "0x" + "0" * 64


def _record(escrow_id: int = 0, status: AuditStatus = AuditStatus.PENDING) -> AuditRecord:
    return AuditRecord(
        intent=IntentSection(intent_id="0x" + "01" * 32, ap2_version="2025-q3", hash="0x" + "02" * 32),
        trigger=TriggerSection(x402_version="2025-q2", payment_id="0x" + "03" * 32, hash="0x" + "04" * 32),
        escrow=EscrowSection(
            escrow_id=escrow_id,
            payer="0x" + "b0" * 20,
            agent="0x" + "a1" * 20,
            amount="0.05",
            status=status,
        ),
        proof=ProofSection(proof_hash=ZERO, uri=""),
        tx=TxSection(create_tx="0x" + "05" * 32),
        chain=ChainSection(name="hardhat-local", chain_id=31337),
    )


class TestAuditRepository:
    @pytest.mark.asyncio
    async def test_add_stores_record_and_columns(self, db_session: AsyncSession) -> None:
        repo = AuditRepository(db_session)
        record = _record(escrow_id=4)

        row = await repo.add(record)

        assert isinstance(row, AuditRecordRow)
        assert row.id is not None
        assert row.escrow_id == 4
        assert row.chain_id == 31337
        assert row.status == "pending"
        assert row.intent_hash == record.intent.hash
        assert row.settle_tx is None
        assert row.record == record.model_dump(mode="json")

    @pytest.mark.asyncio
    async def test_every_add_is_a_new_row(self, db_session: AsyncSession) -> None:
        repo = AuditRepository(db_session)
        first = await repo.add(_record(escrow_id=1))
        second = await repo.add(_record(escrow_id=1))

        assert first.id != second.id
        rows = await repo.list_for_escrow(31337, 1)
        assert {row.id for row in rows} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_list_filters_by_escrow(self, db_session: AsyncSession) -> None:
        repo = AuditRepository(db_session)
        await repo.add(_record(escrow_id=1))
        await repo.add(_record(escrow_id=2))

        assert len(await repo.list_for_escrow(31337, 2)) == 1
        assert await repo.list_for_escrow(1, 2) == []

    @pytest.mark.asyncio
    async def test_invalid_status_violates_constraint(self, db_session: AsyncSession) -> None:
        db_session.add(
            AuditRecordRow(
                escrow_id=0,
                chain_id=31337,
                status="lost",
                intent_hash="0x" + "02" * 32,
                record={},
            )
        )
        with pytest.raises(IntegrityError):
            await db_session.flush()
