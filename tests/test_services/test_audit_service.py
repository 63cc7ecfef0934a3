"""Tests for AuditService: every export is a new row and a new file."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from conftest import AGENT, AMOUNT, PAYER, TASK_ID

from wap3_escrow.domain.exceptions import EscrowUnknownError
from wap3_escrow.infrastructure.database import AuditRepository
from wap3_escrow.services.audit_service import AuditService
from wap3_escrow.services.reconciler import AuditReconciler

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

    from wap3_escrow.infrastructure.ledger import InMemoryLedger


class TestAuditService:
    @pytest.mark.asyncio
    async def test_export_persists_row(
        self, ledger: InMemoryLedger, db_session: AsyncSession, intent, trigger
    ) -> None:
        created = await ledger.create_escrow(PAYER, AGENT, TASK_ID, AMOUNT)
        service = AuditService(AuditReconciler(ledger), db_session)

        export = await service.export(created.escrow_id, intent, trigger)

        assert export.path is None
        rows = await AuditRepository(db_session).list_for_escrow(
            ledger.chain.chain_id, created.escrow_id
        )
        assert [row.id for row in rows] == [export.record_id]
        assert rows[0].record == export.record.model_dump(mode="json")

    @pytest.mark.asyncio
    async def test_export_writes_new_file(
        self, ledger: InMemoryLedger, db_session: AsyncSession, intent, trigger, tmp_path: Path
    ) -> None:
        created = await ledger.create_escrow(PAYER, AGENT, TASK_ID, AMOUNT)
        service = AuditService(AuditReconciler(ledger), db_session, output_dir=tmp_path / "audit")

        export = await service.export(created.escrow_id, intent, trigger)

        assert export.path is not None
        assert export.path.name == f"audit_{created.escrow_id}_{export.record_id}.json"
        data = json.loads(export.path.read_text(encoding="utf-8"))
        assert data == export.record.model_dump(mode="json")

    @pytest.mark.asyncio
    async def test_repeated_exports_never_overwrite(
        self, ledger: InMemoryLedger, db_session: AsyncSession, intent, trigger, tmp_path: Path
    ) -> None:
        created = await ledger.create_escrow(PAYER, AGENT, TASK_ID, AMOUNT)
        service = AuditService(AuditReconciler(ledger), db_session, output_dir=tmp_path)

        first = await service.export(created.escrow_id, intent, trigger)
        second = await service.export(created.escrow_id, intent, trigger)

        assert first.record_id != second.record_id
        assert first.path != second.path
        assert first.record == second.record
        assert len(list(tmp_path.glob("audit_*.json"))) == 2

    @pytest.mark.asyncio
    async def test_unknown_escrow_writes_nothing(
        self, ledger: InMemoryLedger, db_session: AsyncSession, intent, trigger, tmp_path: Path
    ) -> None:
        service = AuditService(AuditReconciler(ledger), db_session, output_dir=tmp_path)

        with pytest.raises(EscrowUnknownError):
            await service.export(0, intent, trigger)

        assert list(tmp_path.iterdir()) == []
        assert await AuditRepository(db_session).list_for_escrow(ledger.chain.chain_id, 0) == []
