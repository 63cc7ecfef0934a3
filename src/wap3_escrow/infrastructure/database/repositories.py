"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from wap3_escrow.infrastructure.database.orm_models import AuditRecordRow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from wap3_escrow.schemas.audit import AuditRecord


class AuditRepository:
    """Data access for exported audit records (insert-only)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, record: AuditRecord) -> AuditRecordRow:
        """Insert a new row for `record`. This is the ONLY write operation allowed."""
        row = AuditRecordRow(
            escrow_id=record.escrow.escrow_id,
            chain_id=record.chain.chain_id,
            status=str(record.escrow.status),
            intent_hash=record.intent.hash,
            settle_tx=record.tx.settle_tx,
            record=record.model_dump(mode="json"),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_escrow(self, chain_id: int, escrow_id: int) -> list[AuditRecordRow]:
        """All exports of one escrow, oldest first."""
        result = await self._session.execute(
            select(AuditRecordRow)
            .where(AuditRecordRow.chain_id == chain_id, AuditRecordRow.escrow_id == escrow_id)
            .order_by(AuditRecordRow.created_at.asc())
        )
        return list(result.scalars().all())
