"""Audit Service: reconcile an escrow and store the result durably.

Each export is a new artifact: one new `audit_records` row and, when an
output directory is configured, one new JSON file named after the row id.
Nothing already written is ever updated; running the export again for the
same escrow produces another record.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from wap3_escrow.infrastructure.database.repositories import AuditRepository
from wap3_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

    from wap3_escrow.schemas.audit import AuditRecord
    from wap3_escrow.services.reconciler import AuditReconciler, Document

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuditExport:
    record_id: uuid.UUID
    record: AuditRecord
    path: Path | None = None


class AuditService:
    """Exports audit records to the database and, optionally, to files."""

    def __init__(
        self,
        reconciler: AuditReconciler,
        session: AsyncSession,
        output_dir: Path | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._repo = AuditRepository(session)
        self._output_dir = output_dir

    async def export(self, escrow_id: int, intent: Document, trigger: Document) -> AuditExport:
        """Reconcile `escrow_id` and persist the record as a new artifact."""
        record = await self._reconciler.reconcile(escrow_id, intent, trigger)
        row = await self._repo.add(record)

        path = None
        if self._output_dir is not None:
            path = self._output_dir / f"audit_{escrow_id}_{row.id}.json"
            await asyncio.to_thread(_write_new_file, path, record.to_json())

        logger.info(
            "audit.exported",
            escrow_id=escrow_id,
            record_id=str(row.id),
            status=str(record.escrow.status),
            path=str(path) if path else None,
        )
        return AuditExport(record_id=row.id, record=record, path=path)


def _write_new_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # "x" refuses to overwrite an existing artifact
    with path.open("x", encoding="utf-8") as fh:
        fh.write(content)
        fh.write("\n")
