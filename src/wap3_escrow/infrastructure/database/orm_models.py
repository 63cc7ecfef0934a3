"""SQLAlchemy 2.0 ORM models for exported audit records.

One table, `audit_records`: every export inserts a new row holding the full
serialized record plus a few columns lifted out of it for querying. Rows are
never updated or deleted at the application level; reconciling again
produces another row.

JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and the simulation).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, CheckConstraint, DateTime, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class AuditRecordRow(Base):
    """One exported audit record. APPEND-ONLY."""

    __tablename__ = "audit_records"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Escrow identity ---
    escrow_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Ledger-assigned escrow id",
    )
    chain_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Chain the escrow lives on",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Status label at reconciliation time",
    )

    # --- Correlation ---
    intent_hash: Mapped[str] = mapped_column(
        String(66),
        nullable=False,
        comment="Content hash of the AP2 intent document",
    )
    settle_tx: Mapped[str | None] = mapped_column(
        String(66),
        nullable=True,
        default=None,
        comment="Release transaction, null until settled",
    )

    # --- Payload ---
    record: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="The audit record exactly as exported",
    )

    # --- Timestamp ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'settled', 'refunded')",
            name="ck_audit_valid_status",
        ),
        CheckConstraint("escrow_id >= 0", name="ck_audit_escrow_id"),
        Index("idx_audit_escrow", "chain_id", "escrow_id"),
        Index("idx_audit_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditRecordRow id={self.id} escrow={self.escrow_id} status={self.status}>"
