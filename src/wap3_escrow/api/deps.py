"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the ledger,
database sessions, audit services and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends

from wap3_escrow.config import Settings, get_settings
from wap3_escrow.infrastructure.database.engine import get_async_session
from wap3_escrow.infrastructure.ledger import get_ledger
from wap3_escrow.services.audit_service import AuditService
from wap3_escrow.services.reconciler import AuditReconciler

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from wap3_escrow.domain.ledger_protocol import Ledger


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_ledger_dep() -> Ledger:
    """Provide the configured ledger backend."""
    return get_ledger()


def get_reconciler(
    ledger: Ledger = Depends(get_ledger_dep),
    settings: Settings = Depends(get_app_settings),
) -> AuditReconciler:
    """Provide an AuditReconciler over the configured ledger."""
    return AuditReconciler(ledger, proof_uri_scheme=settings.proof_uri_scheme)


async def get_audit_service(
    reconciler: AuditReconciler = Depends(get_reconciler),
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> AuditService:
    """Provide an AuditService bound to the current session."""
    return AuditService(reconciler, session, output_dir=settings.audit_output_dir)
