"""Database infrastructure: engine, ORM models, and repositories."""

from wap3_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
    session_scope,
)
from wap3_escrow.infrastructure.database.orm_models import AuditRecordRow, Base
from wap3_escrow.infrastructure.database.repositories import AuditRepository

__all__ = [
    "Base",
    "AuditRecordRow",
    "AuditRepository",
    "get_async_session",
    "session_scope",
    "init_db",
    "close_db",
]
