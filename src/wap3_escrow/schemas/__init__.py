"""Pydantic schemas: audit record, negotiation documents and API bodies."""

from wap3_escrow.schemas.audit import AuditRecord
from wap3_escrow.schemas.escrow import (
    AuditExportResponse,
    AuditRequest,
    CreateEscrowRequest,
    EscrowResponse,
    HealthResponse,
    PayerActionRequest,
    SubmitProofRequest,
    TransitionResponse,
)
from wap3_escrow.schemas.negotiation import (
    AP2Intent,
    X402Trigger,
    create_ap2_intent,
    create_x402_trigger,
    document_hash,
    hash_ap2_intent,
    hash_x402_trigger,
)

__all__ = [
    "AuditRecord",
    "AuditExportResponse",
    "AuditRequest",
    "CreateEscrowRequest",
    "EscrowResponse",
    "HealthResponse",
    "PayerActionRequest",
    "SubmitProofRequest",
    "TransitionResponse",
    "AP2Intent",
    "X402Trigger",
    "create_ap2_intent",
    "create_x402_trigger",
    "document_hash",
    "hash_ap2_intent",
    "hash_x402_trigger",
]
