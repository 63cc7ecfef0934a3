"""Application services: escrow client, audit reconciliation and export."""

from wap3_escrow.services.audit_service import AuditExport, AuditService
from wap3_escrow.services.escrow_client import EscrowClient
from wap3_escrow.services.reconciler import AuditReconciler, reconcile_audit_record

__all__ = [
    "AuditExport",
    "AuditReconciler",
    "AuditService",
    "EscrowClient",
    "reconcile_audit_record",
]
