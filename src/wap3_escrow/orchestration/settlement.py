"""Settlement Workflow: the automated release step after proof submission.

Runs, for one escrow:

    read status -> [route] -> settle (if completed) OR skip (if already settled)
                -> reconcile audit record

The status is re-read from the ledger on every run. Pending and refunded
escrows are rejected without touching the ledger. Nothing is retried: a
failure propagates to the caller, who decides whether to run it again.

Usage:
    from wap3_escrow.orchestration.settlement import run_settlement_workflow

    outcome = await run_settlement_workflow(
        client=EscrowClient(ledger, payer),
        reconciler=AuditReconciler(ledger),
        escrow_id=0,
        intent=intent,
        trigger=trigger,
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypedDict

from wap3_escrow.domain.enums import AuditStatus
from wap3_escrow.domain.exceptions import InvalidStateTransitionError
from wap3_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from wap3_escrow.services.escrow_client import EscrowClient
    from wap3_escrow.services.reconciler import AuditReconciler, Document

logger = get_logger(__name__)

ALREADY_SETTLED = "already_settled"

_BLOCKED = {
    AuditStatus.PENDING: "NOT_COMPLETED",
    AuditStatus.REFUNDED: "ALREADY_REFUNDED",
}


class SettlementOutcome(TypedDict):
    """Result of one settlement run."""

    escrow_id: int
    initial_status: str
    final_status: str
    settle_tx: str
    audit: dict[str, Any]


async def run_settlement_workflow(
    client: EscrowClient,
    reconciler: AuditReconciler,
    escrow_id: int,
    intent: Document,
    trigger: Document,
) -> SettlementOutcome:
    """Release payment for a completed escrow and reconcile its audit record.

    Args:
        client: Client acting as the escrow's payer.
        reconciler: Reconciler bound to the same ledger.
        escrow_id: Escrow to settle.
        intent: AP2 intent document the escrow was negotiated under.
        trigger: x402 trigger document the escrow was funded by.

    Returns:
        SettlementOutcome; `settle_tx` is "already_settled" if no transaction was sent.

    Raises:
        EscrowNotFoundError: If the escrow does not exist.
        InvalidStateTransitionError: If the escrow is pending or refunded.
    """
    initial = await client.status(escrow_id)
    logger.info("workflow.status", escrow_id=escrow_id, status=str(initial))

    if initial in _BLOCKED:
        logger.warning(
            "workflow.not_settleable",
            escrow_id=escrow_id,
            caller=client.caller,
            status=str(initial),
        )
        raise InvalidStateTransitionError(
            escrow_id=escrow_id,
            current_state=str(initial),
            attempted="release",
            reason=_BLOCKED[initial],
            caller=client.caller,
        )

    if initial == AuditStatus.SETTLED:
        settle_tx = ALREADY_SETTLED
        logger.info("workflow.already_settled", escrow_id=escrow_id)
    else:
        logger.info("workflow.settle", escrow_id=escrow_id, caller=client.caller)
        settle_tx = await client.settle(escrow_id)

    record = await reconciler.reconcile(escrow_id, intent, trigger)
    logger.info(
        "workflow.completed",
        escrow_id=escrow_id,
        settle_tx=settle_tx,
        final_status=str(record.escrow.status),
    )
    return SettlementOutcome(
        escrow_id=escrow_id,
        initial_status=str(initial),
        final_status=str(record.escrow.status),
        settle_tx=settle_tx,
        audit=record.model_dump(mode="json"),
    )
