"""Escrow REST API routes.

These endpoints provide the HTTP interface for the escrow lifecycle and
audit export. The MCP tools in mcp_server/tools.py call the same client
and services, ensuring consistency. The caller identity travels in the
request body; the ledger checks it against the escrow's payer or agent.

Routes:
    POST   /api/v1/escrow                 Lock funds for an agent task
    GET    /api/v1/escrow/{id}            Get the current snapshot
    POST   /api/v1/escrow/{id}/proof      Agent submits proof of completion
    POST   /api/v1/escrow/{id}/release    Payer releases payment to the agent
    POST   /api/v1/escrow/{id}/refund     Payer takes the funds back (before proof only)
    POST   /api/v1/escrow/{id}/audit      Reconcile and export an audit record
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException
from redis.exceptions import RedisError

from wap3_escrow.api.deps import get_audit_service, get_ledger_dep
from wap3_escrow.domain.exceptions import (
    DuplicateOperationError,
    EscrowNotFoundError,
    InvalidInputError,
    LedgerUnavailableError,
)
from wap3_escrow.domain.state_machine import EscrowStateMachine
from wap3_escrow.infrastructure import redis_client
from wap3_escrow.logging_config import get_logger
from wap3_escrow.schemas.escrow import (
    AuditExportResponse,
    AuditRequest,
    CreateEscrowRequest,
    EscrowResponse,
    PayerActionRequest,
    SubmitProofRequest,
    TransitionResponse,
)
from wap3_escrow.services.escrow_client import EscrowClient
from wap3_escrow.units import format_ether, to_wei

if TYPE_CHECKING:
    from wap3_escrow.domain.ledger_protocol import Ledger
    from wap3_escrow.domain.models import Escrow
    from wap3_escrow.services.audit_service import AuditService

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


def _to_response(escrow: Escrow) -> EscrowResponse:
    return EscrowResponse(
        escrow_id=escrow.escrow_id,
        payer=escrow.payer,
        agent=escrow.agent,
        amount_wei=escrow.amount,
        amount_eth=format_ether(escrow.amount),
        task_id=escrow.task_id,
        proof_hash=escrow.proof_hash,
        status=str(escrow.status),
        label=str(escrow.status_label),
        allowed_events=EscrowStateMachine(escrow.status).get_allowed_events(),
    )


async def _transition_response(ledger: Ledger, escrow_id: int, tx_hash: str) -> TransitionResponse:
    escrow = await ledger.read(escrow_id)
    return TransitionResponse(escrow_id=escrow_id, tx_hash=tx_hash, status=str(escrow.status))


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransitionResponse,
    status_code=201,
    summary="Lock funds for an agent task",
)
async def create_escrow(
    request: CreateEscrowRequest,
    ledger: Ledger = Depends(get_ledger_dep),
) -> TransitionResponse:
    """Create a funded escrow with the caller as payer.

    Not idempotent on its own: pass `idempotency_key` so a retried request
    is answered with 409 instead of locking the funds twice.
    """
    client = EscrowClient(ledger, request.caller)
    try:
        amount = to_wei(request.amount_eth)
    except ValueError as err:
        raise InvalidInputError(
            f"Amount out of range: {request.amount_eth} ether",
            reason="INVALID_AMOUNT",
            caller=client.caller,
        ) from err
    key = f"create:{request.idempotency_key}" if request.idempotency_key else None

    if key is not None:
        try:
            claimed = await redis_client.claim_idempotency(key)
        except (RuntimeError, RedisError) as err:
            raise HTTPException(
                status_code=503, detail="Idempotency store unavailable"
            ) from err
        if not claimed:
            raise DuplicateOperationError(request.idempotency_key, caller=client.caller)

    try:
        result = await client.create(request.agent, request.task_id, amount)
    except LedgerUnavailableError:
        # Outcome unknown: keep the key so a retry cannot mint a second escrow
        raise
    except Exception:
        if key is not None:
            await redis_client.release_idempotency(key)
        raise

    return await _transition_response(ledger, result.escrow_id, result.tx_hash)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/proof",
    response_model=TransitionResponse,
    summary="Submit proof of completion",
)
async def submit_proof(
    escrow_id: int,
    request: SubmitProofRequest,
    ledger: Ledger = Depends(get_ledger_dep),
) -> TransitionResponse:
    """Agent records its proof. Transitions PENDING -> COMPLETED."""
    tx_hash = await EscrowClient(ledger, request.caller).submit_proof(escrow_id, request.proof_hash)
    return await _transition_response(ledger, escrow_id, tx_hash)


@router.post(
    "/{escrow_id}/release",
    response_model=TransitionResponse,
    summary="Release payment to the agent",
)
async def release_escrow(
    escrow_id: int,
    request: PayerActionRequest,
    ledger: Ledger = Depends(get_ledger_dep),
) -> TransitionResponse:
    """Payer pays the agent. Transitions COMPLETED -> RELEASED."""
    tx_hash = await EscrowClient(ledger, request.caller).settle(escrow_id)
    return await _transition_response(ledger, escrow_id, tx_hash)


@router.post(
    "/{escrow_id}/refund",
    response_model=TransitionResponse,
    summary="Refund the payer",
)
async def refund_escrow(
    escrow_id: int,
    request: PayerActionRequest,
    ledger: Ledger = Depends(get_ledger_dep),
) -> TransitionResponse:
    """Payer takes the funds back. Transitions PENDING -> REFUNDED."""
    tx_hash = await EscrowClient(ledger, request.caller).refund(escrow_id)
    return await _transition_response(ledger, escrow_id, tx_hash)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{escrow_id}",
    response_model=EscrowResponse,
    summary="Get escrow snapshot",
)
async def get_escrow(
    escrow_id: int,
    ledger: Ledger = Depends(get_ledger_dep),
) -> EscrowResponse:
    """Fetch the current snapshot and the transitions allowed from it."""
    escrow = await ledger.read(escrow_id)
    if not escrow.funded:
        raise EscrowNotFoundError(escrow_id)
    return _to_response(escrow)


@router.post(
    "/{escrow_id}/audit",
    response_model=AuditExportResponse,
    status_code=201,
    summary="Export an audit record",
)
async def export_audit(
    escrow_id: int,
    request: AuditRequest,
    service: AuditService = Depends(get_audit_service),
) -> AuditExportResponse:
    """Reconcile the escrow against its negotiation documents and store a new record."""
    export = await service.export(escrow_id, request.intent, request.trigger)
    return AuditExportResponse(
        record_id=str(export.record_id),
        path=str(export.path) if export.path else None,
        record=export.record.model_dump(mode="json"),
    )
