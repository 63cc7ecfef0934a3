"""MCP Tool definitions for WAP3 escrow.

These tools expose the escrow lifecycle via the Model Context Protocol,
allowing AI agents to discover and call them programmatically.

Tools:
    - create_escrow: Lock funds for an agent task
    - submit_proof: Agent records its proof of completion
    - settle_escrow: Payer releases payment to the agent
    - refund_escrow: Payer takes the funds back before any proof
    - check_status: Check the current status of an escrow
    - export_audit: Reconcile and persist an audit record

The MCP server is mounted into FastAPI at /mcp via app.mount().
Each tool manages its own database session (no FastAPI Depends available).
Failures come back as the error dict of the domain exception.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from wap3_escrow.config import get_settings
from wap3_escrow.domain.exceptions import EscrowError
from wap3_escrow.domain.state_machine import EscrowStateMachine
from wap3_escrow.infrastructure.database.engine import session_scope
from wap3_escrow.infrastructure.ledger import get_ledger
from wap3_escrow.logging_config import get_logger
from wap3_escrow.services.audit_service import AuditService
from wap3_escrow.services.escrow_client import EscrowClient
from wap3_escrow.services.reconciler import AuditReconciler
from wap3_escrow.units import format_ether, to_wei

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "WAP3 Escrow",
    json_response=True,
)


def _failed(tool: str, exc: EscrowError) -> dict[str, Any]:
    logger.warning(
        f"mcp.{tool}.rejected",
        code=exc.code,
        escrow_id=exc.escrow_id,
        caller=exc.caller,
        error=exc.message,
    )
    return exc.to_dict()


@mcp.tool()
async def create_escrow(
    payer: str,
    agent: str,
    task_id: str,
    amount_eth: str,
) -> dict:
    """Lock funds for an agent task.

    Not idempotent: if the call times out, check the escrow with check_status
    before calling again, or a second escrow will be created.

    Args:
        payer: Your address (0x-prefixed, 42 chars); you will be the only one able to release or refund.
        agent: Address of the agent that will do the task.
        task_id: 32-byte task handle (0x + 64 hex), usually the hash of the AP2 intent.
        amount_eth: Amount to lock, in ether (e.g. "0.05").

    Returns:
        The new escrow_id and the creating transaction.
    """
    try:
        client = EscrowClient(get_ledger(), payer)
        result = await client.create(agent, task_id, to_wei(amount_eth))
        return {
            "escrow_id": result.escrow_id,
            "tx_hash": result.tx_hash,
            "status": "pending",
            "message": "Escrow funded. Next step: the agent submits proof.",
        }
    except EscrowError as exc:
        return _failed("create_escrow", exc)
    except Exception as exc:
        logger.exception("mcp.create_escrow.error")
        return {"error": str(exc)}


@mcp.tool()
async def submit_proof(escrow_id: int, agent: str, proof_hash: str) -> dict:
    """Submit proof of completion for an escrow, as its agent.

    Args:
        escrow_id: Id returned by create_escrow.
        agent: Your address; must be the escrow's agent.
        proof_hash: 32-byte proof locator (0x + 64 hex), non-zero.

    Returns:
        The proof transaction and the new status.
    """
    try:
        tx_hash = await EscrowClient(get_ledger(), agent).submit_proof(escrow_id, proof_hash)
        return {
            "escrow_id": escrow_id,
            "tx_hash": tx_hash,
            "status": "completed",
            "message": "Proof recorded. The payer can now release the payment.",
        }
    except EscrowError as exc:
        return _failed("submit_proof", exc)
    except Exception as exc:
        logger.exception("mcp.submit_proof.error")
        return {"error": str(exc)}


@mcp.tool()
async def settle_escrow(escrow_id: int, payer: str) -> dict:
    """Release the locked payment to the agent, as the escrow's payer.

    Args:
        escrow_id: Id returned by create_escrow.
        payer: Your address; must be the escrow's payer.

    Returns:
        The settlement transaction.
    """
    try:
        tx_hash = await EscrowClient(get_ledger(), payer).settle(escrow_id)
        return {"escrow_id": escrow_id, "tx_hash": tx_hash, "status": "settled"}
    except EscrowError as exc:
        return _failed("settle_escrow", exc)
    except Exception as exc:
        logger.exception("mcp.settle_escrow.error")
        return {"error": str(exc)}


@mcp.tool()
async def refund_escrow(escrow_id: int, payer: str) -> dict:
    """Take the locked payment back, as the escrow's payer.

    Only possible while no proof has been submitted.

    Args:
        escrow_id: Id returned by create_escrow.
        payer: Your address; must be the escrow's payer.

    Returns:
        The refund transaction.
    """
    try:
        tx_hash = await EscrowClient(get_ledger(), payer).refund(escrow_id)
        return {"escrow_id": escrow_id, "tx_hash": tx_hash, "status": "refunded"}
    except EscrowError as exc:
        return _failed("refund_escrow", exc)
    except Exception as exc:
        logger.exception("mcp.refund_escrow.error")
        return {"error": str(exc)}


@mcp.tool()
async def check_status(escrow_id: int) -> dict:
    """Check the current status of an escrow.

    Args:
        escrow_id: Id returned by create_escrow.

    Returns:
        Current snapshot, status label and allowed next actions.
    """
    try:
        escrow = await get_ledger().read(escrow_id)
        if not escrow.funded:
            return {"escrow_id": escrow_id, "error": "NOT_FOUND", "funded": False}
        return {
            **escrow.to_dict(),
            "amount_eth": format_ether(escrow.amount),
            "label": str(escrow.status_label),
            "allowed_events": EscrowStateMachine(escrow.status).get_allowed_events(),
        }
    except EscrowError as exc:
        return _failed("check_status", exc)
    except Exception as exc:
        logger.exception("mcp.check_status.error")
        return {"error": str(exc)}


@mcp.tool()
async def export_audit(escrow_id: int, intent: dict, trigger: dict) -> dict:
    """Reconcile an escrow against its negotiation documents and store the audit record.

    Args:
        escrow_id: Id returned by create_escrow.
        intent: The AP2 intent document the escrow was negotiated under.
        trigger: The x402 payment trigger that funded it.

    Returns:
        The stored record id and the audit record.
    """
    settings = get_settings()
    try:
        reconciler = AuditReconciler(get_ledger(), proof_uri_scheme=settings.proof_uri_scheme)
        async with session_scope() as session:
            service = AuditService(reconciler, session, output_dir=settings.audit_output_dir)
            export = await service.export(escrow_id, intent, trigger)
        return {
            "record_id": str(export.record_id),
            "path": str(export.path) if export.path else None,
            "record": export.record.model_dump(mode="json"),
        }
    except EscrowError as exc:
        return _failed("export_audit", exc)
    except Exception as exc:
        logger.exception("mcp.export_audit.error")
        return {"error": str(exc)}
