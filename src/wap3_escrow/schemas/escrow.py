"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API and
MCP tools. Amounts cross the API as ether decimal strings; the ledger
works in wei.
"""

from __future__ import annotations

from decimal import Decimal  # noqa: TC003 - pydantic needs it at runtime
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEscrowRequest(BaseModel):
    """Request body for locking funds for an agent task."""

    caller: str = Field(
        ...,
        min_length=42,
        max_length=42,
        description="Address of the payer (0x-prefixed, 42 chars)",
        examples=["0x742d35cc6634c0532925a3b844bc9e7595f2bd18"],
    )
    agent: str = Field(
        ...,
        min_length=42,
        max_length=42,
        description="Address of the agent doing the task",
    )
    task_id: str = Field(
        ...,
        min_length=66,
        max_length=66,
        description="32-byte task handle, usually the hash of the AP2 intent",
    )
    amount_eth: Decimal = Field(
        ...,
        gt=0,
        description="Amount to lock, in ether",
        examples=["0.05"],
    )
    idempotency_key: str | None = Field(
        default=None,
        description="Optional idempotency key to prevent duplicate escrow creation",
    )


class SubmitProofRequest(BaseModel):
    """Request body for an agent submitting proof of completion."""

    caller: str = Field(..., min_length=42, max_length=42, description="Agent address")
    proof_hash: str = Field(
        ...,
        min_length=66,
        max_length=66,
        description="32-byte proof locator (0x-prefixed)",
    )


class PayerActionRequest(BaseModel):
    """Request body for release and refund; only the payer may call them."""

    caller: str = Field(..., min_length=42, max_length=42, description="Payer address")


class AuditRequest(BaseModel):
    """Negotiation documents to reconcile the escrow against."""

    intent: dict[str, Any] = Field(..., description="AP2 intent document")
    trigger: dict[str, Any] = Field(..., description="x402 payment trigger document")


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransitionResponse(BaseModel):
    """Response for an accepted transition."""

    escrow_id: int
    tx_hash: str
    status: str


class EscrowResponse(BaseModel):
    """Current escrow snapshot."""

    escrow_id: int
    payer: str
    agent: str
    amount_wei: int
    amount_eth: str
    task_id: str
    proof_hash: str
    status: str
    label: str
    allowed_events: list[str] = Field(
        description="Transitions the state machine permits from the current status"
    )


class AuditExportResponse(BaseModel):
    """Result of an audit export."""

    record_id: str
    path: str | None = None
    record: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    ledger: str = "unknown"
    database: str = "unknown"
    redis: str = "unknown"
