"""Off-chain negotiation documents: AP2-style intents and x402-style payment triggers.

Both are immutable once created. The escrow core never mutates them; it only
consumes their content hash and a few display fields. Unknown fields are
preserved so documents produced elsewhere hash exactly as supplied.
"""

from __future__ import annotations

import json
import secrets
import time
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from wap3_escrow.hashing import content_hash, keccak_hex

AP2_VERSION = "2025-q3"
X402_VERSION = "2025-q2"

_INTENT_PROTOCOL_FIELDS = (
    "intent_id",
    "ap2_version",
    "task_description",
    "requirements",
    "max_payment",
    "deadline",
)
_TRIGGER_PROTOCOL_FIELDS = (
    "payment_id",
    "x402_version",
    "intent_id",
    "amount",
    "recipient",
    "conditions",
)


class AP2Intent(BaseModel):
    """A buyer's intent for an agent task."""

    model_config = ConfigDict(frozen=True, extra="allow")

    intent_id: str
    ap2_version: str = AP2_VERSION
    task_description: str
    requirements: list[str] = Field(default_factory=list)
    max_payment: str = Field(..., description="Maximum payment in ether, e.g. '0.05'")
    deadline: int | None = Field(default=None, description="Unix timestamp")
    metadata: dict[str, Any] = Field(default_factory=dict)


class X402Trigger(BaseModel):
    """A payment trigger that initiates escrow creation for an intent."""

    model_config = ConfigDict(frozen=True, extra="allow")

    payment_id: str
    x402_version: str = X402_VERSION
    intent_id: str
    amount: str = Field(..., description="Payment in ether, e.g. '0.05'")
    recipient: str = Field(..., description="Agent address")
    conditions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _created_metadata() -> dict[str, Any]:
    return {"created_at": datetime.now(UTC).isoformat()}


def create_ap2_intent(
    task_description: str,
    max_payment: str,
    requirements: list[str] | None = None,
    deadline: int | None = None,
) -> AP2Intent:
    """Create a fresh intent with a unique keccak-derived id."""
    nonce = secrets.token_hex(8)
    intent_id = keccak_hex(f"{task_description}-{time.time_ns()}-{nonce}")
    return AP2Intent(
        intent_id=intent_id,
        task_description=task_description,
        requirements=list(requirements or []),
        max_payment=max_payment,
        deadline=deadline,
        metadata=_created_metadata(),
    )


def create_x402_trigger(
    intent_id: str,
    amount: str,
    recipient: str,
    conditions: list[str] | None = None,
) -> X402Trigger:
    """Create a payment trigger referencing `intent_id`."""
    payment_id = keccak_hex(f"{intent_id}-{amount}-{recipient}-{time.time_ns()}")
    return X402Trigger(
        payment_id=payment_id,
        intent_id=intent_id,
        amount=amount,
        recipient=recipient,
        conditions=list(conditions or []),
        metadata=_created_metadata(),
    )


def _protocol_hash(document: BaseModel, fields: tuple[str, ...]) -> str:
    # Field order is part of the hash: keys stay in declaration order, unset ones are dropped
    data = document.model_dump()
    payload = {name: data[name] for name in fields if data.get(name) is not None}
    return keccak_hex(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))


def hash_ap2_intent(intent: AP2Intent) -> str:
    """Hash of the intent's protocol fields (metadata excluded); used as the escrow taskId."""
    return _protocol_hash(intent, _INTENT_PROTOCOL_FIELDS)


def hash_x402_trigger(trigger: X402Trigger) -> str:
    """Hash of the trigger's protocol fields (metadata excluded)."""
    return _protocol_hash(trigger, _TRIGGER_PROTOCOL_FIELDS)


def document_hash(document: BaseModel | dict[str, Any]) -> str:
    """Content hash of the whole document as supplied, metadata and extra fields included."""
    if isinstance(document, BaseModel):
        document = document.model_dump(mode="json")
    return content_hash(document)
