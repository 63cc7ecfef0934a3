"""Audit Reconciler: rebuilds an escrow's lifecycle record from the ledger.

The projection itself, `reconcile_audit_record`, is a pure function over
(snapshot, events, documents) so it can be tested with fabricated event
lists. `AuditReconciler` fetches those inputs from a ledger: one state read
and three event queries filtered by escrow id, run concurrently.

Reconciliation never mutates the ledger. It fails fast: an unknown escrow
raises EscrowUnknownError, an unreachable ledger LedgerUnavailableError,
and a duplicated event ConsistencyViolationError. A missing proof or
settlement event is a normal null.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from wap3_escrow.domain.enums import EventType
from wap3_escrow.domain.exceptions import (
    ConsistencyViolationError,
    EscrowUnknownError,
    InvalidInputError,
)
from wap3_escrow.hashing import is_zero_hash
from wap3_escrow.logging_config import get_logger
from wap3_escrow.schemas.audit import (
    AuditRecord,
    ChainSection,
    EscrowSection,
    IntentSection,
    ProofSection,
    TriggerSection,
    TxSection,
)
from wap3_escrow.schemas.negotiation import document_hash
from wap3_escrow.units import format_ether

if TYPE_CHECKING:
    from collections.abc import Iterable

    from wap3_escrow.domain.chains import ChainConfig
    from wap3_escrow.domain.ledger_protocol import Ledger
    from wap3_escrow.domain.models import Escrow, LedgerEvent

    Document = BaseModel | Mapping[str, Any]

logger = get_logger(__name__)

# Event kinds whose transaction ids end up in the record
AUDITED_EVENTS = (
    EventType.ESCROW_CREATED,
    EventType.PROOF_SUBMITTED,
    EventType.PAYMENT_RELEASED,
)


def _field(document: Document, name: str) -> str:
    value = document.get(name) if isinstance(document, Mapping) else getattr(document, name, None)
    if not isinstance(value, str) or not value:
        raise InvalidInputError(f"Negotiation document is missing {name!r}")
    return value


def _hash_document(document: Document) -> str:
    if isinstance(document, BaseModel):
        return document_hash(document)
    return document_hash(dict(document))


def proof_uri(proof_hash: str, scheme: str = "walrus") -> str:
    """Display locator for a proof handle; empty until proof is submitted."""
    if is_zero_hash(proof_hash):
        return ""
    return f"{scheme}://{proof_hash.removeprefix('0x')}"


def single_tx(events: Iterable[LedgerEvent], event_type: EventType, escrow_id: int) -> str | None:
    """Transaction id of the only `event_type` event for `escrow_id`, or None.

    Raises:
        ConsistencyViolationError: If the log holds more than one such event.
    """
    matches = [
        evt for evt in events if evt.event_type == event_type and evt.escrow_id == escrow_id
    ]
    if len(matches) > 1:
        raise ConsistencyViolationError(
            f"Escrow {escrow_id} has {len(matches)} {event_type} events "
            f"(tx {', '.join(evt.tx_hash for evt in matches)})",
            escrow_id=escrow_id,
        )
    return matches[0].tx_hash if matches else None


def reconcile_audit_record(
    escrow: Escrow,
    events: Iterable[LedgerEvent],
    intent: Document,
    trigger: Document,
    chain: ChainConfig,
    proof_uri_scheme: str = "walrus",
) -> AuditRecord:
    """Project a snapshot and its event log into an audit record.

    Args:
        escrow: Current snapshot of the escrow.
        events: Ledger events; entries for other escrows or other kinds are ignored.
        intent: AP2 intent document (model or plain mapping).
        trigger: x402 trigger document (model or plain mapping).
        chain: Identity of the chain the ledger runs on.
        proof_uri_scheme: Scheme of the display locator built from the proof hash.

    Raises:
        EscrowUnknownError: If the escrow was never funded.
        ConsistencyViolationError: If any audited event occurs more than once.
    """
    if not escrow.funded:
        raise EscrowUnknownError(escrow.escrow_id)

    events = list(events)
    escrow_id = escrow.escrow_id
    create_tx, proof_tx, settle_tx = (
        single_tx(events, event_type, escrow_id) for event_type in AUDITED_EVENTS
    )

    return AuditRecord(
        intent=IntentSection(
            intent_id=_field(intent, "intent_id"),
            ap2_version=_field(intent, "ap2_version"),
            hash=_hash_document(intent),
        ),
        trigger=TriggerSection(
            x402_version=_field(trigger, "x402_version"),
            payment_id=_field(trigger, "payment_id"),
            hash=_hash_document(trigger),
        ),
        escrow=EscrowSection(
            escrow_id=escrow_id,
            payer=escrow.payer,
            agent=escrow.agent,
            amount=format_ether(escrow.amount),
            status=escrow.status_label,
        ),
        proof=ProofSection(
            proof_hash=escrow.proof_hash,
            uri=proof_uri(escrow.proof_hash, proof_uri_scheme),
        ),
        tx=TxSection(create_tx=create_tx or "", proof_tx=proof_tx, settle_tx=settle_tx),
        chain=ChainSection(name=chain.name, chain_id=chain.chain_id),
    )


class AuditReconciler:
    """Fetches ledger state and events and reconciles them into an AuditRecord."""

    def __init__(self, ledger: Ledger, proof_uri_scheme: str = "walrus") -> None:
        self._ledger = ledger
        self._proof_uri_scheme = proof_uri_scheme

    async def reconcile(
        self, escrow_id: int, intent: Document, trigger: Document
    ) -> AuditRecord:
        escrow = await self._ledger.read(escrow_id)
        if not escrow.funded:
            logger.warning("audit.escrow_unknown", escrow_id=escrow_id)
            raise EscrowUnknownError(escrow_id)

        results = await asyncio.gather(
            *(self._ledger.query_events(event_type, escrow_id) for event_type in AUDITED_EVENTS)
        )
        events = [evt for batch in results for evt in batch]

        record = reconcile_audit_record(
            escrow,
            events,
            intent,
            trigger,
            self._ledger.chain,
            proof_uri_scheme=self._proof_uri_scheme,
        )
        logger.info(
            "audit.reconciled",
            escrow_id=escrow_id,
            status=str(record.escrow.status),
            proof_tx=record.tx.proof_tx,
            settle_tx=record.tx.settle_tx,
        )
        return record
