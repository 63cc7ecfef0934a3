"""Audit record schema.

The serialized field names and their order are the persisted artifact that
downstream consumers rely on; do not rename or reorder them.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from wap3_escrow.domain.enums import AuditStatus  # noqa: TC001 - pydantic needs it at runtime


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class IntentSection(_Section):
    intent_id: str
    ap2_version: str
    hash: str


class TriggerSection(_Section):
    x402_version: str
    payment_id: str
    hash: str


class EscrowSection(_Section):
    escrow_id: int
    payer: str
    agent: str
    amount: str
    status: AuditStatus


class ProofSection(_Section):
    proof_hash: str
    uri: str


class TxSection(_Section):
    create_tx: str
    proof_tx: str | None = None
    settle_tx: str | None = None


class ChainSection(_Section):
    name: str
    chain_id: int


class AuditRecord(_Section):
    """Point-in-time reconstruction of one escrow's lifecycle.

    Derived data: recomputable at any time from ledger state, the event log
    and the negotiation documents. It carries no generation timestamp, so two
    reconciliations with no transition in between serialize identically.
    """

    intent: IntentSection
    trigger: TriggerSection
    escrow: EscrowSection
    proof: ProofSection
    tx: TxSection
    chain: ChainSection

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(indent=indent)
