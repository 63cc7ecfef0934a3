"""Orchestration layer: automated settlement workflow."""

from wap3_escrow.orchestration.settlement import run_settlement_workflow

__all__ = ["run_settlement_workflow"]
