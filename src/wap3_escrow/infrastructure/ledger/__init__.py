"""Ledger backends and the process-wide ledger singleton.

Usage:
    from wap3_escrow.infrastructure.ledger import init_ledger, get_ledger

    init_ledger(get_settings())
    ledger = get_ledger()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from wap3_escrow.infrastructure.ledger.evm import EvmLedger, map_revert_reason
from wap3_escrow.infrastructure.ledger.memory import InMemoryLedger
from wap3_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from wap3_escrow.config import Settings
    from wap3_escrow.domain.ledger_protocol import Ledger

logger = get_logger(__name__)

_ledger: Ledger | None = None


def init_ledger(settings: Settings) -> Ledger:
    """Build the configured backend and install it as the singleton."""
    global _ledger
    if settings.ledger_backend == "evm":
        _ledger = EvmLedger.from_settings(settings)
    else:
        _ledger = InMemoryLedger(
            chain=settings.chain,
            default_balance=settings.memory_default_balance_wei,
        )
    logger.info(
        "ledger.initialized",
        backend=settings.ledger_backend,
        chain=settings.chain_name,
        chain_id=settings.chain.chain_id,
    )
    return _ledger


def get_ledger() -> Ledger:
    """Return the ledger singleton. Must call init_ledger() first."""
    if _ledger is None:
        raise RuntimeError("Ledger not initialized. Call init_ledger() first.")
    return _ledger


def set_ledger(ledger: Ledger | None) -> None:
    """Install a ledger directly (tests, the simulation)."""
    global _ledger
    _ledger = ledger


async def close_ledger() -> None:
    global _ledger
    if isinstance(_ledger, EvmLedger):
        await _ledger.close()
    _ledger = None


__all__ = [
    "EvmLedger",
    "InMemoryLedger",
    "close_ledger",
    "get_ledger",
    "init_ledger",
    "map_revert_reason",
    "set_ledger",
]
