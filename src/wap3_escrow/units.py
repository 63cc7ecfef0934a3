"""Value units. Amounts are integers in wei on the ledger, ether strings for people."""

from __future__ import annotations

from decimal import Decimal

from web3 import Web3


def to_wei(amount: Decimal | str | int | float) -> int:
    """Convert an ether amount to wei. Floats go through str() to avoid binary noise."""
    if isinstance(amount, float):
        amount = str(amount)
    return int(Web3.to_wei(Decimal(amount), "ether"))


def format_ether(wei: int) -> str:
    """Format wei as an ether decimal string with at least one fractional digit.

    >>> format_ether(50_000_000_000_000_000)
    '0.05'
    >>> format_ether(10**18)
    '1.0'
    """
    text = format(Decimal(Web3.from_wei(wei, "ether")).normalize(), "f")
    if "." not in text:
        text += ".0"
    return text
