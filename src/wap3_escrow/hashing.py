"""Hashing and identity helpers shared by the ledger, client and reconciler.

keccak-256 via web3.py (the hash the escrow contract and its events use),
canonical JSON for content-hashing negotiation documents, and address/handle
normalization.
"""

from __future__ import annotations

import json
import re
from typing import Any

from web3 import Web3

from wap3_escrow.domain.exceptions import InvalidInputError
from wap3_escrow.domain.models import ZERO_ADDRESS, ZERO_HASH, is_zero_hash

__all__ = [
    "ZERO_ADDRESS",
    "ZERO_HASH",
    "canonical_json",
    "content_hash",
    "is_zero_hash",
    "keccak_hex",
    "normalize_address",
    "normalize_hash32",
]

_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def keccak_hex(text: str) -> str:
    """keccak-256 of the UTF-8 bytes of `text`, 0x-prefixed lowercase hex."""
    return Web3.to_hex(Web3.keccak(text=text))


def canonical_json(document: Any) -> str:
    """Serialize `document` deterministically: sorted keys, no whitespace."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_hash(document: Any) -> str:
    """Content hash of a JSON-compatible document's canonical serialization."""
    return keccak_hex(canonical_json(document))


def normalize_address(value: str | None, field: str = "address") -> str:
    """Return the checksummed form of an address or raise InvalidInputError."""
    if not value or not Web3.is_address(value):
        raise InvalidInputError(f"Invalid {field}: {value!r}", reason="INVALID_ADDRESS")
    return Web3.to_checksum_address(value)


def normalize_hash32(value: str | bytes | None, field: str = "hash") -> str:
    """Return a 32-byte handle as 0x-prefixed lowercase hex or raise InvalidInputError."""
    if isinstance(value, bytes | bytearray):
        if len(value) != 32:
            raise InvalidInputError(f"Invalid {field}: expected 32 bytes", reason="INVALID_HASH")
        return Web3.to_hex(value)
    if not value or not _HASH_RE.match(value):
        raise InvalidInputError(f"Invalid {field}: {value!r}", reason="INVALID_HASH")
    return value.lower()
