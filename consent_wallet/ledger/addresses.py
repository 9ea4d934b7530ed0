"""Address normalization: every comparison between addresses goes through here."""

from __future__ import annotations

import logging

from web3 import Web3

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksummed form. Raises ValueError for invalid input."""
    candidate = (address or "").strip()
    if not Web3.is_address(candidate):
        msg = f"Invalid address: {address!r}"
        raise ValueError(msg)
    return Web3.to_checksum_address(candidate)


def canonical_address(address: str | None) -> str:
    """Checksummed form when valid, otherwise the trimmed lower-cased input."""
    if not address:
        return ""
    try:
        return normalize_address(address)
    except ValueError:
        logger.debug("Keeping non-checksummable address as lower-case: %s", address)
        return address.strip().lower()


def same_address(a: str | None, b: str | None) -> bool:
    """Compare two addresses by canonical form; empty never matches."""
    if not a or not b:
        return False
    return canonical_address(a) == canonical_address(b)
