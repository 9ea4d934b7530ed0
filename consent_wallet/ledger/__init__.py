"""Ledger access: consent contract reads, writes and error classification."""

from consent_wallet.ledger.client import LedgerClient, derive_status, to_consent_token
from consent_wallet.ledger.contract import ConsentContract, Web3ConsentContract
from consent_wallet.ledger.errors import LedgerError, LedgerReadError, classify_read_error

__all__ = [
    "LedgerClient",
    "ConsentContract",
    "Web3ConsentContract",
    "LedgerError",
    "LedgerReadError",
    "classify_read_error",
    "derive_status",
    "to_consent_token",
]
