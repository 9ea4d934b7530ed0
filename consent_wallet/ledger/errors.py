"""Ledger error taxonomy and classification of raw client failures.

Precondition errors are raised before any network call. Read errors are
produced by ``classify_read_error`` from whatever the chain client raised and
are kept as the client's persistent ``contract_error`` rather than propagated.
"""

from __future__ import annotations

import asyncio

from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from consent_wallet.models.enums import LedgerErrorKind


class LedgerError(Exception):
    """Base class for everything the ledger client raises or records."""


# ── Preconditions ────────────────────────────────────────────────────


class LedgerPreconditionError(LedgerError):
    """A mutating call was attempted without a usable ledger connection."""


class LedgerNotConnectedError(LedgerPreconditionError):
    def __init__(self) -> None:
        super().__init__("Contract not initialized. Please check your contract configuration.")


class OutstandingContractError(LedgerPreconditionError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Contract error: {detail}")


class WrongNetworkError(LedgerPreconditionError):
    def __init__(self, network_name: str, expected_chain_id: int, actual_chain_id: int | None) -> None:
        self.expected_chain_id = expected_chain_id
        self.actual_chain_id = actual_chain_id
        super().__init__(f"Please switch to {network_name} to perform this action.")


class TransactionRevertedError(LedgerError):
    """The transaction was mined but reverted (receipt status 0)."""

    def __init__(self, function: str, tx_hash: str) -> None:
        self.function = function
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} for {function} reverted")


# ── Read path ────────────────────────────────────────────────────────


class LedgerReadError(LedgerError):
    """A classified failure of the reconciliation read path."""

    kind: LedgerErrorKind = LedgerErrorKind.CALL_FAILED
    default_message = "Failed to fetch consents"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ContractNotDeployedError(LedgerReadError):
    kind = LedgerErrorKind.CONTRACT_NOT_DEPLOYED
    default_message = (
        "Contract not found at the specified address. "
        "Please verify the contract is deployed on the configured network."
    )


class ContractAbiMismatchError(LedgerReadError):
    kind = LedgerErrorKind.ABI_MISMATCH
    default_message = (
        "Contract ABI mismatch or contract not properly deployed. "
        "Please check the contract configuration."
    )


class NodeDesyncError(LedgerReadError):
    kind = LedgerErrorKind.NODE_DESYNC
    default_message = (
        "Blockchain node synchronization error: the RPC provider is unable to retrieve contract data. "
        "This might be a temporary network issue. Please try again later or switch RPC endpoint."
    )


class NetworkConnectivityError(LedgerReadError):
    kind = LedgerErrorKind.NETWORK
    default_message = (
        "Network connectivity issue: unable to connect to the blockchain. "
        "Please check your internet connection and try again, or switch to a different RPC endpoint."
    )


class ContractCallError(LedgerReadError):
    kind = LedgerErrorKind.CALL_FAILED
    default_message = (
        "Contract function call failed. The contract may not be deployed "
        "or the function signature may be incorrect."
    )


_DESYNC_MARKERS = ("missing trie node",)
_CONNECTIVITY_MARKERS = ("could not coalesce error", "connection refused", "failed to connect")
_DECODE_MARKERS = ("could not decode", "could not transact with/call contract function")


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict):
            parts.append(str(arg.get("message", "")))
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        parts.append(str(data.get("message", "")))
    elif data is not None:
        parts.append(str(data))
    return " ".join(parts).lower()


def classify_read_error(exc: BaseException) -> LedgerReadError:
    """Map a raw failure from the read path onto exactly one LedgerReadError class."""
    if isinstance(exc, LedgerReadError):
        return exc

    text = _error_text(exc)
    if any(marker in text for marker in _DESYNC_MARKERS):
        return NodeDesyncError()
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)) or any(
        marker in text for marker in _CONNECTIVITY_MARKERS
    ):
        return NetworkConnectivityError()
    if isinstance(exc, BadFunctionCallOutput) or any(marker in text for marker in _DECODE_MARKERS):
        return ContractAbiMismatchError()
    if isinstance(exc, ContractLogicError):
        return ContractCallError()
    return ContractCallError(str(exc) or None)
