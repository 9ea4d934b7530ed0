"""Consent contract boundary: the abstract service and its web3 implementation.

``ConsentContract`` is what the ledger client talks to. ``Web3ConsentContract``
implements it with ``web3.AsyncWeb3`` against the deployed consent contract;
tests substitute an in-memory fake.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from web3 import AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput

from consent_wallet.config import LedgerSettings
from consent_wallet.ledger.addresses import normalize_address
from consent_wallet.schemas.ledger import LedgerConsentRecord, PendingTransaction, TransactionReceipt

logger = logging.getLogger(__name__)

MINTED_EVENT = "ConsentMinted"

_CONSENT_STRUCT = [
    {"name": "recipient", "type": "address"},
    {"name": "purpose", "type": "string"},
    {"name": "expiryDate", "type": "uint256"},
    {"name": "isRevoked", "type": "bool"},
    {"name": "website", "type": "string"},
    {"name": "dataFields", "type": "string"},
    {"name": "status", "type": "uint8"},
    {"name": "issuedAt", "type": "uint256"},
]

# Deployments that predate the status field
_LEGACY_CONSENT_STRUCT = [c for c in _CONSENT_STRUCT if c["name"] not in ("status", "issuedAt")]

CONSENT_CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "mintConsent",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "recipient", "type": "address"},
            {"name": "purpose", "type": "string"},
            {"name": "expiryDate", "type": "uint256"},
            {"name": "website", "type": "string"},
            {"name": "dataFields", "type": "string"},
        ],
        "outputs": [],
    },
    *[
        {
            "type": "function",
            "name": name,
            "stateMutability": "nonpayable",
            "inputs": [{"name": "tokenId", "type": "uint256"}],
            "outputs": [],
        }
        for name in ("revokeConsent", "activateConsent", "abandonConsent")
    ],
    {
        "type": "function",
        "name": "getMyConsents",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "tuple[]", "components": _CONSENT_STRUCT}],
    },
    {
        "type": "function",
        "name": "getMyConsentsWithIds",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [
            {"name": "tokenIds", "type": "uint256[]"},
            {"name": "consents", "type": "tuple[]", "components": _CONSENT_STRUCT},
        ],
    },
    {
        "type": "event",
        "name": MINTED_EVENT,
        "anonymous": False,
        "inputs": [
            {"name": "tokenId", "type": "uint256", "indexed": True},
            {"name": "owner", "type": "address", "indexed": True},
            {"name": "recipient", "type": "address", "indexed": False},
        ],
    },
]

LEGACY_CONSENT_CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "getMyConsents",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "tuple[]", "components": _LEGACY_CONSENT_STRUCT}],
    },
]


class ConsentContract(Protocol):
    """The abstract on-chain consent service."""

    address: str

    async def get_code(self) -> bytes: ...

    async def get_chain_id(self) -> int: ...

    async def get_my_consents_with_ids(self, account: str) -> tuple[list[int], list[LedgerConsentRecord]]: ...

    async def get_my_consents(self, account: str) -> list[LedgerConsentRecord]: ...

    async def submit(self, function: str, *args: Any) -> PendingTransaction: ...

    async def wait_for_receipt(self, tx: PendingTransaction) -> TransactionReceipt: ...

    def decode_minted_token_id(self, log: Any) -> int:
        """Decode a ConsentMinted log entry. Raises for any other entry."""
        ...


def _struct_names(abi: Sequence[Mapping[str, Any]], function: str, output_index: int) -> list[str]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == function:
            outputs = entry.get("outputs", [])
            if output_index < len(outputs):
                return [c["name"] for c in outputs[output_index].get("components", [])]
    return []


def _to_record(raw: Any, names: list[str]) -> LedgerConsentRecord:
    """Build a record from a decoded struct (mapping or positional tuple)."""
    if isinstance(raw, Mapping):
        return LedgerConsentRecord.model_validate(dict(raw))
    return LedgerConsentRecord.model_validate(dict(zip(names, raw)))


class Web3ConsentContract:
    """ConsentContract backed by ``AsyncWeb3``.

    Writes are signed locally when a private key is configured, otherwise
    they are sent with ``transact`` for the node-managed account.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        account: str = "",
        private_key: str = "",
        abi: list[dict[str, Any]] | None = None,
        legacy_abi: list[dict[str, Any]] | None = None,
        receipt_timeout: float = 120.0,
    ) -> None:
        self._w3 = w3
        self.address = normalize_address(address)
        self._abi = abi if abi is not None else CONSENT_CONTRACT_ABI
        self._contract = w3.eth.contract(address=self.address, abi=self._abi)
        self._legacy_abi = legacy_abi if legacy_abi is not None else LEGACY_CONSENT_CONTRACT_ABI
        self._legacy_contract = w3.eth.contract(address=self.address, abi=self._legacy_abi)
        self._account = normalize_address(account) if account else ""
        self._private_key = private_key
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_settings(cls, ledger: LedgerSettings) -> Web3ConsentContract:
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(ledger.rpc_url))
        return cls(
            w3,
            ledger.contract_address,
            account=ledger.account,
            private_key=ledger.private_key,
            receipt_timeout=ledger.receipt_timeout,
        )

    async def get_code(self) -> bytes:
        return bytes(await self._w3.eth.get_code(self.address))

    async def get_chain_id(self) -> int:
        return int(await self._w3.eth.chain_id)

    async def get_my_consents_with_ids(self, account: str) -> tuple[list[int], list[LedgerConsentRecord]]:
        ids, data = await self._contract.functions.getMyConsentsWithIds(account).call()
        names = _struct_names(self._abi, "getMyConsentsWithIds", 1)
        return [int(i) for i in ids], [_to_record(item, names) for item in data]

    async def get_my_consents(self, account: str) -> list[LedgerConsentRecord]:
        """Read with the current struct, falling back to the pre-status layout.

        Older deployments return a struct without ``status``/``issuedAt``; web3
        reports that as undecodable output. Anything else propagates.
        """
        try:
            data = await self._contract.functions.getMyConsents(account).call()
            abi = self._abi
        except BadFunctionCallOutput:
            logger.info("getMyConsents did not decode with the current struct, retrying with the legacy layout")
            data = await self._legacy_contract.functions.getMyConsents(account).call()
            abi = self._legacy_abi
        names = _struct_names(abi, "getMyConsents", 0)
        return [_to_record(item, names) for item in data]

    async def submit(self, function: str, *args: Any) -> PendingTransaction:
        call = getattr(self._contract.functions, function)(*args)
        if self._private_key:
            nonce = await self._w3.eth.get_transaction_count(self._account)
            tx = await call.build_transaction({"from": self._account, "nonce": nonce})
            signed = self._w3.eth.account.sign_transaction(tx, self._private_key)
            raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
            tx_hash = await self._w3.eth.send_raw_transaction(raw)
        else:
            tx_hash = await call.transact({"from": self._account} if self._account else {})
        return PendingTransaction(tx_hash=Web3.to_hex(tx_hash), function=function)

    async def wait_for_receipt(self, tx: PendingTransaction) -> TransactionReceipt:
        receipt = await self._w3.eth.wait_for_transaction_receipt(tx.tx_hash, timeout=self._receipt_timeout)
        return TransactionReceipt(
            tx_hash=tx.tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            logs=list(receipt["logs"]),
        )

    def decode_minted_token_id(self, log: Any) -> int:
        event = getattr(self._contract.events, MINTED_EVENT)().process_log(log)
        return int(event["args"]["tokenId"])
