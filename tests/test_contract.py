"""Tests for the web3-backed consent contract.

Covers:
- Struct decoding from mappings and positional tuples
- Legacy deployments without a status field (retry with the old layout)
- Transaction submission (node-managed and locally signed)
- Receipt conversion and ConsentMinted log decoding
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput

from conftest import ACCOUNT, CONTRACT_ADDRESS, RECIPIENT
from consent_wallet.ledger.client import derive_status
from consent_wallet.ledger.contract import (
    CONSENT_CONTRACT_ABI,
    LEGACY_CONSENT_CONTRACT_ABI,
    Web3ConsentContract,
    _struct_names,
    _to_record,
)
from consent_wallet.models.enums import ConsentStatus
from consent_wallet.schemas.ledger import PendingTransaction

CURRENT_NAMES = [
    "recipient", "purpose", "expiryDate", "isRevoked", "website", "dataFields", "status", "issuedAt",
]


def _struct(**overrides) -> dict:
    values = {
        "recipient": RECIPIENT,
        "purpose": "Newsletter",
        "expiryDate": 1_900_000_000,
        "isRevoked": False,
        "website": "shop.example",
        "dataFields": "email",
        "status": 1,
        "issuedAt": 1_790_000_000,
    }
    values.update(overrides)
    return values


async def _value(v):
    return v


def _make_contract(**kwargs) -> tuple[Web3ConsentContract, MagicMock, MagicMock, MagicMock]:
    """Contract over a mocked AsyncWeb3; returns (contract, w3, current, legacy)."""
    w3 = MagicMock()
    current, legacy = MagicMock(), MagicMock()
    w3.eth.contract.side_effect = [current, legacy]
    contract = Web3ConsentContract(w3, CONTRACT_ADDRESS, **kwargs)
    return contract, w3, current, legacy


class TestStructDecoding:
    def test_struct_names(self):
        assert _struct_names(CONSENT_CONTRACT_ABI, "getMyConsentsWithIds", 1) == CURRENT_NAMES
        assert _struct_names(CONSENT_CONTRACT_ABI, "getMyConsents", 0) == CURRENT_NAMES
        assert "status" not in _struct_names(LEGACY_CONSENT_CONTRACT_ABI, "getMyConsents", 0)

    def test_struct_names_unknown_function(self):
        assert _struct_names(CONSENT_CONTRACT_ABI, "nope", 0) == []
        assert _struct_names(CONSENT_CONTRACT_ABI, "getMyConsents", 3) == []

    def test_mapping(self):
        record = _to_record(_struct(status=0), CURRENT_NAMES)
        assert record.expiry_date == 1_900_000_000
        assert record.data_fields == "email"
        assert record.status == 0

    def test_positional_tuple(self):
        raw = tuple(_struct(isRevoked=True).values())
        record = _to_record(raw, CURRENT_NAMES)
        assert record.recipient == RECIPIENT
        assert record.is_revoked is True
        assert record.issued_at == 1_790_000_000


class TestReads:
    def test_binds_both_layouts_to_checksummed_address(self):
        _, w3, _, _ = _make_contract()
        addresses = {c.kwargs["address"] for c in w3.eth.contract.call_args_list}
        assert addresses == {Web3.to_checksum_address(CONTRACT_ADDRESS)}
        assert w3.eth.contract.call_count == 2

    @pytest.mark.asyncio()
    async def test_code_and_chain_id(self):
        contract, w3, _, _ = _make_contract()
        w3.eth.get_code = AsyncMock(return_value=b"\x60\x80")
        w3.eth.chain_id = _value(97)

        assert await contract.get_code() == b"\x60\x80"
        assert await contract.get_chain_id() == 97

    @pytest.mark.asyncio()
    async def test_with_ids(self):
        contract, _, current, _ = _make_contract()
        positional = tuple(_struct(purpose="Orders", status=0).values())
        current.functions.getMyConsentsWithIds.return_value.call = AsyncMock(
            return_value=([4, 9], [_struct(), positional])
        )

        ids, records = await contract.get_my_consents_with_ids(ACCOUNT)

        assert ids == [4, 9]
        assert [r.purpose for r in records] == ["Newsletter", "Orders"]
        assert records[1].status == 0
        current.functions.getMyConsentsWithIds.assert_called_once_with(ACCOUNT)

    @pytest.mark.asyncio()
    async def test_current_layout_skips_legacy(self):
        contract, _, current, legacy = _make_contract()
        current.functions.getMyConsents.return_value.call = AsyncMock(return_value=[_struct()])

        records = await contract.get_my_consents(ACCOUNT)

        assert records[0].status == 1
        legacy.functions.getMyConsents.assert_not_called()

    @pytest.mark.asyncio()
    async def test_legacy_layout_retry(self):
        contract, _, current, legacy = _make_contract()
        current.functions.getMyConsents.return_value.call = AsyncMock(
            side_effect=BadFunctionCallOutput("Could not decode contract function call")
        )
        legacy_raw = (RECIPIENT, "Newsletter", 1_900_000_000, False, "shop.example", "email")
        legacy.functions.getMyConsents.return_value.call = AsyncMock(return_value=[legacy_raw])

        records = await contract.get_my_consents(ACCOUNT)

        assert records[0].status is None
        assert records[0].website == "shop.example"
        assert derive_status(records[0]) == ConsentStatus.ACTIVE

    @pytest.mark.asyncio()
    async def test_legacy_failure_propagates(self):
        contract, _, current, legacy = _make_contract()
        current.functions.getMyConsents.return_value.call = AsyncMock(side_effect=BadFunctionCallOutput("a"))
        legacy.functions.getMyConsents.return_value.call = AsyncMock(side_effect=BadFunctionCallOutput("b"))

        with pytest.raises(BadFunctionCallOutput):
            await contract.get_my_consents(ACCOUNT)

    @pytest.mark.asyncio()
    async def test_other_errors_do_not_retry(self):
        contract, _, current, legacy = _make_contract()
        current.functions.getMyConsents.return_value.call = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await contract.get_my_consents(ACCOUNT)
        legacy.functions.getMyConsents.assert_not_called()


class TestWrites:
    @pytest.mark.asyncio()
    async def test_node_managed_account(self):
        contract, _, current, _ = _make_contract(account=ACCOUNT)
        current.functions.revokeConsent.return_value.transact = AsyncMock(return_value=b"\x12" * 32)

        tx = await contract.submit("revokeConsent", 7)

        assert tx == PendingTransaction(tx_hash="0x" + "12" * 32, function="revokeConsent")
        current.functions.revokeConsent.assert_called_once_with(7)
        current.functions.revokeConsent.return_value.transact.assert_awaited_once_with(
            {"from": Web3.to_checksum_address(ACCOUNT)}
        )

    @pytest.mark.asyncio()
    async def test_local_signer(self):
        contract, w3, current, _ = _make_contract(account=ACCOUNT, private_key="0x" + "11" * 32)
        call = current.functions.activateConsent.return_value
        call.build_transaction = AsyncMock(return_value={"to": CONTRACT_ADDRESS, "nonce": 3})
        w3.eth.get_transaction_count = AsyncMock(return_value=3)
        w3.eth.account.sign_transaction.return_value = MagicMock(raw_transaction=b"raw")
        w3.eth.send_raw_transaction = AsyncMock(return_value=b"\xab" * 32)

        tx = await contract.submit("activateConsent", 7)

        assert tx.tx_hash == "0x" + "ab" * 32
        call.build_transaction.assert_awaited_once_with({"from": Web3.to_checksum_address(ACCOUNT), "nonce": 3})
        w3.eth.send_raw_transaction.assert_awaited_once_with(b"raw")
        call.transact.assert_not_called()


class TestReceipts:
    @pytest.mark.asyncio()
    async def test_receipt_conversion(self):
        contract, w3, _, _ = _make_contract(receipt_timeout=5.0)
        log = {"topics": ["0x01"], "data": "0x"}
        w3.eth.wait_for_transaction_receipt = AsyncMock(
            return_value={"status": 0, "blockNumber": 12, "logs": (log,)}
        )

        receipt = await contract.wait_for_receipt(PendingTransaction(tx_hash="0xaa", function="mintConsent"))

        assert receipt.status == 0
        assert receipt.block_number == 12
        assert receipt.logs == [log]
        w3.eth.wait_for_transaction_receipt.assert_awaited_once_with("0xaa", timeout=5.0)

    def test_decode_minted_token_id(self):
        contract, _, current, _ = _make_contract()
        current.events.ConsentMinted.return_value.process_log.return_value = {"args": {"tokenId": 42}}

        assert contract.decode_minted_token_id({"topics": []}) == 42

    def test_decode_foreign_log_raises(self):
        contract, _, current, _ = _make_contract()
        current.events.ConsentMinted.return_value.process_log.side_effect = ValueError("topic mismatch")

        with pytest.raises(ValueError, match="topic mismatch"):
            contract.decode_minted_token_id({"topics": []})
