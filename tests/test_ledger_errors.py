"""Tests for ledger error classification and address normalization."""

from __future__ import annotations

import pytest
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from consent_wallet.ledger.addresses import canonical_address, normalize_address, same_address
from consent_wallet.ledger.errors import (
    ContractAbiMismatchError,
    ContractCallError,
    ContractNotDeployedError,
    NetworkConnectivityError,
    NodeDesyncError,
    classify_read_error,
)
from consent_wallet.models.enums import LedgerErrorKind

CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


class TestClassifyReadError:
    def test_missing_trie_node(self):
        assert isinstance(classify_read_error(ValueError({"code": -32000, "message": "missing trie node abc"})), NodeDesyncError)

    def test_connection_error(self):
        assert isinstance(classify_read_error(ConnectionError("reset")), NetworkConnectivityError)

    def test_timeout(self):
        assert isinstance(classify_read_error(TimeoutError()), NetworkConnectivityError)

    def test_coalesce_marker(self):
        err = classify_read_error(RuntimeError("could not coalesce error (error={...})"))
        assert err.kind == LedgerErrorKind.NETWORK

    def test_bad_function_output(self):
        assert isinstance(classify_read_error(BadFunctionCallOutput("empty output")), ContractAbiMismatchError)

    def test_decode_marker(self):
        assert classify_read_error(RuntimeError("Could not decode contract function call")).kind == LedgerErrorKind.ABI_MISMATCH

    def test_contract_logic_error(self):
        err = classify_read_error(ContractLogicError("execution reverted"))
        assert isinstance(err, ContractCallError)
        assert "Contract function call failed" in err.message

    def test_other_keeps_message(self):
        err = classify_read_error(RuntimeError("something odd"))
        assert isinstance(err, ContractCallError)
        assert err.message == "something odd"

    def test_already_classified(self):
        original = ContractNotDeployedError()
        assert classify_read_error(original) is original
        assert original.kind == LedgerErrorKind.CONTRACT_NOT_DEPLOYED


class TestAddresses:
    def test_normalize_checksums(self):
        assert normalize_address(CHECKSUMMED.lower()) == CHECKSUMMED
        assert normalize_address(f"  {CHECKSUMMED}  ") == Web3.to_checksum_address(CHECKSUMMED)

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid address"):
            normalize_address("0x1234")

    def test_canonical_falls_back_to_lower(self):
        assert canonical_address("NotAnAddress") == "notanaddress"
        assert canonical_address(None) == ""

    def test_same_address_ignores_case(self):
        assert same_address(CHECKSUMMED, CHECKSUMMED.lower())
        assert not same_address(CHECKSUMMED, None)
        assert not same_address("", "")
