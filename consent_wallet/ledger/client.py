"""Ledger client: wallet-side wrapper around the consent contract.

Every mutating call follows the same protocol:

    preconditions → submit → await receipt → recover minted id from logs → refresh

Preconditions (contract connected, no outstanding contract error, correct
chain) are checked before anything touches the network and each failure has
its own exception class. Nothing is retried: errors propagate to the caller,
who may resubmit.

The read path (``fetch_consents``) never raises. Failures are classified and
stored in ``contract_error``, which blocks further reads until ``connect()``
succeeds again; the previously cached ``consents`` stay in place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from consent_wallet.config import settings
from consent_wallet.events.bus import EventBus
from consent_wallet.ledger.addresses import canonical_address, normalize_address
from consent_wallet.ledger.contract import MINTED_EVENT, ConsentContract
from consent_wallet.ledger.errors import (
    ContractAbiMismatchError,
    ContractNotDeployedError,
    LedgerNotConnectedError,
    OutstandingContractError,
    TransactionRevertedError,
    WrongNetworkError,
    classify_read_error,
)
from consent_wallet.models.enums import ConsentStatus, MessageAction
from consent_wallet.schemas.consent import MS_PER_SECOND, ConsentToken, to_epoch_ms
from consent_wallet.schemas.events import EventType, SystemEvent
from consent_wallet.schemas.ledger import (
    ConsentFormData,
    ContractErrorState,
    LedgerConsentRecord,
    MintResult,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)

RefreshHook = Callable[[str, list[ConsentToken]], Coroutine[Any, Any, Any]]
SendMessage = Callable[[dict[str, Any]], Coroutine[Any, Any, Any]]

# On-chain status codes
_LEDGER_STATUS: dict[int, ConsentStatus] = {
    0: ConsentStatus.PENDING,
    1: ConsentStatus.ACTIVE,
}


def derive_status(record: LedgerConsentRecord) -> ConsentStatus:
    """Map a ledger record onto a status without contradicting ``isRevoked``.

    Revoked records are Revoked whatever the status field says. Otherwise an
    explicit status maps 0→Pending, 1→Active, anything else→Abandoned; legacy
    records without a status field are Active.
    """
    if record.is_revoked:
        return ConsentStatus.REVOKED
    if record.status is None:
        return ConsentStatus.ACTIVE
    return _LEDGER_STATUS.get(int(record.status), ConsentStatus.ABANDONED)


def to_consent_token(
    record: LedgerConsentRecord,
    token_id: int,
    owner: str,
    id_synthesized: bool = False,
) -> ConsentToken:
    """Convert a ledger record (seconds) into a cached ConsentToken (milliseconds)."""
    status = derive_status(record)
    return ConsentToken(
        token_id=token_id,
        status=status,
        recipient=canonical_address(record.recipient),
        purpose=record.purpose,
        website=record.website or "",
        site_name=record.website or "",
        data_fields=record.data_fields or "",
        expiry_date=record.expiry_date * MS_PER_SECOND if record.expiry_date else None,
        issued_at=record.issued_at * MS_PER_SECOND if record.issued_at else None,
        is_revoked=status == ConsentStatus.REVOKED,
        owner=owner,
        id_synthesized=id_synthesized,
    )


class LedgerClient:
    """Connection state, mutations and reads against one consent contract."""

    def __init__(
        self,
        contract_factory: Callable[[], ConsentContract],
        expected_chain_id: int | None = None,
        network_name: str | None = None,
        on_refreshed: RefreshHook | None = None,
        send_message: SendMessage | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._contract_factory = contract_factory
        self._events = events if events is not None else EventBus()
        self.expected_chain_id = (
            expected_chain_id if expected_chain_id is not None else settings.ledger.expected_chain_id
        )
        self.network_name = network_name or settings.ledger.network_name
        self._on_refreshed = on_refreshed
        self._send_message = send_message

        self.contract: ConsentContract | None = None
        self.account: str | None = None
        self.chain_id: int | None = None
        self.contract_error: ContractErrorState | None = None
        self.consents: list[ConsentToken] = []
        self.loading = False

    @property
    def is_correct_network(self) -> bool:
        return self.chain_id is not None and self.chain_id == self.expected_chain_id

    # ── Connection ───────────────────────────────────────────────────

    async def connect(self, account: str) -> bool:
        """Build the contract, check the chain, probe a read, then fetch.

        A failed probe read is only logged: write functions may still work.
        A successful connect clears any outstanding contract error.
        """
        self.account = normalize_address(account)
        try:
            contract = self._contract_factory()
            self.chain_id = await contract.get_chain_id()
        except Exception as exc:
            logger.exception("Error initializing contract")
            self.contract = None
            self.contract_error = ContractErrorState(
                kind=classify_read_error(exc).kind.value,
                message=str(exc) or "Failed to initialize contract",
            )
            return False

        if not self.is_correct_network:
            logger.warning(
                "Connected to chain %s, expected %s (%s)",
                self.chain_id,
                self.expected_chain_id,
                self.network_name,
            )

        try:
            await contract.get_my_consents(self.account)
            logger.info("Connected to consent contract at %s", contract.address)
        except Exception as exc:
            logger.warning("Contract connection test failed: %s", exc)

        self.contract = contract
        self.contract_error = None
        await self.fetch_consents()
        return True

    def _require_ready(self) -> ConsentContract:
        if self.contract is None:
            raise LedgerNotConnectedError()
        if self.contract_error is not None:
            raise OutstandingContractError(self.contract_error.message)
        if not self.is_correct_network:
            raise WrongNetworkError(self.network_name, self.expected_chain_id, self.chain_id)
        return self.contract

    # ── Mutations ────────────────────────────────────────────────────

    async def _execute(self, contract: ConsentContract, function: str, *args: Any) -> TransactionReceipt:
        """Submit one transaction and wait for its confirmation. Never retried."""
        self.loading = True
        try:
            tx = await contract.submit(function, *args)
            logger.info("Transaction sent: %s (%s)", tx.tx_hash, function)
            await self._events.emit(SystemEvent(
                event_type=EventType.LEDGER_TX_SUBMITTED,
                account=self.account,
                data={"function": function, "tx_hash": tx.tx_hash},
                source_module="ledger.client",
            ))

            receipt = await contract.wait_for_receipt(tx)
            if receipt.status == 0:
                raise TransactionRevertedError(function, tx.tx_hash)
            logger.info("Transaction confirmed: %s", tx.tx_hash)
            await self._events.emit(SystemEvent(
                event_type=EventType.LEDGER_TX_CONFIRMED,
                account=self.account,
                data={"function": function, "tx_hash": tx.tx_hash, "block_number": receipt.block_number},
                source_module="ledger.client",
            ))
            return receipt
        except Exception as exc:
            logger.error("Error calling %s: %s", function, exc)
            await self._events.emit(SystemEvent(
                event_type=EventType.LEDGER_TX_FAILED,
                account=self.account,
                data={"function": function, "error": str(exc)},
                source_module="ledger.client",
            ))
            raise
        finally:
            self.loading = False

    def extract_minted_token_id(self, receipt: TransactionReceipt) -> int | None:
        """First log entry that decodes as ConsentMinted wins; others are skipped."""
        if self.contract is None:
            return None
        for log in receipt.logs:
            try:
                return self.contract.decode_minted_token_id(log)
            except Exception:
                continue
        return None

    async def mint(self, data: ConsentFormData) -> MintResult:
        """Mint a consent token (created Pending by the contract)."""
        contract = self._require_ready()
        expiry_ms = to_epoch_ms(data.expiry_date)
        if expiry_ms is None:
            msg = "Please select an expiry date"
            raise ValueError(msg)
        expiry_seconds = expiry_ms // MS_PER_SECOND
        recipient = normalize_address(data.recipient)

        receipt = await self._execute(
            contract,
            "mintConsent",
            recipient,
            data.purpose,
            expiry_seconds,
            data.website or "",
            data.data_fields or "",
        )
        token_id = self.extract_minted_token_id(receipt)
        if token_id is not None:
            await self._notify_issued(token_id, data, recipient)
        else:
            logger.warning("No %s event found in receipt %s", MINTED_EVENT, receipt.tx_hash)

        await self.fetch_consents()
        return MintResult(tx_hash=receipt.tx_hash, token_id=token_id)

    async def _notify_issued(self, token_id: int, data: ConsentFormData, recipient: str) -> None:
        """Tell the background process about the new token."""
        if self._send_message is None:
            return
        message = {
            "action": MessageAction.CONSENT_ISSUED.value,
            "data": {
                "tokenId": token_id,
                "status": ConsentStatus.PENDING.value,
                "siteName": data.website,
                "purpose": data.purpose,
                "expiryDate": data.expiry_date,
                "recipient": recipient,
                "dataFields": data.data_fields,
            },
        }
        try:
            await self._send_message(message)
        except Exception as exc:
            logger.info("Background process not available: %s", exc)

    async def revoke(self, token_id: int) -> TransactionReceipt:
        contract = self._require_ready()
        receipt = await self._execute(contract, "revokeConsent", token_id)
        await self.fetch_consents()
        return receipt

    async def activate(self, token_id: int) -> TransactionReceipt:
        contract = self._require_ready()
        receipt = await self._execute(contract, "activateConsent", token_id)
        await self.fetch_consents()
        return receipt

    async def abandon(self, token_id: int) -> TransactionReceipt:
        contract = self._require_ready()
        receipt = await self._execute(contract, "abandonConsent", token_id)
        await self.fetch_consents()
        return receipt

    # ── Reads ────────────────────────────────────────────────────────

    async def _enumerate(
        self, contract: ConsentContract, account: str
    ) -> tuple[list[int], list[LedgerConsentRecord], bool]:
        """Prefer the enumeration with ids; fall back to the legacy call.

        In fallback mode ids are synthesized 1..N in return order. They are
        stable only while the ledger's return order is, and are flagged
        ``id_synthesized`` on every resulting token.
        """
        try:
            ids, records = await contract.get_my_consents_with_ids(account)
        except Exception as exc:
            logger.info("Using fallback method for fetching consents (%s)", exc)
        else:
            if len(ids) != len(records):
                msg = f"getMyConsentsWithIds returned {len(ids)} ids for {len(records)} consents"
                raise ContractAbiMismatchError(msg)
            return ids, records, False

        records = await contract.get_my_consents(account)
        return list(range(1, len(records) + 1)), records, True

    async def fetch_consents(self) -> list[ConsentToken] | None:
        """Read the account's consents and replace the cached view.

        Returns the fresh tokens, or None when the read was skipped or failed.
        """
        contract = self.contract
        if contract is None or not self.account or not self.is_correct_network:
            return None
        if self.contract_error is not None:
            logger.error("Cannot fetch consents due to contract error: %s", self.contract_error.message)
            return None

        account = self.account
        self.loading = True
        try:
            code = await contract.get_code()
            if not code:
                raise ContractNotDeployedError()

            ids, records, synthesized = await self._enumerate(contract, account)
            tokens = [
                to_consent_token(record, token_id, owner=account, id_synthesized=synthesized)
                for token_id, record in zip(ids, records)
            ]
        except Exception as exc:
            error = classify_read_error(exc)
            self.contract_error = ContractErrorState(kind=error.kind.value, message=error.message)
            logger.error("Error fetching consents (%s): %s", error.kind.value, exc)
            await self._events.emit(SystemEvent(
                event_type=EventType.LEDGER_READ_FAILED,
                account=account,
                data={"kind": error.kind.value, "error": str(exc)},
                source_module="ledger.client",
            ))
            return None
        finally:
            self.loading = False

        self.consents = tokens
        if self._on_refreshed is not None:
            try:
                await self._on_refreshed(account, tokens)
            except Exception:
                logger.exception("Failed to apply ledger view for %s", account)
        return tokens
