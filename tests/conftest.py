"""Shared fixtures: a fixed clock, an in-memory store and a fake consent contract."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from consent_wallet.events.bus import EventBus
from consent_wallet.reconciler.engine import ConsentReconciler
from consent_wallet.scheduling.timers import TimerService
from consent_wallet.schemas.consent import MS_PER_HOUR, MS_PER_MINUTE
from consent_wallet.schemas.ledger import LedgerConsentRecord, PendingTransaction, TransactionReceipt
from consent_wallet.store.engine import MemoryStore
from consent_wallet.store.repository import ConsentRepository

NOW = 1_800_000_000_000  # epoch ms, 2027-01-15
ACCOUNT = "0x52908400098527886e0f7030069857d2e4169ee7"
OTHER_ACCOUNT = "0xde709f2102306220921060314715629080e2fb77"
RECIPIENT = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
CONTRACT_ADDRESS = "0xfb6916095ca1df60bb79ce92ce3ea74c37c5d359"


class FakeClock:
    """Callable clock returning a settable epoch-ms value."""

    def __init__(self, now: int = NOW) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeContract:
    """In-memory ConsentContract.

    ``ids=None`` makes ``getMyConsentsWithIds`` unavailable (legacy deployment).
    Minting appends a Pending record and emits a ConsentMinted log.
    """

    def __init__(
        self,
        chain_id: int = 97,
        code: bytes = b"\x60\x80\x60\x40",
        records: list[LedgerConsentRecord] | None = None,
        ids: list[int] | None = None,
    ) -> None:
        self.address = CONTRACT_ADDRESS
        self.chain_id = chain_id
        self.code = code
        self.records = list(records or [])
        self.ids = ids
        self.read_error: Exception | None = None
        self.receipt_status = 1
        self.extra_logs: list[Any] = []
        self.submitted: list[tuple[str, tuple[Any, ...]]] = []
        self._pending_logs: list[Any] = []

    async def get_code(self) -> bytes:
        return self.code

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_my_consents_with_ids(self, account: str) -> tuple[list[int], list[LedgerConsentRecord]]:
        if self.read_error is not None:
            raise self.read_error
        if self.ids is None:
            raise ValueError("execution reverted: function selector was not recognized")
        return list(self.ids), list(self.records)

    async def get_my_consents(self, account: str) -> list[LedgerConsentRecord]:
        if self.read_error is not None:
            raise self.read_error
        return list(self.records)

    async def submit(self, function: str, *args: Any) -> PendingTransaction:
        self.submitted.append((function, args))
        self._pending_logs = list(self.extra_logs)
        if function == "mintConsent":
            recipient, purpose, expiry, website, data_fields = args
            self.records.append(LedgerConsentRecord(
                recipient=recipient,
                purpose=purpose,
                expiry_date=expiry,
                website=website,
                data_fields=data_fields,
                status=0,
            ))
            new_id = (max(self.ids) + 1) if self.ids else len(self.records)
            if self.ids is not None:
                self.ids.append(new_id)
            self._pending_logs.append({"event": "ConsentMinted", "tokenId": new_id})
        return PendingTransaction(tx_hash=f"0x{len(self.submitted):064x}", function=function)

    async def wait_for_receipt(self, tx: PendingTransaction) -> TransactionReceipt:
        return TransactionReceipt(
            tx_hash=tx.tx_hash,
            status=self.receipt_status,
            block_number=len(self.submitted),
            logs=self._pending_logs,
        )

    def decode_minted_token_id(self, log: Any) -> int:
        if isinstance(log, dict) and log.get("event") == "ConsentMinted":
            return int(log["tokenId"])
        msg = "log is not a ConsentMinted event"
        raise ValueError(msg)


def make_record(
    purpose: str = "Newsletter",
    website: str = "shop.example",
    status: int | None = 1,
    is_revoked: bool = False,
    expiry_seconds: int = 1_900_000_000,
) -> LedgerConsentRecord:
    return LedgerConsentRecord(
        recipient=RECIPIENT,
        purpose=purpose,
        expiry_date=expiry_seconds,
        is_revoked=is_revoked,
        website=website,
        data_fields="email, name",
        status=status,
        issued_at=1_790_000_000,
    )


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def events() -> MagicMock:
    """Event bus stand-in; ``emit`` records what a component published."""
    bus = MagicMock(spec=EventBus)
    bus.emit = AsyncMock()
    return bus


@pytest.fixture()
def mock_emit(events: MagicMock) -> AsyncMock:
    return events.emit


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def repo(store: MemoryStore) -> ConsentRepository:
    return ConsentRepository(store)


@pytest.fixture()
def scheduler() -> MagicMock:
    sched = MagicMock()
    sched.running = False
    return sched


@pytest.fixture()
def timers(scheduler: MagicMock, clock: FakeClock) -> TimerService:
    return TimerService(scheduler=scheduler, clock=clock)


@pytest.fixture()
def reconciler(
    repo: ConsentRepository, timers: TimerService, clock: FakeClock, events: MagicMock
) -> ConsentReconciler:
    return ConsentReconciler(
        repo,
        timers,
        clock=clock,
        abandon_after_ms=10 * MS_PER_MINUTE,
        reminder_lead_ms=24 * MS_PER_HOUR,
        events=events,
    )
