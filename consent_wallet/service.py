"""Service container: builds and wires the background process and page side.

Everything is constructed explicitly here and handed to its collaborators;
no component reaches for ambient globals other than deployment settings.

    service = ConsentWalletService.build()
    await service.start()          # idempotent store initialization + timers
    bridge = service.open_page(tab_id=3, url="https://shop.example")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from consent_wallet.bridge.channel import InProcessTabChannel
from consent_wallet.bridge.page import PageBridge, ScanHandler
from consent_wallet.config import settings
from consent_wallet.events.bus import EventBus
from consent_wallet.ledger.client import LedgerClient
from consent_wallet.ledger.contract import ConsentContract, Web3ConsentContract
from consent_wallet.reconciler.engine import ConsentReconciler
from consent_wallet.router.notifications import Notifier
from consent_wallet.router.router import MessageRouter
from consent_wallet.scheduling.timers import TimerService
from consent_wallet.schemas.consent import now_ms
from consent_wallet.store.engine import DurableStore, create_store
from consent_wallet.store.repository import ConsentRepository

logger = logging.getLogger(__name__)


def default_contract_factory() -> ConsentContract:
    return Web3ConsentContract.from_settings(settings.ledger)


@dataclass
class ConsentWalletService:
    store: DurableStore
    repository: ConsentRepository
    timers: TimerService
    reconciler: ConsentReconciler
    notifier: Notifier
    channel: InProcessTabChannel
    router: MessageRouter
    ledger: LedgerClient
    events: EventBus

    @classmethod
    def build(
        cls,
        store: DurableStore | None = None,
        contract_factory: Callable[[], ConsentContract] | None = None,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], int] = now_ms,
        events: EventBus | None = None,
    ) -> ConsentWalletService:
        events = events if events is not None else EventBus()
        store = store if store is not None else create_store()
        repository = ConsentRepository(store)
        timers = TimerService(scheduler=scheduler, clock=clock)
        reconciler = ConsentReconciler(repository, timers, clock=clock, events=events)
        notifier = Notifier()
        channel = InProcessTabChannel()
        router = MessageRouter(reconciler, repository, timers, notifier, channel, events=events)

        async def send_to_background(message: dict[str, Any]) -> Any:
            return await router.handle_message(message, None)

        ledger = LedgerClient(
            contract_factory or default_contract_factory,
            on_refreshed=reconciler.apply_ledger_view,
            send_message=send_to_background,
            events=events,
        )
        return cls(store, repository, timers, reconciler, notifier, channel, router, ledger, events)

    async def start(self) -> None:
        await self.repository.initialize()
        self.timers.start()
        logger.info("Consent wallet service started")

    async def stop(self) -> None:
        """Stop the timers. The store is closed by whoever opened it (``store_lifespan``)."""
        self.timers.shutdown()
        logger.info("Consent wallet service stopped")

    def open_page(self, tab_id: int, url: str, scan_handler: ScanHandler | None = None) -> PageBridge:
        """Attach a page context for a tab and expose the ledger functions to it."""
        bridge = PageBridge(tab_id, url, self.router.handle_message, scan_handler=scan_handler)
        bridge.attach_ledger(self.ledger)
        self.channel.attach(bridge)
        return bridge

    def close_page(self, tab_id: int) -> None:
        self.channel.detach(tab_id)
