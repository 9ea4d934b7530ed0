"""Page bridge: the page-context end of the background ↔ page channel.

The background process can call two functions in the page, keyed by token
id: ``activate-by-id`` and ``abandon-by-id``. They exist only once the page
has wired its ledger client (``attach_ledger``); until then a call reports
``NOT_REGISTERED`` and does nothing. A handler failure is logged and reported
as ``FAILED``: it never crosses the boundary as an exception.

In the other direction the bridge posts ``consentDetected`` messages and
relays the ledger client's ``consentIssued`` message to the background.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from consent_wallet.ledger.client import LedgerClient
from consent_wallet.models.enums import BridgeOutcome, MessageAction, PageFunction
from consent_wallet.schemas.messages import ConsentDetectedData, MessageSender

logger = logging.getLogger(__name__)

PageHandler = Callable[[int], Coroutine[Any, Any, Any]]
RuntimeSend = Callable[[dict[str, Any], MessageSender | None], Coroutine[Any, Any, Any]]
ScanHandler = Callable[[], Coroutine[Any, Any, ConsentDetectedData | None]]

SCAN_FOR_CONSENT = "scanForConsent"


class PageBridge:
    """Functions exposed by one page (tab) plus its outbound message helper."""

    def __init__(
        self,
        tab_id: int,
        url: str,
        runtime_send: RuntimeSend,
        scan_handler: ScanHandler | None = None,
    ) -> None:
        self.tab_id = tab_id
        self.url = url
        self._runtime_send = runtime_send
        self._scan_handler = scan_handler
        self._functions: dict[PageFunction, PageHandler] = {}

    @property
    def sender(self) -> MessageSender:
        return MessageSender(tab_id=self.tab_id, url=self.url)

    # ── Inbound (background → page) ──────────────────────────────────

    def register(self, function: PageFunction, handler: PageHandler) -> None:
        self._functions[function] = handler

    def attach_ledger(self, ledger: LedgerClient) -> None:
        """Expose the ledger client's activate/abandon to the background process."""
        self.register(PageFunction.ACTIVATE_BY_ID, ledger.activate)
        self.register(PageFunction.ABANDON_BY_ID, ledger.abandon)

    def has_function(self, function: PageFunction) -> bool:
        return function in self._functions

    async def call(self, function: PageFunction, token_id: int) -> BridgeOutcome:
        if not self.has_function(function):
            logger.debug("Page %s has no %s yet: skipping", self.tab_id, function.value)
            return BridgeOutcome.NOT_REGISTERED
        handler = self._functions[function]
        try:
            await handler(int(token_id))
        except Exception as exc:
            logger.error("Failed to run %s for token %s from background: %s", function.value, token_id, exc)
            return BridgeOutcome.FAILED
        return BridgeOutcome.OK

    async def on_message(self, message: dict[str, Any]) -> None:
        """Messages the background sends to the tab. Only scans are understood."""
        if message.get("action") != SCAN_FOR_CONSENT or self._scan_handler is None:
            return
        detected = await self._scan_handler()
        if detected is not None:
            await self.post_detection(detected)

    # ── Outbound (page → background) ─────────────────────────────────

    async def send_message(self, message: dict[str, Any]) -> Any:
        return await self._runtime_send(message, self.sender)

    async def post_detection(self, data: ConsentDetectedData) -> None:
        await self.send_message({
            "action": MessageAction.CONSENT_DETECTED.value,
            "data": data.model_dump(by_alias=True),
        })
