"""Tab channel: how the background process reaches page bridges.

An explicit async RPC in place of injecting script into a tab: the
background asks the channel to invoke a named page function in a tab and
gets a ``BridgeOutcome`` back. A tab that is gone, or whose page has not
registered the function yet, yields ``NOT_REGISTERED``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from consent_wallet.bridge.page import PageBridge
from consent_wallet.models.enums import BridgeOutcome, PageFunction

logger = logging.getLogger(__name__)


class TabChannel(Protocol):
    def tab_ids(self) -> list[int]: ...

    async def invoke(self, tab_id: int, function: PageFunction, token_id: int) -> BridgeOutcome: ...

    async def send_to_tab(self, tab_id: int, message: dict[str, Any]) -> None: ...


class InProcessTabChannel:
    """Tab registry for page bridges living in the same process."""

    def __init__(self) -> None:
        self._tabs: dict[int, PageBridge] = {}

    def attach(self, bridge: PageBridge) -> None:
        self._tabs[bridge.tab_id] = bridge
        logger.debug("Tab %s attached (%s)", bridge.tab_id, bridge.url)

    def detach(self, tab_id: int) -> None:
        self._tabs.pop(tab_id, None)

    def get(self, tab_id: int) -> PageBridge | None:
        return self._tabs.get(tab_id)

    def tab_ids(self) -> list[int]:
        return list(self._tabs)

    async def invoke(self, tab_id: int, function: PageFunction, token_id: int) -> BridgeOutcome:
        bridge = self._tabs.get(tab_id)
        if bridge is None:
            return BridgeOutcome.NOT_REGISTERED
        return await bridge.call(function, token_id)

    async def send_to_tab(self, tab_id: int, message: dict[str, Any]) -> None:
        bridge = self._tabs.get(tab_id)
        if bridge is None:
            logger.debug("Tab %s gone: dropping %s", tab_id, message.get("action"))
            return
        await bridge.on_message(message)
