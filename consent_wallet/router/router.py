"""Message router: the background process's single inbound dispatch point.

Inputs:
- runtime messages (six kinds, see ``schemas.messages``),
- timer firings (``expiry_<id>``, ``abandon_<id>``, ``scan_<tabId>``),
- navigation-complete callbacks for tabs.

The router drives the reconciler and owns every side effect the reconciler
does not: user notifications, remote page-bridge calls, and the decision to
scan a freshly loaded page. Unknown message kinds are ignored on purpose:
the channel carries unrelated traffic too.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError

from consent_wallet.bridge.channel import TabChannel
from consent_wallet.bridge.page import SCAN_FOR_CONSENT
from consent_wallet.config import settings
from consent_wallet.events.bus import EventBus
from consent_wallet.models.enums import BridgeOutcome, NotificationKind, PageFunction, TimerKind
from consent_wallet.reconciler.engine import ConsentReconciler
from consent_wallet.reconciler.states import InvalidTransitionError
from consent_wallet.router.notifications import Notifier
from consent_wallet.scheduling.timers import TimerService, parse_timer_name, timer_name
from consent_wallet.schemas.consent import MS_PER_SECOND
from consent_wallet.schemas.events import EventType, SystemEvent
from consent_wallet.schemas.messages import (
    ActivateConsentMessage,
    ConsentDetectedMessage,
    ConsentIssuedMessage,
    ConsentRevokedMessage,
    GetConsentTokensMessage,
    MessageSender,
    ScheduleExpiryReminderMessage,
    UnknownMessage,
    parse_message,
)
from consent_wallet.store.repository import ConsentRepository

logger = logging.getLogger(__name__)

Handler = Callable[[Any, MessageSender | None], Coroutine[Any, Any, Any]]


def should_scan_url(url: str, skip_prefixes: list[str], app_origin: str) -> bool:
    """False for browser/extension-internal URLs and for our own application."""
    if any(url.startswith(prefix) for prefix in skip_prefixes):
        return False
    if app_origin and (url.startswith(app_origin) or urlparse(url).netloc == app_origin):
        return False
    return True


class MessageRouter:
    """Dispatches messages, alarms and tab updates for the background process."""

    def __init__(
        self,
        reconciler: ConsentReconciler,
        repository: ConsentRepository,
        timers: TimerService,
        notifier: Notifier,
        channel: TabChannel,
        scan_delay_ms: int | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._events = events if events is not None else EventBus()
        self._repo = repository
        self._timers = timers
        self._notifier = notifier
        self._channel = channel
        self._scan_delay_ms = (
            scan_delay_ms
            if scan_delay_ms is not None
            else int(settings.timers.scan_delay_seconds * MS_PER_SECOND)
        )
        self._skip_prefixes = [
            p.strip() for p in settings.scan.skip_url_prefixes.split(",") if p.strip()
        ]
        self._app_origin = settings.scan.app_origin

        # One handler per member of the message union
        self._handlers: dict[type[BaseModel], Handler] = {
            ConsentDetectedMessage: self._on_consent_detected,
            ConsentIssuedMessage: self._on_consent_issued,
            ConsentRevokedMessage: self._on_consent_revoked,
            GetConsentTokensMessage: self._on_get_consent_tokens,
            ScheduleExpiryReminderMessage: self._on_schedule_expiry_reminder,
            ActivateConsentMessage: self._on_activate_consent,
        }
        timers.set_handler(self.handle_alarm)

    # ── Messages ─────────────────────────────────────────────────────

    async def handle_message(self, raw: Any, sender: MessageSender | None = None) -> Any:
        """Dispatch one runtime message. Returns the response body (or None)."""
        try:
            message = parse_message(raw)
        except ValidationError as exc:
            action = raw.get("action") if isinstance(raw, dict) else None
            logger.warning("Malformed %s message ignored: %s", action, exc)
            return None

        if isinstance(message, UnknownMessage):
            logger.debug("Ignoring message with unknown action %r", message.action)
            return None

        handler = self._handlers[type(message)]
        return await handler(message, sender)

    async def _on_consent_detected(self, message: ConsentDetectedMessage, sender: MessageSender | None) -> None:
        data = message.data
        await self._reconciler.record_detection(data.model_dump(by_alias=True), sender)
        logger.info("Consent detected on %s", sender.url if sender else data.site_name)

        wallet_settings = await self._repo.get_settings()
        if wallet_settings.notifications:
            site = data.site_name or (urlparse(sender.url).netloc if sender and sender.url else "")
            await self._notifier.notify(NotificationKind.CONSENT_DETECTED, site_name=site)

    async def _on_consent_issued(self, message: ConsentIssuedMessage, sender: MessageSender | None) -> None:
        if message.data is None:
            return
        outcome = await self._reconciler.issue(message.data)
        if not outcome.applied:
            return
        wallet_settings = await self._repo.get_settings()
        if wallet_settings.notifications:
            await self._notifier.notify(
                NotificationKind.CONSENT_ISSUED,
                token_id=outcome.token.token_id,
                site_name=outcome.token.site_name,
            )

    async def _on_consent_revoked(self, message: ConsentRevokedMessage, sender: MessageSender | None) -> None:
        token_id = message.data.token_id
        try:
            result = await self._reconciler.revoke(token_id)
        except InvalidTransitionError as exc:
            logger.warning("Revocation ignored: %s", exc)
            return
        if not result.changed or result.token is None:
            return
        wallet_settings = await self._repo.get_settings()
        if wallet_settings.notifications:
            await self._notifier.notify(
                NotificationKind.CONSENT_REVOKED,
                token_id=token_id,
                site_name=message.data.site_name or result.token.site_name,
            )

    async def _on_get_consent_tokens(
        self, message: GetConsentTokensMessage, sender: MessageSender | None
    ) -> list[dict[str, Any]]:
        tokens = await self._reconciler.list_tokens()
        return [t.to_store() for t in tokens]

    async def _on_schedule_expiry_reminder(
        self, message: ScheduleExpiryReminderMessage, sender: MessageSender | None
    ) -> None:
        await self._reconciler.schedule_expiry_reminder(message.data.token_id, message.data.expiry_date)

    async def _on_activate_consent(self, message: ActivateConsentMessage, sender: MessageSender | None) -> None:
        """Ask the sending tab's page to activate the token on the ledger."""
        if message.token_id is None or sender is None or sender.tab_id is None:
            return
        outcome = await self._channel.invoke(sender.tab_id, PageFunction.ACTIVATE_BY_ID, message.token_id)
        await self._emit_bridge_call(PageFunction.ACTIVATE_BY_ID, message.token_id, sender.tab_id, outcome)
        if outcome != BridgeOutcome.OK:
            return
        try:
            await self._reconciler.activate(message.token_id)
        except InvalidTransitionError as exc:
            logger.warning("Activation not applied locally: %s", exc)

    # ── Alarms ───────────────────────────────────────────────────────

    async def handle_alarm(self, name: str) -> None:
        """Timer callback. Every branch re-validates state before acting."""
        parsed = parse_timer_name(name)
        if parsed is None:
            logger.debug("Ignoring foreign timer %s", name)
            return
        kind, ident = parsed

        await self._events.emit(SystemEvent(
            event_type=EventType.TIMER_FIRED,
            token_id=ident if kind != TimerKind.SCAN else None,
            data={"timer": name},
            source_module="router.router",
        ))

        if kind == TimerKind.EXPIRY:
            await self._on_expiry_timer(ident)
        elif kind == TimerKind.ABANDON:
            await self._on_abandon_timer(ident)
        elif kind == TimerKind.SCAN:
            await self._channel.send_to_tab(ident, {"action": SCAN_FOR_CONSENT})

    async def _stale(self, name: str, token_id: int) -> None:
        logger.debug("Stale timer %s: no action", name)
        await self._events.emit(SystemEvent(
            event_type=EventType.TIMER_STALE,
            token_id=token_id,
            data={"timer": name},
            source_module="router.router",
        ))

    async def _on_expiry_timer(self, token_id: int) -> None:
        token = await self._reconciler.expiry_reminder_target(token_id)
        if token is None:
            await self._stale(timer_name(TimerKind.EXPIRY, token_id), token_id)
            return
        wallet_settings = await self._repo.get_settings()
        if not (wallet_settings.notifications and wallet_settings.expiry_reminders):
            return
        await self._notifier.notify(
            NotificationKind.EXPIRY_APPROACHING,
            token_id=token_id,
            site_name=token.site_name or token.website,
        )
        logger.info("Expiry reminder shown for token %s", token_id)

    async def _on_abandon_timer(self, token_id: int) -> None:
        """Abandon a token still Pending 10 minutes after issuance.

        The first tab whose page abandons it successfully wins; the local
        status is only changed after the ledger call went through.
        """
        if not await self._reconciler.is_pending(token_id):
            await self._stale(timer_name(TimerKind.ABANDON, token_id), token_id)
            return

        for tab_id in self._channel.tab_ids():
            outcome = await self._channel.invoke(tab_id, PageFunction.ABANDON_BY_ID, token_id)
            await self._emit_bridge_call(PageFunction.ABANDON_BY_ID, token_id, tab_id, outcome)
            if outcome != BridgeOutcome.OK:
                continue
            try:
                await self._reconciler.mark_abandoned(token_id)
            except InvalidTransitionError as exc:
                logger.info("Token moved on before abandonment was applied: %s", exc)
            return

        logger.info("No page could abandon token %s; it stays Pending", token_id)

    async def _emit_bridge_call(
        self, function: PageFunction, token_id: int, tab_id: int, outcome: BridgeOutcome
    ) -> None:
        await self._events.emit(SystemEvent(
            event_type=EventType.BRIDGE_INVOKED,
            token_id=token_id,
            data={"function": function.value, "tab_id": tab_id, "outcome": outcome.value},
            source_module="router.router",
        ))

    # ── Tabs ─────────────────────────────────────────────────────────

    def should_scan_url(self, url: str) -> bool:
        return should_scan_url(url, self._skip_prefixes, self._app_origin)

    async def handle_tab_updated(self, tab_id: int, status: str, url: str | None) -> bool:
        """Navigation callback. Schedules a delayed scan; returns True if one was scheduled."""
        if status != "complete" or not url:
            return False
        wallet_settings = await self._repo.get_settings()
        if not wallet_settings.auto_detection or not self.should_scan_url(url):
            return False
        await self._timers.schedule_in(timer_name(TimerKind.SCAN, tab_id), self._scan_delay_ms)
        return True
