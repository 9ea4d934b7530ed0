"""Tests for the event bus, the audit subscriber and the notifier."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from consent_wallet.events.audit import audit_on_event
from consent_wallet.events.bus import EventBus
from consent_wallet.models.enums import NotificationKind
from consent_wallet.router.notifications import Notifier
from consent_wallet.schemas.events import EventType, SystemEvent


def _event(event_type: EventType = EventType.TOKEN_STATE_CHANGED) -> SystemEvent:
    return SystemEvent(event_type=event_type, token_id=7, data={"to_status": "Active"}, source_module="test")


class TestEventBus:
    @pytest.mark.asyncio()
    async def test_global_and_typed(self):
        bus = EventBus()
        global_handler = AsyncMock(__name__="global_handler")
        typed_handler = AsyncMock(__name__="typed_handler")
        bus.subscribe(global_handler)
        bus.subscribe(typed_handler, event_types=[EventType.TIMER_STALE])

        await bus.emit(_event())

        global_handler.assert_awaited_once()
        typed_handler.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_failing_handler_isolated(self):
        bus = EventBus()
        ok = AsyncMock(__name__="ok")
        bus.subscribe(AsyncMock(side_effect=RuntimeError("boom"), __name__="broken"))
        bus.subscribe(ok)

        await bus.deliver(_event())

        ok.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_emit_through_worker(self):
        bus = EventBus()
        handler = AsyncMock(__name__="handler")
        bus.subscribe(handler)
        await bus.start()
        assert bus.running

        await bus.emit(_event(EventType.LEDGER_RECONCILED))
        await bus.stop()

        assert not bus.running
        assert handler.await_args.args[0].event_type == EventType.LEDGER_RECONCILED

    @pytest.mark.asyncio()
    async def test_start_is_idempotent(self):
        bus = EventBus()
        await bus.start()
        await bus.start()
        await bus.stop()
        assert not bus.running

    def test_unsubscribe(self):
        bus = EventBus()
        handler = AsyncMock(__name__="handler")
        bus.subscribe(handler, event_types=[EventType.TIMER_FIRED])
        bus.subscribe(handler)
        bus.unsubscribe(handler)
        assert bus.handlers_for(EventType.TIMER_FIRED) == []
        assert bus.subscriber_count == 0

    def test_buses_are_independent(self):
        first, second = EventBus(), EventBus()
        first.subscribe(AsyncMock(__name__="handler"))
        assert second.subscriber_count == 0


class TestAudit:
    @pytest.mark.asyncio()
    async def test_writes_structured_line(self):
        with patch("consent_wallet.events.audit.audit_log") as mock_log:
            await audit_on_event(_event())
        args, kwargs = mock_log.info.call_args
        assert args == ("token.state_changed",)
        assert kwargs["token_id"] == 7
        assert kwargs["to_status"] == "Active"

    @pytest.mark.asyncio()
    async def test_never_raises(self):
        with patch("consent_wallet.events.audit.audit_log") as mock_log:
            mock_log.info.side_effect = RuntimeError("sink down")
            await audit_on_event(_event())


class TestNotifier:
    @pytest.mark.asyncio()
    async def test_formats_and_delivers(self):
        notifier = Notifier()
        send = AsyncMock()
        notifier.set_send_fn(send)

        notification = await notifier.notify(NotificationKind.CONSENT_ISSUED, token_id=3, site_name="shop.example")

        assert notification.title == "Consent Token Issued"
        assert notification.message == "Blockchain consent token created for shop.example"
        send.assert_awaited_once_with(notification)

    @pytest.mark.asyncio()
    async def test_delivery_failure_swallowed(self):
        notifier = Notifier()
        notifier.set_send_fn(AsyncMock(side_effect=RuntimeError("no display")))
        await notifier.notify(NotificationKind.CONSENT_DETECTED, site_name="x")
        assert len(notifier.history) == 1

    @pytest.mark.asyncio()
    async def test_missing_field_placeholder(self):
        notification = await Notifier().notify(NotificationKind.CONSENT_REVOKED)
        assert notification.message == "Consent token revoked for ?"
