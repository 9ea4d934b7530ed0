"""Tests for named one-shot timers."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from apscheduler.jobstores.base import JobLookupError

from conftest import NOW
from consent_wallet.models.enums import TimerKind
from consent_wallet.scheduling.timers import parse_timer_name, timer_name


class TestTimerNames:
    def test_format(self):
        assert timer_name(TimerKind.EXPIRY, 7) == "expiry_7"
        assert timer_name(TimerKind.ABANDON, 12) == "abandon_12"
        assert timer_name(TimerKind.SCAN, 3) == "scan_3"

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("expiry_7", (TimerKind.EXPIRY, 7)),
            ("abandon_12", (TimerKind.ABANDON, 12)),
            ("scan_3", (TimerKind.SCAN, 3)),
        ],
    )
    def test_parse(self, name, expected):
        assert parse_timer_name(name) == expected

    def test_foreign_name(self):
        assert parse_timer_name("cleanup") is None

    def test_malformed_id(self):
        assert parse_timer_name("expiry_abc") is None


class TestSchedule:
    @pytest.mark.asyncio()
    async def test_schedule_at_replaces_by_name(self, timers, scheduler):
        await timers.schedule_at("abandon_7", NOW + 600_000)

        scheduler.add_job.assert_called_once()
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "abandon_7"
        assert kwargs["args"] == ["abandon_7"]
        assert kwargs["replace_existing"] is True
        assert kwargs["trigger"].run_date == datetime.fromtimestamp((NOW + 600_000) / 1000, tz=timezone.utc)
        assert timers.scheduled_time("abandon_7") == NOW + 600_000

    @pytest.mark.asyncio()
    async def test_schedule_in_uses_clock(self, timers, clock):
        await timers.schedule_in("scan_3", 3000)
        assert timers.pending == {"scan_3": NOW + 3000}

    @pytest.mark.asyncio()
    async def test_clear(self, timers, scheduler):
        await timers.schedule_at("expiry_1", NOW + 1)
        assert await timers.clear("expiry_1") is True
        scheduler.remove_job.assert_called_once_with("expiry_1")
        assert timers.scheduled_time("expiry_1") is None

    @pytest.mark.asyncio()
    async def test_clear_missing(self, timers, scheduler):
        scheduler.remove_job.side_effect = JobLookupError("expiry_1")
        assert await timers.clear("expiry_1") is False


class TestFire:
    @pytest.mark.asyncio()
    async def test_routes_to_handler(self, timers):
        handler = AsyncMock()
        timers.set_handler(handler)
        await timers.schedule_at("expiry_1", NOW + 1)

        await timers.fire("expiry_1")

        handler.assert_awaited_once_with("expiry_1")
        assert timers.pending == {}

    @pytest.mark.asyncio()
    async def test_handler_error_is_contained(self, timers):
        timers.set_handler(AsyncMock(side_effect=RuntimeError("boom")))
        await timers.fire("abandon_1")  # does not raise

    @pytest.mark.asyncio()
    async def test_no_handler(self, timers):
        await timers.fire("abandon_1")  # logged, not raised


class TestLifecycle:
    def test_start_and_shutdown(self, timers, scheduler):
        timers.start()
        scheduler.start.assert_called_once()
        scheduler.running = True
        timers.shutdown()
        scheduler.shutdown.assert_called_once_with(wait=False)
