"""Named one-shot timers (alarms) on top of APScheduler.

A timer is identified by its name; scheduling a name that already exists
replaces the previous timer. There is no reliance on cancellation: handlers
re-validate current state when a timer fires, so a stale or duplicated firing
is harmless.

Names are ``<prefix><tokenId>`` (``expiry_7``, ``abandon_7``) plus
``scan_<tabId>`` for delayed page scans.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from datetime import datetime, timezone
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from consent_wallet.models.enums import TimerKind
from consent_wallet.schemas.consent import now_ms

logger = logging.getLogger(__name__)

TimerHandler = Callable[[str], Coroutine[Any, Any, None]]


def timer_name(kind: TimerKind, ident: int) -> str:
    """Format a timer name, e.g. ``timer_name(TimerKind.EXPIRY, 7) == "expiry_7"``."""
    return f"{kind.value}{ident}"


def parse_timer_name(name: str) -> tuple[TimerKind, int] | None:
    """Strip the fixed prefix and parse the numeric id. None for foreign names."""
    for kind in TimerKind:
        if name.startswith(kind.value):
            suffix = name[len(kind.value):]
            try:
                return kind, int(suffix)
            except ValueError:
                logger.warning("Malformed timer name: %s", name)
                return None
    return None


class TimerService:
    """Schedules named wake-ups and routes every firing to a single handler."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._scheduler = scheduler if scheduler is not None else AsyncIOScheduler(timezone=timezone.utc)
        self._clock = clock
        self._handler: TimerHandler | None = None
        self._pending: dict[str, int] = {}

    def set_handler(self, handler: TimerHandler) -> None:
        """Inject the callback (typically the router's ``handle_alarm``)."""
        self._handler = handler

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Timer scheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Timer scheduler stopped")

    @property
    def pending(self) -> dict[str, int]:
        """Timer name → absolute fire time (epoch ms) for timers not yet fired."""
        return dict(self._pending)

    def scheduled_time(self, name: str) -> int | None:
        return self._pending.get(name)

    async def schedule_at(self, name: str, when_ms: int) -> None:
        """Fire ``name`` at an absolute epoch-ms time, replacing any timer of that name."""
        run_date = datetime.fromtimestamp(when_ms / 1000, tz=timezone.utc)
        self._scheduler.add_job(
            self.fire,
            trigger=DateTrigger(run_date=run_date),
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            misfire_grace_time=None,  # late is fine: the process may have been suspended
            coalesce=True,
        )
        self._pending[name] = when_ms
        logger.debug("Timer %s scheduled at %s", name, run_date.isoformat())

    async def schedule_in(self, name: str, delay_ms: int) -> None:
        """Fire ``name`` after ``delay_ms`` milliseconds."""
        await self.schedule_at(name, self._clock() + delay_ms)

    async def clear(self, name: str) -> bool:
        """Remove a timer if it is still scheduled. Returns True if one was removed."""
        self._pending.pop(name, None)
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            return False
        logger.debug("Timer %s cleared", name)
        return True

    async def fire(self, name: str) -> None:
        """Deliver a firing to the handler. Called by the scheduler (or tests)."""
        self._pending.pop(name, None)
        if self._handler is None:
            logger.warning("Timer %s fired with no handler registered", name)
            return
        try:
            await self._handler(name)
        except Exception:
            logger.exception("Timer handler failed for %s", name)
