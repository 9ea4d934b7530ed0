"""Audit subscriber: writes every SystemEvent to the structured audit log.

Registered as a global subscriber (receives ALL events). Token transitions,
ledger submissions and stale-timer skips all end up here, which is the trail
used to debug reconciliation races.

Never raises: failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

import structlog

from consent_wallet.schemas.events import SystemEvent

logger = logging.getLogger(__name__)

audit_log = structlog.get_logger("consent_wallet.audit")


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent as one structured audit line."""
    try:
        audit_log.info(
            event.event_type.value,
            event_id=str(event.id),
            token_id=event.token_id,
            account=event.account,
            source=event.source_module,
            **event.data,
        )
    except Exception:
        logger.exception(
            "Failed to write audit event: %s (token=%s)",
            event.event_type.value,
            event.token_id,
        )
