"""SystemEvent schema: the internal event type that flows through the background service.

The reconciler, ledger client and router emit SystemEvents. Subscribers (the
audit logger, for now) consume them asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Token lifecycle
    TOKEN_ISSUED = "token.issued"
    TOKEN_STATE_CHANGED = "token.state_changed"
    TOKEN_TRANSITION_REJECTED = "token.transition_rejected"

    # Detection
    CONSENT_DETECTED = "detection.consent_detected"

    # Timers
    TIMER_FIRED = "timer.fired"
    TIMER_STALE = "timer.stale"

    # Ledger
    LEDGER_TX_SUBMITTED = "ledger.tx_submitted"
    LEDGER_TX_CONFIRMED = "ledger.tx_confirmed"
    LEDGER_TX_FAILED = "ledger.tx_failed"
    LEDGER_RECONCILED = "ledger.reconciled"
    LEDGER_READ_FAILED = "ledger.read_failed"

    # Bridge
    BRIDGE_INVOKED = "bridge.invoked"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"


class SystemEvent(BaseModel):
    """Core event that flows through the consent wallet.

    Immutable once created. Consumed by:
    - audit_on_event → structured audit log line
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional: not every event concerns a token)
    token_id: int | None = None
    account: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
