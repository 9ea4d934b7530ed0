"""Shared enumerations for consent wallet state, messages and timers."""

from __future__ import annotations

from consent_wallet.models.enums import (
    BridgeOutcome,
    ConsentStatus,
    DetectionStatus,
    LedgerErrorKind,
    MessageAction,
    NotificationKind,
    PageFunction,
    TimerKind,
)

__all__ = [
    "BridgeOutcome",
    "ConsentStatus",
    "DetectionStatus",
    "LedgerErrorKind",
    "MessageAction",
    "NotificationKind",
    "PageFunction",
    "TimerKind",
]
