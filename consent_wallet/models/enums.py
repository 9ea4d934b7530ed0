"""Domain enums shared by the store schemas, the reconciler and the ledger client.

All enums use the str mixin so they serialize to JSON as their plain values.
"""

from __future__ import annotations

from enum import Enum


class ConsentStatus(str, Enum):
    """Lifecycle of a consent token: see reconciler.states for the edges."""

    PENDING = "Pending"
    ACTIVE = "Active"
    REVOKED = "Revoked"
    ABANDONED = "Abandoned"


class DetectionStatus(str, Enum):
    """Detection events are append-only; ``detected`` is the only state."""

    DETECTED = "detected"


class MessageAction(str, Enum):
    """Inbound message kinds handled by the background router."""

    CONSENT_DETECTED = "consentDetected"
    CONSENT_ISSUED = "consentIssued"
    CONSENT_REVOKED = "consentRevoked"
    GET_CONSENT_TOKENS = "getConsentTokens"
    SCHEDULE_EXPIRY_REMINDER = "scheduleExpiryReminder"
    ACTIVATE_CONSENT = "activateConsent"


class PageFunction(str, Enum):
    """Functions the page bridge exposes to the background process."""

    ACTIVATE_BY_ID = "activate-by-id"
    ABANDON_BY_ID = "abandon-by-id"


class BridgeOutcome(str, Enum):
    """Result of a remote page-function invocation."""

    OK = "ok"
    NOT_REGISTERED = "not_registered"  # page not initialized yet: silent no-op
    FAILED = "failed"


class TimerKind(str, Enum):
    """Timer name families. The value is the name prefix."""

    EXPIRY = "expiry_"
    ABANDON = "abandon_"
    SCAN = "scan_"


class NotificationKind(str, Enum):
    """User-visible notification types."""

    CONSENT_DETECTED = "consent_detected"
    CONSENT_ISSUED = "consent_issued"
    CONSENT_REVOKED = "consent_revoked"
    EXPIRY_APPROACHING = "expiry_approaching"


class LedgerErrorKind(str, Enum):
    """Classification of failures on the ledger read path."""

    CONTRACT_NOT_DEPLOYED = "contract_not_deployed"
    ABI_MISMATCH = "abi_mismatch"
    NODE_DESYNC = "node_desync"
    NETWORK = "network"
    CALL_FAILED = "call_failed"
