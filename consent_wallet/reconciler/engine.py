"""Consent reconciler: the single owner of token status in the durable store.

Every status change goes through ``_transition`` which validates the edge
against ``reconciler.states`` while holding the token-collection lock, so
closely spaced handlers (an activation racing an abandon timer, say) are
applied one after another and the loser sees the winner's status.

Timer effects are validated when they fire, not when they are scheduled:
``is_pending`` and ``expiry_reminder_target`` re-read the store, which makes
late, duplicated or stale firings no-ops by construction.

Ledger reads replace the cached view for the queried account wholesale
(``apply_ledger_view``): the ledger wins once a read succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from consent_wallet.config import settings
from consent_wallet.events.bus import EventBus
from consent_wallet.ledger.addresses import canonical_address, same_address
from consent_wallet.models.enums import ConsentStatus, TimerKind
from consent_wallet.reconciler.states import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    InvalidTransitionError,
    can_transition,
)
from consent_wallet.scheduling.timers import TimerService, timer_name
from consent_wallet.schemas.consent import (
    MS_PER_HOUR,
    MS_PER_MINUTE,
    ConsentToken,
    DetectionEvent,
    now_ms,
)
from consent_wallet.schemas.events import EventType, SystemEvent
from consent_wallet.schemas.messages import ConsentIssuedData, MessageSender
from consent_wallet.store.repository import ConsentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a status change request."""

    token: ConsentToken | None  # None when the token id is unknown
    previous: ConsentStatus | None
    changed: bool


@dataclass(frozen=True)
class IssueOutcome:
    token: ConsentToken
    created: bool  # False when an existing record was overwritten or kept
    expiry_reminder_at: int | None
    abandon_at: int | None
    applied: bool = True  # False for a duplicate of a token already past Pending


def _find(tokens: list[ConsentToken], token_id: int) -> int | None:
    for idx, token in enumerate(tokens):
        if token.token_id == token_id:
            return idx
    return None


class ConsentReconciler:
    """Applies issuance, detection, timer and ledger updates to the token store."""

    def __init__(
        self,
        repository: ConsentRepository,
        timers: TimerService,
        clock: Callable[[], int] = now_ms,
        abandon_after_ms: int | None = None,
        reminder_lead_ms: int | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._repo = repository
        self._timers = timers
        self._events = events if events is not None else EventBus()
        self._clock = clock
        self._abandon_after_ms = (
            abandon_after_ms
            if abandon_after_ms is not None
            else settings.timers.abandon_after_minutes * MS_PER_MINUTE
        )
        self._reminder_lead_ms = (
            reminder_lead_ms
            if reminder_lead_ms is not None
            else settings.timers.expiry_reminder_hours * MS_PER_HOUR
        )
        self._last_detection_id = 0

    # ── Reads ────────────────────────────────────────────────────────

    async def list_tokens(self) -> list[ConsentToken]:
        return await self._repo.list_tokens()

    async def is_pending(self, token_id: int) -> bool:
        """Fire-time check for the abandon timer."""
        token = await self._repo.get_token(token_id)
        return token is not None and token.status == ConsentStatus.PENDING

    async def expiry_reminder_target(self, token_id: int) -> ConsentToken | None:
        """Return the token if an expiry reminder should be shown for it now."""
        token = await self._repo.get_token(token_id)
        if token is None or token.status != ConsentStatus.ACTIVE:
            return None
        return token

    # ── Issuance ─────────────────────────────────────────────────────

    async def issue(self, data: ConsentIssuedData) -> IssueOutcome:
        """Record a ledger-confirmed mint as Pending and arm its timers.

        A repeated issuance for a token that already left Pending keeps the
        stored status (no resurrection) and arms nothing.
        """
        now = self._clock()
        created = True
        async with self._repo.edit_tokens() as tokens:
            idx = _find(tokens, data.token_id)
            if idx is not None and tokens[idx].status != INITIAL_STATUS:
                existing = tokens[idx]
                logger.info(
                    "Duplicate issuance for token %s ignored (status=%s)",
                    data.token_id,
                    existing.status.value,
                )
                return IssueOutcome(
                    existing, created=False, expiry_reminder_at=None, abandon_at=None, applied=False
                )

            token = ConsentToken(
                token_id=data.token_id,
                status=INITIAL_STATUS,
                recipient=canonical_address(data.recipient),
                purpose=data.purpose,
                website=data.site_name,
                site_name=data.site_name,
                data_fields=data.data_fields,
                issued_at=now,
                expiry_date=data.expiry_date,
            )
            if idx is None:
                tokens.append(token)
            else:
                created = False
                tokens[idx] = token

        reminder_at = await self.schedule_expiry_reminder(data.token_id, data.expiry_date)
        abandon_at = now + self._abandon_after_ms
        await self._timers.schedule_at(timer_name(TimerKind.ABANDON, data.token_id), abandon_at)

        await self._events.emit(SystemEvent(
            event_type=EventType.TOKEN_ISSUED,
            token_id=data.token_id,
            data={
                "site_name": data.site_name,
                "expiry_reminder_at": reminder_at,
                "abandon_at": abandon_at,
                "overwrote_pending": not created,
            },
            source_module="reconciler.engine",
        ))
        logger.info("Token %s issued (Pending), abandon timer at %s", data.token_id, abandon_at)
        return IssueOutcome(token, created=created, expiry_reminder_at=reminder_at, abandon_at=abandon_at)

    async def schedule_expiry_reminder(self, token_id: int, expiry_ms: int | None) -> int | None:
        """Arm ``expiry_<id>`` 24h before expiry. Returns the reminder time, or None if not armed."""
        if expiry_ms is None:
            return None
        reminder_at = expiry_ms - self._reminder_lead_ms
        if reminder_at <= self._clock():
            logger.debug("Expiry reminder for token %s not scheduled: already within lead time", token_id)
            return None
        await self._timers.schedule_at(timer_name(TimerKind.EXPIRY, token_id), reminder_at)
        logger.info("Expiry reminder scheduled for token %s at %s", token_id, reminder_at)
        return reminder_at

    # ── Transitions ──────────────────────────────────────────────────

    async def activate(self, token_id: int) -> TransitionResult:
        return await self._transition(token_id, ConsentStatus.ACTIVE, trigger="activated")

    async def mark_abandoned(self, token_id: int) -> TransitionResult:
        return await self._transition(token_id, ConsentStatus.ABANDONED, trigger="abandon_timer")

    async def revoke(self, token_id: int) -> TransitionResult:
        """Revoke a Pending or Active token and drop its expiry reminder."""
        result = await self._transition(
            token_id,
            ConsentStatus.REVOKED,
            trigger="revoked",
            revoked_at=self._clock(),
            is_revoked=True,
        )
        await self._timers.clear(timer_name(TimerKind.EXPIRY, token_id))
        return result

    async def _transition(
        self,
        token_id: int,
        target: ConsentStatus,
        trigger: str,
        **updates: Any,
    ) -> TransitionResult:
        """Validate and apply one edge under the collection lock.

        Re-applying the current status is a no-op. Raises InvalidTransitionError
        for any edge outside the lifecycle graph.
        """
        async with self._repo.edit_tokens() as tokens:
            idx = _find(tokens, token_id)
            if idx is None:
                logger.warning("Transition %s for unknown token %s ignored", trigger, token_id)
                return TransitionResult(token=None, previous=None, changed=False)

            current = tokens[idx]
            if current.status == target:
                return TransitionResult(token=current, previous=current.status, changed=False)

            if not can_transition(current.status, target):
                await self._events.emit(SystemEvent(
                    event_type=EventType.TOKEN_TRANSITION_REJECTED,
                    token_id=token_id,
                    data={"from_status": current.status.value, "to_status": target.value, "trigger": trigger},
                    source_module="reconciler.engine",
                ))
                raise InvalidTransitionError(token_id, current.status, target)

            updated = current.model_copy(update={"status": target, **updates})
            tokens[idx] = updated

        logger.info(
            "Token transition: %s --%s--> %s (token=%s)",
            current.status.value,
            trigger,
            target.value,
            token_id,
        )
        await self._events.emit(SystemEvent(
            event_type=EventType.TOKEN_STATE_CHANGED,
            token_id=token_id,
            data={"from_status": current.status.value, "to_status": target.value, "trigger": trigger},
            source_module="reconciler.engine",
        ))
        return TransitionResult(token=updated, previous=current.status, changed=True)

    # ── Detection ────────────────────────────────────────────────────

    def _next_detection_id(self) -> str:
        ident = max(self._clock(), self._last_detection_id + 1)
        self._last_detection_id = ident
        return str(ident)

    async def record_detection(self, consent_data: dict[str, Any], sender: MessageSender | None) -> DetectionEvent:
        """Append a DetectionEvent. Tokens are never touched."""
        detection = DetectionEvent(
            id=self._next_detection_id(),
            timestamp=self._clock(),
            url=sender.url if sender else None,
            tab_id=sender.tab_id if sender else None,
            consent_data=consent_data,
        )
        await self._repo.append_detection(detection)
        await self._events.emit(SystemEvent(
            event_type=EventType.CONSENT_DETECTED,
            data={"detection_id": detection.id, "url": detection.url, "site_name": consent_data.get("siteName")},
            source_module="reconciler.engine",
        ))
        return detection

    # ── Ledger reconciliation ────────────────────────────────────────

    async def apply_ledger_view(self, account: str, ledger_tokens: list[ConsentToken]) -> list[ConsentToken]:
        """Replace the cached view for ``account`` with a fresh ledger read.

        Records owned by the account are dropped and the ledger records are
        appended in ledger order. When the view carries real token ids, any
        record sharing one of those ids is dropped too. Synthesized ids (the
        legacy enumeration) are positions, not ids, so they never match
        anything: other accounts' records and unrelated speculative entries
        stay.
        """
        owner = canonical_address(account)
        fresh = [t.model_copy(update={"owner": owner}) for t in ledger_tokens]
        synthesized = any(t.id_synthesized for t in fresh)
        fresh_by_id = (
            {} if synthesized else {t.token_id: t for t in fresh if t.token_id is not None}
        )

        async with self._repo.edit_tokens() as tokens:
            kept: list[ConsentToken] = []
            for token in tokens:
                replacement = fresh_by_id.get(token.token_id) if token.token_id is not None else None
                if replacement is not None:
                    if token.status in TERMINAL_STATUSES and replacement.status not in TERMINAL_STATUSES:
                        logger.warning(
                            "Ledger reports token %s as %s, local cache had %s: ledger wins",
                            token.token_id,
                            replacement.status.value,
                            token.status.value,
                        )
                    continue
                if same_address(token.owner, owner):
                    continue
                kept.append(token)
            tokens[:] = kept + fresh

        await self._events.emit(SystemEvent(
            event_type=EventType.LEDGER_RECONCILED,
            account=owner,
            data={
                "token_count": len(fresh),
                "ids_synthesized": synthesized,
            },
            source_module="reconciler.engine",
        ))
        logger.info("Reconciled %d ledger tokens for %s", len(fresh), owner)
        return fresh
