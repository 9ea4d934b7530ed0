"""Consent token lifecycle: states and the allowed transition map.

Pending is the initial state of every minted token. Active, Revoked and
Abandoned accept no further automatic transitions except Active → Revoked.
Nothing ever leads back to Pending or Active from Revoked/Abandoned.
"""

from __future__ import annotations

from consent_wallet.models.enums import ConsentStatus

# Transition map: {current_status: {allowed next statuses}}
TRANSITIONS: dict[ConsentStatus, frozenset[ConsentStatus]] = {
    ConsentStatus.PENDING: frozenset({
        ConsentStatus.ACTIVE,
        ConsentStatus.ABANDONED,
        ConsentStatus.REVOKED,
    }),
    ConsentStatus.ACTIVE: frozenset({ConsentStatus.REVOKED}),
    ConsentStatus.REVOKED: frozenset(),
    ConsentStatus.ABANDONED: frozenset(),
}

INITIAL_STATUS = ConsentStatus.PENDING

# Statuses no transition may leave
TERMINAL_STATUSES: frozenset[ConsentStatus] = frozenset(
    s for s, targets in TRANSITIONS.items() if not targets
)


class InvalidTransitionError(ValueError):
    """Raised when a status change is not an edge of the lifecycle graph."""

    def __init__(self, token_id: int | None, current: ConsentStatus, target: ConsentStatus) -> None:
        self.token_id = token_id
        self.current = current
        self.target = target
        allowed = sorted(s.value for s in TRANSITIONS.get(current, frozenset()))
        super().__init__(
            f"Invalid transition for token {token_id}: {current.value} --> {target.value} "
            f"(valid: {allowed})"
        )


def can_transition(current: ConsentStatus, target: ConsentStatus) -> bool:
    """True if ``current → target`` is an edge of the lifecycle graph."""
    return target in TRANSITIONS.get(current, frozenset())
