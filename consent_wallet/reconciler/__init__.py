"""Consent state machine: the local source of truth for consent status."""

from consent_wallet.reconciler.engine import ConsentReconciler, IssueOutcome, TransitionResult
from consent_wallet.reconciler.states import InvalidTransitionError, can_transition

__all__ = [
    "ConsentReconciler",
    "IssueOutcome",
    "TransitionResult",
    "InvalidTransitionError",
    "can_transition",
]
