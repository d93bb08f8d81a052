from __future__ import annotations

from tenantgate.core.errors import InvalidTransitionError


STATUS_TRIAL = "trial"
STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

SUBSCRIPTION_STATUSES = (
    STATUS_TRIAL,
    STATUS_ACTIVE,
    STATUS_SUSPENDED,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
)

TERMINAL_STATUSES = frozenset({STATUS_CANCELLED, STATUS_EXPIRED})

_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_TRIAL: frozenset({STATUS_ACTIVE, STATUS_SUSPENDED}),
    STATUS_ACTIVE: frozenset({STATUS_SUSPENDED, STATUS_CANCELLED}),
    # Reactivation is the only way out of suspension.
    STATUS_SUSPENDED: frozenset({STATUS_ACTIVE}),
    STATUS_CANCELLED: frozenset(),
    STATUS_EXPIRED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    # Same-state moves are idempotent no-ops, except out of a terminal state.
    if current == target:
        return current not in TERMINAL_STATUSES
    return target in _TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
