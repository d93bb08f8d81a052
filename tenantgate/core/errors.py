from __future__ import annotations


class TenantGateError(Exception):
    """Base error for tenantgate."""


class StateStoreError(TenantGateError):
    """Shared CSRF/rate-limit state store failure."""


class TenantNotFoundError(TenantGateError):
    """Tenant record does not exist."""


class InvalidTransitionError(TenantGateError):
    """Subscription state change not permitted by the lifecycle state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot transition subscription from {current} to {target}")
        self.current = current
        self.target = target
