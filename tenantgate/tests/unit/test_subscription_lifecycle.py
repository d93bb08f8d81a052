from __future__ import annotations

import pytest

from tenantgate.core.errors import InvalidTransitionError
from tenantgate.domain.models import Tenant
from tenantgate.services.auth.roles import normalize_role
from tenantgate.domain.lifecycle import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_SUSPENDED,
    STATUS_TRIAL,
    can_transition,
    ensure_transition,
)


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (STATUS_TRIAL, STATUS_ACTIVE, True),
        (STATUS_TRIAL, STATUS_SUSPENDED, True),
        (STATUS_TRIAL, STATUS_CANCELLED, False),
        (STATUS_ACTIVE, STATUS_SUSPENDED, True),
        (STATUS_ACTIVE, STATUS_CANCELLED, True),
        (STATUS_ACTIVE, STATUS_TRIAL, False),
        (STATUS_SUSPENDED, STATUS_ACTIVE, True),
        (STATUS_SUSPENDED, STATUS_TRIAL, False),
        (STATUS_CANCELLED, STATUS_ACTIVE, False),
        (STATUS_EXPIRED, STATUS_ACTIVE, False),
    ],
)
def test_transition_table(current: str, target: str, allowed: bool) -> None:
    assert can_transition(current, target) is allowed


def test_same_state_is_idempotent_except_terminal() -> None:
    assert can_transition(STATUS_SUSPENDED, STATUS_SUSPENDED)
    assert can_transition(STATUS_ACTIVE, STATUS_ACTIVE)
    assert not can_transition(STATUS_CANCELLED, STATUS_CANCELLED)


def test_ensure_transition_raises_with_states() -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        ensure_transition(STATUS_CANCELLED, STATUS_ACTIVE)
    assert excinfo.value.current == STATUS_CANCELLED
    assert excinfo.value.target == STATUS_ACTIVE


def test_tenant_model_rejects_unknown_vocabulary() -> None:
    with pytest.raises(ValueError):
        Tenant(id="t1", name="T1", type="spaceport", subscription_status="trial")
    with pytest.raises(ValueError):
        Tenant(id="t1", name="T1", type="clinic", subscription_status="paused")


def test_normalize_role() -> None:
    assert normalize_role(" Receptionist ") == "receptionist"
    with pytest.raises(ValueError):
        normalize_role("janitor")
