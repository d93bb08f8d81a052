from __future__ import annotations


PLATFORM_OPERATOR_ROLE = "super_admin"
FRONT_DESK_ROLE = "receptionist"

ROLES: tuple[str, ...] = (
    PLATFORM_OPERATOR_ROLE,
    "tenant_admin",
    "director",
    "physician",
    "nurse",
    "pharmacist",
    "lab_technician",
    FRONT_DESK_ROLE,
    "billing_staff",
    "insurance_manager",
    "patient",
)


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for role checks.
    normalized = role.strip().lower()
    if normalized not in ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def is_platform_operator(role: str) -> bool:
    return role == PLATFORM_OPERATOR_ROLE
