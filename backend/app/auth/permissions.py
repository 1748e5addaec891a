"""Role-based permissions for CoffeeTrack.

Design:
  - Two roles: `admin` (unscoped, manages money) and `fieldagent`
    (records farmers and deliveries inside one assigned region).
  - Each role has a set of DEFAULT permissions defined here.
  - The effective set is embedded in the JWT at issue time so checks
    are token-only (no DB roundtrip).

Permission naming: `<resource>.<action>`
  Resources: farmers, deliveries, payments, reports
  Actions:   read, write, manage
"""

from __future__ import annotations

import enum


class CallerRole(str, enum.Enum):
    ADMIN = "admin"
    FIELD_AGENT = "fieldagent"


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    # Farmers
    "farmers.read",
    "farmers.write",

    # Deliveries
    "deliveries.read",
    "deliveries.write",
    "deliveries.manage",    # edit existing deliveries

    # Payments (strictly restricted)
    "payments.read",
    "payments.write",       # create / complete / void / retry

    # Reports & dashboards
    "reports.read",
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    CallerRole.ADMIN.value: ALL_PERMISSIONS.copy(),

    CallerRole.FIELD_AGENT.value: {
        "farmers.read", "farmers.write",
        "deliveries.read", "deliveries.write",
        "payments.read",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for a caller.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in user_permissions
