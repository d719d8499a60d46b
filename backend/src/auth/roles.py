"""Admin roles and permission hierarchy for the ERP sync surface.

Role Hierarchy (descending permissions):
- ADMIN: Everything, including force-pushing unpaid orders to the ERP
- INTEGRATOR: ERP configuration, connection tests, catalog syncs
- OPS: Order pushes, stock/status syncs, cancelling stuck runs
- VIEWER: Read-only sync status and logs

Permission Matrix:
┌──────────────────────────┬───────┬────────────┬─────┬────────┐
│ Action                   │ ADMIN │ INTEGRATOR │ OPS │ VIEWER │
├──────────────────────────┼───────┼────────────┼─────┼────────┤
│ Force-push unpaid order  │   ✓   │            │     │        │
│ Configure ERP            │   ✓   │     ✓      │     │        │
│ Trigger syncs            │   ✓   │     ✓      │  ✓  │        │
│ Push/retry orders        │   ✓   │     ✓      │  ✓  │        │
│ View sync status/logs    │   ✓   │     ✓      │  ✓  │   ✓    │
└──────────────────────────┴───────┴────────────┴─────┴────────┘
"""

from enum import Enum
from typing import Optional, Set


class UserRole(str, Enum):
    """Roles carried in the `role` claim of admin JWTs."""
    ADMIN = "ADMIN"
    INTEGRATOR = "INTEGRATOR"
    OPS = "OPS"
    VIEWER = "VIEWER"


# Role hierarchy: Each role includes permissions of all roles below it
ROLE_HIERARCHY = {
    UserRole.ADMIN: {UserRole.ADMIN, UserRole.INTEGRATOR, UserRole.OPS, UserRole.VIEWER},
    UserRole.INTEGRATOR: {UserRole.INTEGRATOR, UserRole.OPS, UserRole.VIEWER},
    UserRole.OPS: {UserRole.OPS, UserRole.VIEWER},
    UserRole.VIEWER: {UserRole.VIEWER},
}


def has_permission(user_role: Optional[UserRole], required_role: UserRole) -> bool:
    """Check if a user role satisfies a required role.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.OPS)
        True
        >>> has_permission(UserRole.VIEWER, UserRole.OPS)
        False
        >>> has_permission(None, UserRole.VIEWER)
        False
    """
    if user_role is None:
        return False
    try:
        user_role = UserRole(user_role)
    except ValueError:
        return False
    return required_role in ROLE_HIERARCHY.get(user_role, set())


def get_allowed_roles(required_role: UserRole) -> Set[UserRole]:
    """All roles that satisfy the requirement."""
    return {role for role, permissions in ROLE_HIERARCHY.items() if required_role in permissions}
