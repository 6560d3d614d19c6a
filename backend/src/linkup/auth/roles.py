"""User roles and permission hierarchy.

Role Hierarchy (descending permissions):
- ADMIN: Global analytics, weight optimization and promotion, experiments
- MEMBER: Own queue entry, own matches and feedback
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles carried in the ``role`` token claim."""
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# Role hierarchy: Each role includes permissions of all roles below it
ROLE_HIERARCHY = {
    UserRole.ADMIN: {UserRole.ADMIN, UserRole.MEMBER},
    UserRole.MEMBER: {UserRole.MEMBER},
}


def has_permission(user_role: UserRole, required_role: UserRole) -> bool:
    """Check if a user role has permission to perform an action requiring a specific role.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.MEMBER)
        True
        >>> has_permission(UserRole.MEMBER, UserRole.ADMIN)
        False
    """
    return required_role in ROLE_HIERARCHY.get(user_role, set())
