"""Permission model for Gatekeeper.

Permission string format: "resource:action"
Examples:
  - subjects:approve
  - subjects:reject
  - dashboard:reconcile
"""

from enum import Enum
from typing import NamedTuple, FrozenSet


class Resource(str, Enum):
    """Resources that can be protected by permissions."""

    SUBJECTS = "subjects"             # Submissions under moderation
    NOTIFICATIONS = "notifications"   # Decision notifications
    DASHBOARD = "dashboard"           # Counters and statistics


class Action(str, Enum):
    """Actions that can be performed on resources."""

    CREATE = "create"
    READ = "read"
    LIST = "list"
    UPDATE = "update"

    APPROVE = "approve"
    REJECT = "reject"
    RECONCILE = "reconcile"


class Permission(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse a permission string like 'subjects:approve'."""
        parts = perm_str.split(":")
        if len(parts) != 2:
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(Resource(parts[0]), Action(parts[1]))


PERMISSION_MATRIX: dict[Resource, FrozenSet[Action]] = {
    Resource.SUBJECTS: frozenset([
        Action.CREATE, Action.READ, Action.LIST, Action.APPROVE, Action.REJECT,
    ]),
    Resource.NOTIFICATIONS: frozenset([
        Action.READ, Action.LIST, Action.UPDATE,
    ]),
    Resource.DASHBOARD: frozenset([
        Action.READ, Action.RECONCILE,
    ]),
}


def _generate_permission_definitions() -> dict[str, Permission]:
    """Generate all valid permission combinations from the matrix."""
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = Permission(resource, action)
            permissions[str(perm)] = perm
    return permissions


# All valid permissions as a dictionary: "resource:action" -> Permission
PERMISSION_DEFINITIONS = _generate_permission_definitions()

# Administrators decide submissions and look after the dashboard
MODERATOR_PERMISSIONS = [
    str(Permission(Resource.SUBJECTS, Action.READ)),
    str(Permission(Resource.SUBJECTS, Action.LIST)),
    str(Permission(Resource.SUBJECTS, Action.APPROVE)),
    str(Permission(Resource.SUBJECTS, Action.REJECT)),
    str(Permission(Resource.DASHBOARD, Action.READ)),
]


def is_valid_permission(perm_str: str) -> bool:
    """Check if a permission string is valid."""
    return perm_str in PERMISSION_DEFINITIONS
