"""RBAC module for Gatekeeper.

Defines the permission model and the access gate consumed by the engine.
"""

from .permissions import Permission, Resource, Action, PERMISSION_DEFINITIONS, MODERATOR_PERMISSIONS
from .checker import PermissionChecker, require_permission
from .gate import AccessGate, PermissionAccessGate, DenyAllGate

__all__ = [
    "Permission",
    "Resource",
    "Action",
    "PERMISSION_DEFINITIONS",
    "MODERATOR_PERMISSIONS",
    "PermissionChecker",
    "require_permission",
    "AccessGate",
    "PermissionAccessGate",
    "DenyAllGate",
]
