"""Permission checking utilities for Gatekeeper."""

from functools import wraps
from typing import Callable, Iterable, List, Union

from fastapi import HTTPException, status

from .permissions import Permission


class PermissionChecker:
    """Checks a permission list, honouring resource and global wildcards."""

    def __init__(self, user_permissions: Iterable[str]):
        self.permissions = set(user_permissions)

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if the holder has a specific permission."""
        perm_str = str(permission) if isinstance(permission, Permission) else permission

        if perm_str in self.permissions:
            return True

        if ":" in perm_str:
            resource = perm_str.split(":")[0]
            if f"{resource}:*" in self.permissions:
                return True
            # Global admin wildcard
            if "*:*" in self.permissions:
                return True

        return False

    def has_any_permission(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if the holder has any of the given permissions."""
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if the holder has all of the given permissions."""
        return all(self.has_permission(p) for p in permissions)


def require_permission(*permissions: Union[str, Permission], require_all: bool = False):
    """
    Decorator factory for FastAPI endpoints requiring specific permissions.

    The endpoint must take the authenticated actor as ``current_actor``.

    Usage:
        @router.get("/subjects")
        @require_permission("subjects:list")
        async def list_subjects(current_actor: Actor = Depends(get_current_actor)):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_actor = kwargs.get("current_actor")
            if current_actor is None:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required"
                )

            checker = PermissionChecker(current_actor.permissions or [])
            perm_strs = [str(p) if isinstance(p, Permission) else p for p in permissions]

            if require_all:
                has_access = checker.has_all_permissions(perm_strs)
            else:
                has_access = checker.has_any_permission(perm_strs)

            if not has_access:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Insufficient permissions. Required: {', '.join(perm_strs)}"
                )

            return await func(*args, **kwargs)

        return wrapper
    return decorator
