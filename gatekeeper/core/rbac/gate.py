"""Access gate consumed by the moderation engine.

The engine only ever asks ``is_authorized(actor_id, action)``. How an
actor's capabilities are established (sessions, SSO, tokens) belongs to
the external identity provider.
"""

import logging
from typing import Iterable, Mapping, Protocol, Union

from .checker import PermissionChecker
from .permissions import Permission

logger = logging.getLogger(__name__)


class AccessGate(Protocol):
    """Authorization verdict for an actor and a ``resource:action``."""

    def is_authorized(self, actor_id: str, action: Union[str, Permission]) -> bool:
        ...


class PermissionAccessGate:
    """
    Gate backed by a mapping of actor id to granted permission strings.

    Built per request from verified token claims, or directly from a
    static grant table in workers and tests.
    """

    def __init__(self, grants: Mapping[str, Iterable[str]]):
        self._checkers = {
            actor_id: PermissionChecker(perms) for actor_id, perms in grants.items()
        }

    def is_authorized(self, actor_id: str, action: Union[str, Permission]) -> bool:
        checker = self._checkers.get(actor_id)
        if checker is None:
            logger.debug("No grants for actor %s", actor_id)
            return False
        return checker.has_permission(action)


class DenyAllGate:
    """Gate that refuses everything; the safe default when no identity is known."""

    def is_authorized(self, actor_id: str, action: Union[str, Permission]) -> bool:
        return False
