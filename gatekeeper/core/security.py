"""Bearer token handling.

Tokens are issued by the external identity provider and carry the actor
id in ``sub`` and the granted ``resource:action`` strings in
``permissions``. ``create_access_token`` exists for local development
and tests.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from jose import JWTError, jwt

from gatekeeper.core.config import get_settings
from gatekeeper.core.rbac.gate import PermissionAccessGate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """An authenticated caller."""
    id: str
    permissions: List[str] = field(default_factory=list)

    def gate(self) -> PermissionAccessGate:
        """Access gate holding this actor's grants."""
        return PermissionAccessGate({self.id: self.permissions})


def create_access_token(
    actor_id: str,
    permissions: Iterable[str] = (),
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT for an actor."""
    settings = get_settings()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "sub": actor_id,
        "permissions": list(permissions),
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Optional[Actor]:
    """Decode and validate a JWT. Returns the actor if valid."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.info(f"Rejected bearer token: {e}")
        return None

    actor_id = payload.get("sub")
    if not actor_id:
        return None

    permissions = payload.get("permissions") or []
    if not isinstance(permissions, list):
        return None
    return Actor(id=str(actor_id), permissions=[str(p) for p in permissions])
