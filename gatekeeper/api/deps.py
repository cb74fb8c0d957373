from typing import Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from gatekeeper.db.session import SessionLocal
from gatekeeper.core.security import Actor, decode_token
from gatekeeper.core.rbac import AccessGate
from gatekeeper.services.notifications import NotificationDispatcher
from gatekeeper.services.counters import StatusAggregator
from gatekeeper.core.approval.engine import TransitionEngine

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """Get the current actor from the bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    actor = decode_token(token)
    if actor is None:
        raise credentials_exception
    return actor


def get_access_gate(current_actor: Actor = Depends(get_current_actor)) -> AccessGate:
    """Access gate for the current request's actor."""
    return current_actor.gate()


def get_transition_engine(
    db: Session = Depends(get_db),
    gate: AccessGate = Depends(get_access_gate),
) -> TransitionEngine:
    # Push happens after commit, from a background task with its own session
    dispatcher = NotificationDispatcher(db)
    return TransitionEngine(db, gate, dispatcher=dispatcher, aggregator=StatusAggregator(db))


def get_session_factory():
    """Session factory used by post-response background work."""
    return SessionLocal
