"""Database models for Gatekeeper."""

from gatekeeper.db.models.subject import ApprovalSubject
from gatekeeper.db.models.transition import TransitionRecord, ImmutableRecordError
from gatekeeper.db.models.notification import (
    NotificationEvent,
    NotificationSequence,
    NotificationEventType,
    PushStatus,
)
from gatekeeper.db.models.counters import StatusCounters

__all__ = [
    "ApprovalSubject",
    "TransitionRecord",
    "ImmutableRecordError",
    "NotificationEvent",
    "NotificationSequence",
    "NotificationEventType",
    "PushStatus",
    "StatusCounters",
]
