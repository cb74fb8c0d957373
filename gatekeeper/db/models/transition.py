"""Transition record model: the moderation audit trail.

This table is APPEND-ONLY. Persisted records cannot be modified or
deleted through the ORM (see ``_guard_transition_records``); on Postgres
the migration adds triggers that enforce the same at the database.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text, Uuid, event
from sqlalchemy.orm import relationship, Session

from gatekeeper.db.base import Base


class ImmutableRecordError(Exception):
    """Raised on an attempt to change or remove a transition record."""


class TransitionRecord(Base):
    """
    One committed status change of an approval subject.

    Exactly one record exists per successful transition.
    """
    __tablename__ = "transition_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subject_id = Column(
        Uuid(as_uuid=True), ForeignKey("approval_subjects.id"), nullable=False, index=True
    )

    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)

    # Required for rejections when the reason policy is on
    reason = Column(Text, nullable=True)

    actor_id = Column(String(128), nullable=False, index=True)
    committed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    extra_data = Column(JSON, nullable=False, default=dict)

    subject = relationship("ApprovalSubject", back_populates="transitions")

    def __repr__(self) -> str:
        return f"<TransitionRecord {self.from_status} -> {self.to_status}>"


@event.listens_for(Session, "before_flush")
def _guard_transition_records(session, flush_context, instances):
    for obj in session.deleted:
        if isinstance(obj, TransitionRecord):
            raise ImmutableRecordError(f"Transition record {obj.id} cannot be deleted")
    for obj in session.dirty:
        if isinstance(obj, TransitionRecord) and session.is_modified(obj, include_collections=False):
            raise ImmutableRecordError(f"Transition record {obj.id} cannot be modified")
