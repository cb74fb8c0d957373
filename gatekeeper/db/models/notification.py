"""Notification event models.

The persisted event is the authoritative record of a decision notice;
live push status is bookkeeping on top of it.
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, DateTime, JSON, ForeignKey, Text, Integer, Uuid, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from gatekeeper.db.base import Base


class NotificationEventType(str, Enum):
    """Events that produce a submitter notification."""
    SUBJECT_APPROVED = "subject_approved"
    SUBJECT_REJECTED = "subject_rejected"


class PushStatus(str, Enum):
    """Outcome of the best-effort live push."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # recipient not reachable


class NotificationEvent(Base):
    """
    A decision notice addressed to the submission owner.

    ``sequence_no`` increases per recipient in commit order.
    """
    __tablename__ = "notification_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(String(128), nullable=False, index=True)
    subject_id = Column(
        Uuid(as_uuid=True), ForeignKey("approval_subjects.id"), nullable=False, index=True
    )
    transition_id = Column(
        Uuid(as_uuid=True), ForeignKey("transition_records.id"), nullable=True
    )
    sequence_no = Column(Integer, nullable=False)

    event_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    read_at = Column(DateTime, nullable=True)

    # Live push bookkeeping
    push_status = Column(String(20), nullable=False, default=PushStatus.PENDING.value)
    push_attempts = Column(Integer, nullable=False, default=0)
    pushed_at = Column(DateTime, nullable=True)
    push_error = Column(Text, nullable=True)

    subject = relationship("ApprovalSubject")

    __table_args__ = (
        UniqueConstraint("recipient_id", "sequence_no", name="uq_notification_recipient_sequence"),
        Index("ix_notification_events_recipient_read", "recipient_id", "read_at"),
    )

    def __repr__(self) -> str:
        return f"<NotificationEvent #{self.sequence_no} to {self.recipient_id}>"


class NotificationSequence(Base):
    """Last issued sequence number per recipient."""
    __tablename__ = "notification_sequences"

    recipient_id = Column(String(128), primary_key=True)
    last_sequence_no = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<NotificationSequence {self.recipient_id}={self.last_sequence_no}>"
