"""Approval subject model.

One row per submission under moderation, whatever its kind. The payload
itself lives with the owning subsystem; ``payload_ref`` points at it.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text, Uuid, Index, CheckConstraint, text
from sqlalchemy.orm import relationship

from gatekeeper.db.base import Base


class ApprovalSubject(Base):
    """
    A submission awaiting, or carrying, an administrator decision.

    Status moves once, from pending to approved or rejected. Rejected
    subjects are kept; a resubmission is a new row pointing back through
    ``previous_subject_id``.
    """
    __tablename__ = "approval_subjects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Submitter and payload
    owner_id = Column(String(128), nullable=False, index=True)
    payload_ref = Column(String(512), nullable=False)
    submitted_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Decision
    decided_by = Column(String(128), nullable=True)
    decided_at = Column(DateTime, nullable=True)
    decision_reason = Column(Text, nullable=True)

    # Resubmission chain
    previous_subject_id = Column(
        Uuid(as_uuid=True), ForeignKey("approval_subjects.id", ondelete="SET NULL"), nullable=True
    )

    extra_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    previous_subject = relationship("ApprovalSubject", remote_side=[id])
    transitions = relationship(
        "TransitionRecord", back_populates="subject", order_by="TransitionRecord.committed_at"
    )

    __table_args__ = (
        Index("ix_approval_subjects_kind_status", "kind", "status"),
        Index("ix_approval_subjects_kind_payload", "kind", "payload_ref"),
        # At most one pending subject per payload
        Index(
            "uq_approval_subjects_pending_payload",
            "kind",
            "payload_ref",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_approval_subjects_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<ApprovalSubject {self.kind}:{self.id} [{self.status}]>"
