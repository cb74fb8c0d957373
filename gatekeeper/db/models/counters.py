"""Dashboard counter model: one row of derived status counts per kind."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer

from gatekeeper.db.base import Base


class StatusCounters(Base):
    """
    Cached pending/approved/rejected counts for one submission kind.

    Updated by atomic arithmetic in each transition's transaction and
    overwritten by the reconciliation pass.
    """
    __tablename__ = "status_counters"

    kind = Column(String(50), primary_key=True)
    pending_count = Column(Integer, nullable=False, default=0)
    approved_count = Column(Integer, nullable=False, default=0)
    rejected_count = Column(Integer, nullable=False, default=0)

    reconciled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<StatusCounters {self.kind} p={self.pending_count} "
            f"a={self.approved_count} r={self.rejected_count}>"
        )
