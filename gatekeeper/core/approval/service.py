"""Submission service for the moderation workflow.

Creates subjects, handles resubmission after a rejection and answers the
read-side queries used by the admin panel and by submitters. Decisions
themselves go through the TransitionEngine.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple, Union
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gatekeeper.db.models import ApprovalSubject, TransitionRecord
from gatekeeper.services.counters import StatusAggregator

from .errors import (
    DuplicateSubmissionError,
    SubjectNotFoundError,
    TransitionError,
    UnauthorizedError,
    ValidationError,
)
from .states import INITIAL_STATUS, SubjectKind, SubjectStatus

logger = logging.getLogger(__name__)


class SubmissionService:
    """
    Intake and queries for approval subjects.

    Handles:
    - Creating pending subjects and counting them
    - Resubmitting a rejected subject as a new linked subject
    - Listing, lookup and history
    - Store-wide statistics
    """

    def __init__(self, db: Session, aggregator: Optional[StatusAggregator] = None):
        self.db = db
        self.aggregator = aggregator or StatusAggregator(db)

    def submit(
        self,
        kind: Union[SubjectKind, str],
        owner_id: str,
        payload_ref: str,
        *,
        extra_data: Optional[Dict[str, Any]] = None,
        previous_subject_id: Optional[UUID] = None,
    ) -> ApprovalSubject:
        """
        Create a pending subject.

        Raises:
            ValidationError: Unknown kind or empty payload reference
            DuplicateSubmissionError: A pending subject already exists for
                the same kind and payload
        """
        try:
            kind = SubjectKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown subject kind: {kind}")
        if not payload_ref or not payload_ref.strip():
            raise ValidationError("payload_ref must not be empty")
        payload_ref = payload_ref.strip()

        existing = self._find_pending(kind, payload_ref)
        if existing:
            raise DuplicateSubmissionError(existing.id)

        now = datetime.utcnow()
        subject = ApprovalSubject(
            id=uuid.uuid4(),
            kind=kind.value,
            status=INITIAL_STATUS.value,
            owner_id=owner_id,
            payload_ref=payload_ref,
            submitted_at=now,
            previous_subject_id=previous_subject_id,
            extra_data=extra_data or {},
            created_at=now,
            updated_at=now,
        )
        self.db.add(subject)
        # The counter row may be rebuilt from the store, so the subject goes first
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent submit won the pending slot after our check
            self.db.rollback()
            existing = self._find_pending(kind, payload_ref)
            if existing is None:
                raise
            raise DuplicateSubmissionError(existing.id)
        self.aggregator.record_submission(kind)
        self.db.commit()

        logger.info(f"Subject {subject.id} ({kind.value}) submitted by {owner_id}")
        return subject

    def resubmit(
        self,
        previous_id: UUID,
        owner_id: str,
        payload_ref: Optional[str] = None,
        *,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> ApprovalSubject:
        """
        Submit a corrected version of a rejected subject.

        The rejected subject and its history stay as they are; the new
        subject points back at it.
        """
        previous = self.db.query(ApprovalSubject).filter(ApprovalSubject.id == previous_id).first()
        if previous is None:
            raise SubjectNotFoundError(previous_id)
        if previous.owner_id != owner_id:
            raise UnauthorizedError(owner_id, "owner", previous_id)
        if previous.status != SubjectStatus.REJECTED.value:
            raise TransitionError(
                f"Only rejected subjects can be resubmitted; {previous_id} is {previous.status}",
                previous_id,
                current_status=SubjectStatus(previous.status),
            )

        merged = dict(previous.extra_data or {})
        merged.update(extra_data or {})
        return self.submit(
            previous.kind,
            owner_id,
            payload_ref or previous.payload_ref,
            extra_data=merged,
            previous_subject_id=previous.id,
        )

    def _find_pending(self, kind: SubjectKind, payload_ref: str):
        return self.db.query(ApprovalSubject.id).filter(
            and_(
                ApprovalSubject.kind == kind.value,
                ApprovalSubject.payload_ref == payload_ref,
                ApprovalSubject.status == INITIAL_STATUS.value,
            )
        ).first()

    def get_subject(self, subject_id: UUID) -> Optional[ApprovalSubject]:
        return self.db.query(ApprovalSubject).filter(ApprovalSubject.id == subject_id).first()

    def list_subjects(
        self,
        *,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[ApprovalSubject], int]:
        """Subjects for the review queue, oldest submission first."""
        query = self.db.query(ApprovalSubject)
        if kind:
            query = query.filter(ApprovalSubject.kind == kind)
        if status:
            query = query.filter(ApprovalSubject.status == status)

        total = query.count()
        items = query.order_by(ApprovalSubject.submitted_at.asc()).offset(offset).limit(limit).all()
        return items, total

    def list_for_owner(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[ApprovalSubject], int]:
        """A submitter's own subjects, newest first."""
        query = self.db.query(ApprovalSubject).filter(ApprovalSubject.owner_id == owner_id)
        total = query.count()
        items = query.order_by(ApprovalSubject.submitted_at.desc()).offset(offset).limit(limit).all()
        return items, total

    def get_history(self, subject_id: UUID) -> List[TransitionRecord]:
        """Transition records for a subject in commit order."""
        return self.db.query(TransitionRecord).filter(
            TransitionRecord.subject_id == subject_id
        ).order_by(TransitionRecord.committed_at.asc()).all()

    def stats_overview(self) -> Dict[str, Any]:
        """
        Counts computed directly from the subject store.

        Unlike the dashboard counters these are never stale, but each call
        scans the table.
        """
        rows = self.db.query(
            ApprovalSubject.kind, ApprovalSubject.status, func.count(ApprovalSubject.id)
        ).group_by(ApprovalSubject.kind, ApprovalSubject.status).all()

        by_status = {s.value: 0 for s in SubjectStatus}
        by_kind: Dict[str, Dict[str, int]] = {
            k.value: {s.value: 0 for s in SubjectStatus} for k in SubjectKind
        }
        total = 0
        for kind, status, count in rows:
            by_status[status] = by_status.get(status, 0) + count
            by_kind.setdefault(kind, {s.value: 0 for s in SubjectStatus})[status] = count
            total += count

        oldest_pending = self.db.query(func.min(ApprovalSubject.submitted_at)).filter(
            ApprovalSubject.status == INITIAL_STATUS.value
        ).scalar()

        return {
            "total": total,
            "by_status": by_status,
            "by_kind": by_kind,
            "oldest_pending_at": oldest_pending.isoformat() if oldest_pending else None,
        }
