"""Transition engine: commits a single moderation decision.

The only concurrency control is the conditional update guarded by
``status = 'pending'``. Two racing decisions on one subject both issue
that update; the database lets exactly one of them match the row.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.rbac.gate import AccessGate
from gatekeeper.db.models import ApprovalSubject, TransitionRecord
from gatekeeper.services.counters import StatusAggregator
from gatekeeper.services.notifications import NotificationDispatcher

from .errors import (
    ApprovalError,
    AlreadyFinalizedError,
    ErrorKind,
    InfrastructureError,
    SubjectNotFoundError,
    TransitionError,
    TransitionOutcome,
    UnauthorizedError,
    ValidationError,
)
from .states import (
    INITIAL_STATUS,
    SubjectKind,
    SubjectStatus,
    TransitionRule,
    get_transition_rule,
)

logger = logging.getLogger(__name__)


class TransitionEngine:
    """
    Validates and commits one status change plus its audit record.

    Each successful call commits, in one transaction:
    - the subject's new status and decision fields
    - one TransitionRecord
    - the StatusCounters delta for the subject's kind
    - the submitter's NotificationEvent

    Expected failures come back as a ``TransitionOutcome``; nothing is
    raised to the caller for them.
    """

    def __init__(
        self,
        db: Session,
        gate: AccessGate,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        aggregator: Optional[StatusAggregator] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.gate = gate
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher or NotificationDispatcher(db, settings=self.settings)
        self.aggregator = aggregator or StatusAggregator(db)

    def apply_transition(
        self,
        subject_id: UUID,
        desired_status: Union[SubjectStatus, str],
        reason: Optional[str],
        actor_id: str,
        *,
        kind: Optional[Union[SubjectKind, str]] = None,
    ) -> TransitionOutcome:
        """
        Move a pending subject to ``desired_status``.

        Args:
            subject_id: Subject to decide
            desired_status: ``approved`` or ``rejected``
            reason: Decision reason; required for rejections under the reason policy
            actor_id: Administrator making the decision
            kind: When given, the subject must be of this kind

        Returns:
            Outcome with the updated subject, record and notification on success
        """
        try:
            outcome = self._apply(subject_id, desired_status, reason, actor_id, kind)
        except ApprovalError as e:
            self.db.rollback()
            log = logger.warning if e.kind == ErrorKind.INFRASTRUCTURE_ERROR else logger.info
            log(f"Decision on {subject_id} by {actor_id} not applied: {e.kind.value}: {e.message}")
            return TransitionOutcome.failure(subject_id, e)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Database failure deciding subject {subject_id}")
            return TransitionOutcome.failure(
                subject_id, InfrastructureError(f"Database error: {e.__class__.__name__}", subject_id)
            )

        logger.info(
            f"Subject {subject_id} {outcome.record.from_status} -> {outcome.record.to_status} "
            f"by {actor_id}"
        )
        return outcome

    def _apply(
        self,
        subject_id: UUID,
        desired_status: Union[SubjectStatus, str],
        reason: Optional[str],
        actor_id: str,
        kind: Optional[Union[SubjectKind, str]],
    ) -> TransitionOutcome:
        to_status = self._parse_status(subject_id, desired_status)
        rule = get_transition_rule(INITIAL_STATUS, to_status)
        if rule is None:
            raise TransitionError(
                f"No transition from {INITIAL_STATUS.value} to {to_status.value}",
                subject_id,
                desired_status=to_status.value,
            )

        if not self.gate.is_authorized(actor_id, rule.requires_permission):
            raise UnauthorizedError(actor_id, rule.requires_permission, subject_id)

        reason = self._check_reason(subject_id, rule, reason)
        kind_value = self._parse_kind(subject_id, kind)

        now = datetime.utcnow()
        guard = [
            ApprovalSubject.id == subject_id,
            ApprovalSubject.status == INITIAL_STATUS.value,
        ]
        if kind_value is not None:
            guard.append(ApprovalSubject.kind == kind_value)

        result = self.db.execute(
            update(ApprovalSubject)
            .where(*guard)
            .values(
                status=to_status.value,
                decided_by=actor_id,
                decided_at=now,
                decision_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise self._guard_failure(subject_id, kind_value)

        subject = self.db.execute(
            select(ApprovalSubject)
            .where(ApprovalSubject.id == subject_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

        record = TransitionRecord(
            id=uuid.uuid4(),
            subject_id=subject.id,
            from_status=INITIAL_STATUS.value,
            to_status=to_status.value,
            reason=reason,
            actor_id=actor_id,
            committed_at=now,
            extra_data={"kind": subject.kind},
        )
        self.db.add(record)
        self.db.flush()

        self.aggregator.apply_transition(SubjectKind(subject.kind), INITIAL_STATUS, to_status)
        notification = self.dispatcher.record(subject, record)

        self.db.commit()

        return TransitionOutcome(
            subject_id=subject.id,
            committed=True,
            subject=subject,
            record=record,
            notification=notification,
            current_status=to_status,
        )

    def _guard_failure(self, subject_id: UUID, kind_value: Optional[str]) -> ApprovalError:
        """Explain why the pending guard matched no row."""
        row = self.db.execute(
            select(ApprovalSubject.status, ApprovalSubject.kind).where(ApprovalSubject.id == subject_id)
        ).first()
        if row is None or (kind_value is not None and row.kind != kind_value):
            return SubjectNotFoundError(subject_id)

        current = SubjectStatus(row.status)
        if current == INITIAL_STATUS:
            # Only reachable if the row changed back underneath us, which no edge allows
            return TransitionError(
                f"Subject {subject_id} could not be updated from {current.value}",
                subject_id,
                current_status=current,
            )
        return AlreadyFinalizedError(subject_id, current)

    def _check_reason(self, subject_id: UUID, rule: TransitionRule, reason: Optional[str]) -> Optional[str]:
        normalized = reason.strip() if reason else None
        if rule.requires_reason and self.settings.require_rejection_reason and not normalized:
            raise ValidationError(
                f"A reason is required to move a subject to {rule.to_status.value}", subject_id
            )
        return normalized or None

    @staticmethod
    def _parse_status(subject_id: UUID, desired_status: Union[SubjectStatus, str]) -> SubjectStatus:
        try:
            return SubjectStatus(desired_status)
        except ValueError:
            raise TransitionError(
                f"Unknown status: {desired_status}",
                subject_id,
                desired_status=str(desired_status),
            )

    @staticmethod
    def _parse_kind(subject_id: UUID, kind: Optional[Union[SubjectKind, str]]) -> Optional[str]:
        if kind is None:
            return None
        try:
            return SubjectKind(kind).value
        except ValueError:
            raise ValidationError(f"Unknown subject kind: {kind}", subject_id)
