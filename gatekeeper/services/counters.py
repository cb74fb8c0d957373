"""Status aggregator for dashboard counters.

Keeps one StatusCounters row per submission kind. Deltas are applied as
single UPDATE statements inside the caller's transaction, so a counter
change commits or rolls back together with the transition it mirrors.
The reconciliation pass recomputes everything from ``approval_subjects``
and overwrites drift left by crashes or manual edits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gatekeeper.core.approval.states import SubjectKind, SubjectStatus
from gatekeeper.db.models import ApprovalSubject, StatusCounters

logger = logging.getLogger(__name__)


COUNT_COLUMNS = {
    SubjectStatus.PENDING: StatusCounters.pending_count,
    SubjectStatus.APPROVED: StatusCounters.approved_count,
    SubjectStatus.REJECTED: StatusCounters.rejected_count,
}


@dataclass
class ReconciliationReport:
    """What a reconciliation pass found and wrote."""
    reconciled_at: datetime
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    drifted: Dict[str, Dict[str, int]] = field(default_factory=dict)  # kind -> previous counts

    @property
    def had_drift(self) -> bool:
        return bool(self.drifted)


def _as_dict(row: StatusCounters) -> Dict[str, int]:
    return {
        SubjectStatus.PENDING.value: row.pending_count,
        SubjectStatus.APPROVED.value: row.approved_count,
        SubjectStatus.REJECTED.value: row.rejected_count,
    }


class StatusAggregator:
    """Maintains per-kind status counters."""

    def __init__(self, db: Session):
        self.db = db

    def record_submission(self, kind: SubjectKind) -> None:
        """Count a newly created pending subject."""
        self._apply_delta(kind, {SubjectStatus.PENDING: 1})

    def apply_transition(
        self,
        kind: SubjectKind,
        from_status: SubjectStatus,
        to_status: SubjectStatus,
    ) -> None:
        """Move one unit from ``from_status`` to ``to_status`` for a kind."""
        self._apply_delta(kind, {from_status: -1, to_status: 1})

    def get_counters(self) -> List[StatusCounters]:
        """Current counters, one per kind; kinds without a row read as zero."""
        rows = self.db.execute(
            select(StatusCounters).execution_options(populate_existing=True)
        ).scalars().all()
        by_kind = {row.kind: row for row in rows}

        result = []
        for kind in SubjectKind:
            row = by_kind.pop(kind.value, None)
            if row is None:
                row = StatusCounters(
                    kind=kind.value, pending_count=0, approved_count=0, rejected_count=0,
                )
            result.append(row)
        # Rows for kinds no longer defined are still reported
        result.extend(by_kind.values())
        return result

    def reconcile(self, *, commit: bool = True) -> ReconciliationReport:
        """
        Recompute every kind's counters from the subject store.

        Counter rows are locked first so transitions committing during the
        pass either land before the recount or apply their delta after the
        overwrite.
        """
        existing = {
            row.kind: row
            for row in self.db.execute(
                select(StatusCounters)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().all()
        }

        fresh = {kind.value: {s.value: 0 for s in SubjectStatus} for kind in SubjectKind}
        grouped = self.db.execute(
            select(ApprovalSubject.kind, ApprovalSubject.status, func.count(ApprovalSubject.id))
            .group_by(ApprovalSubject.kind, ApprovalSubject.status)
        ).all()
        for kind, status, count in grouped:
            fresh.setdefault(kind, {s.value: 0 for s in SubjectStatus})[status] = count
        for kind in existing:
            fresh.setdefault(kind, {s.value: 0 for s in SubjectStatus})

        now = datetime.utcnow()
        report = ReconciliationReport(reconciled_at=now)

        for kind, counts in fresh.items():
            row = existing.get(kind)
            if row is None:
                row = StatusCounters(kind=kind)
                self.db.add(row)
                previous = None
            else:
                previous = _as_dict(row)

            if previous is not None and previous != counts:
                report.drifted[kind] = previous
                logger.warning(
                    "Counter drift for %s corrected: %s -> %s", kind, previous, counts
                )

            row.pending_count = counts[SubjectStatus.PENDING.value]
            row.approved_count = counts[SubjectStatus.APPROVED.value]
            row.rejected_count = counts[SubjectStatus.REJECTED.value]
            row.reconciled_at = now
            report.counts[kind] = dict(counts)

        self.db.flush()
        if commit:
            self.db.commit()

        logger.info(
            "Reconciled counters for %d kinds (%d drifted)", len(report.counts), len(report.drifted)
        )
        return report

    def _apply_delta(self, kind: SubjectKind, delta: Dict[SubjectStatus, int]) -> None:
        kind_value = SubjectKind(kind).value
        values = {COUNT_COLUMNS[status]: COUNT_COLUMNS[status] + step for status, step in delta.items()}
        values[StatusCounters.updated_at] = datetime.utcnow()

        result = self.db.execute(
            update(StatusCounters)
            .where(StatusCounters.kind == kind_value)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return

        # No row yet: build it from the store, which already reflects this change
        try:
            with self.db.begin_nested():
                self.db.add(self._fresh_row(kind_value))
                self.db.flush()
        except IntegrityError:
            # A concurrent transaction created the row first
            self.db.execute(
                update(StatusCounters)
                .where(StatusCounters.kind == kind_value)
                .values(values)
                .execution_options(synchronize_session=False)
            )

    def _fresh_row(self, kind_value: str) -> StatusCounters:
        counts = dict(
            self.db.execute(
                select(ApprovalSubject.status, func.count(ApprovalSubject.id))
                .where(ApprovalSubject.kind == kind_value)
                .group_by(ApprovalSubject.status)
            ).all()
        )
        logger.info("Creating counters row for %s", kind_value)
        return StatusCounters(
            kind=kind_value,
            pending_count=counts.get(SubjectStatus.PENDING.value, 0),
            approved_count=counts.get(SubjectStatus.APPROVED.value, 0),
            rejected_count=counts.get(SubjectStatus.REJECTED.value, 0),
        )
