"""Bulk decisions: one independent engine call per subject id."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID

from .engine import TransitionEngine
from .errors import ErrorKind, TransitionOutcome
from .states import SubjectKind, SubjectStatus

logger = logging.getLogger(__name__)


@dataclass
class BulkItemFailure:
    subject_id: UUID
    error_kind: ErrorKind
    message: str


@dataclass
class BulkResult:
    """
    Per-item report of a bulk decision.

    Every distinct requested id appears in exactly one of ``succeeded`` or
    ``failed``.
    """
    operation_id: UUID
    desired_status: str
    requested_ids: List[UUID]
    succeeded: List[UUID] = field(default_factory=list)
    failed: List[BulkItemFailure] = field(default_factory=list)
    outcomes: Dict[UUID, TransitionOutcome] = field(default_factory=dict)

    @property
    def notifications(self) -> list:
        """Notifications persisted by the committed items, in commit order."""
        return [
            self.outcomes[subject_id].notification
            for subject_id in self.succeeded
            if self.outcomes[subject_id].notification is not None
        ]


class BulkOperationCoordinator:
    """
    Fans a multi-id decision out to the TransitionEngine.

    Each id commits or fails on its own; a failure never rolls back
    another id. Retrying the same request only touches ids still pending.
    """

    def __init__(self, engine: TransitionEngine):
        self.engine = engine

    def execute_bulk(
        self,
        subject_ids: Iterable[UUID],
        desired_status: Union[SubjectStatus, str],
        reason: Optional[str],
        actor_id: str,
        *,
        kind: Optional[Union[SubjectKind, str]] = None,
    ) -> BulkResult:
        # Set semantics, first-seen order
        requested = list(dict.fromkeys(subject_ids))
        desired_value = desired_status.value if isinstance(desired_status, SubjectStatus) else str(desired_status)

        result = BulkResult(
            operation_id=uuid.uuid4(),
            desired_status=desired_value,
            requested_ids=requested,
        )

        for subject_id in requested:
            try:
                outcome = self.engine.apply_transition(
                    subject_id, desired_status, reason, actor_id, kind=kind
                )
            except Exception as e:
                # Isolate anything the engine did not classify to this id
                logger.exception(f"Bulk operation {result.operation_id}: item {subject_id} failed")
                self.engine.db.rollback()
                result.failed.append(
                    BulkItemFailure(subject_id, ErrorKind.INFRASTRUCTURE_ERROR, str(e))
                )
                continue

            result.outcomes[subject_id] = outcome
            if outcome.committed:
                result.succeeded.append(subject_id)
            else:
                result.failed.append(self._classify(outcome, desired_value))

        logger.info(
            f"Bulk operation {result.operation_id} ({desired_value}) by {actor_id}: "
            f"{len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    @staticmethod
    def _classify(outcome: TransitionOutcome, desired_value: str) -> BulkItemFailure:
        """
        A replay of the same decision stays ``already_finalized``; a subject
        that already carries the opposite decision is an invalid transition.
        """
        if (
            outcome.is_already_finalized
            and outcome.current_status is not None
            and outcome.current_status.value != desired_value
        ):
            return BulkItemFailure(
                outcome.subject_id,
                ErrorKind.INVALID_STATE_TRANSITION,
                f"Subject {outcome.subject_id} is already {outcome.current_status.value}; "
                f"cannot move it to {desired_value}",
            )
        return BulkItemFailure(outcome.subject_id, outcome.error_kind, outcome.message or "")
