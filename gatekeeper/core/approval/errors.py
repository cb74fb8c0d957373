"""Error kinds and outcome types for moderation decisions."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from .states import SubjectStatus


class ErrorKind(str, Enum):
    """Why a decision did not commit."""

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    ALREADY_FINALIZED = "already_finalized"
    VALIDATION_ERROR = "validation_error"
    INFRASTRUCTURE_ERROR = "infrastructure_error"


class ApprovalError(Exception):
    """Base class for decision failures."""

    kind: ErrorKind = ErrorKind.INFRASTRUCTURE_ERROR

    def __init__(self, message: str, subject_id: Optional[UUID] = None):
        super().__init__(message)
        self.message = message
        self.subject_id = subject_id


class UnauthorizedError(ApprovalError):
    """Raised when the actor lacks the capability for a decision."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, actor_id: str, required_permission: str, subject_id: Optional[UUID] = None):
        super().__init__(f"Permission denied: requires {required_permission}", subject_id)
        self.actor_id = actor_id
        self.required_permission = required_permission


class SubjectNotFoundError(ApprovalError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, subject_id: UUID):
        super().__init__(f"Subject {subject_id} not found", subject_id)


class TransitionError(ApprovalError):
    """Raised when the requested edge does not exist."""

    kind = ErrorKind.INVALID_STATE_TRANSITION

    def __init__(
        self,
        message: str,
        subject_id: Optional[UUID] = None,
        current_status: Optional[SubjectStatus] = None,
        desired_status: Optional[str] = None,
    ):
        super().__init__(message, subject_id)
        self.current_status = current_status
        self.desired_status = desired_status


class AlreadyFinalizedError(ApprovalError):
    """The subject already carries a decision; replays land here."""

    kind = ErrorKind.ALREADY_FINALIZED

    def __init__(self, subject_id: UUID, current_status: SubjectStatus):
        super().__init__(f"Subject {subject_id} is already {current_status.value}", subject_id)
        self.current_status = current_status


class ValidationError(ApprovalError):
    kind = ErrorKind.VALIDATION_ERROR


class InfrastructureError(ApprovalError):
    kind = ErrorKind.INFRASTRUCTURE_ERROR


class DuplicateSubmissionError(Exception):
    """A pending subject already exists for the same kind and payload."""

    def __init__(self, existing_id: UUID):
        super().__init__(f"A pending submission already exists: {existing_id}")
        self.existing_id = existing_id


@dataclass
class TransitionOutcome:
    """
    Result of one ``apply_transition`` call.

    ``committed`` is True only when this call moved the subject out of
    ``pending``. ``already_finalized`` outcomes carry the subject's current
    status so callers can tell a replay from a conflicting decision.
    """

    subject_id: UUID
    committed: bool
    subject: Optional[Any] = None
    record: Optional[Any] = None
    notification: Optional[Any] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    current_status: Optional[SubjectStatus] = None

    @property
    def is_already_finalized(self) -> bool:
        return self.error_kind == ErrorKind.ALREADY_FINALIZED

    @classmethod
    def failure(cls, subject_id: UUID, error: ApprovalError) -> "TransitionOutcome":
        return cls(
            subject_id=subject_id,
            committed=False,
            error_kind=error.kind,
            message=error.message,
            current_status=getattr(error, "current_status", None),
        )
