"""Submission and moderation decision API endpoints."""

from typing import List, Optional
from uuid import UUID
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gatekeeper.api.deps import (
    get_db,
    get_current_actor,
    get_session_factory,
    get_transition_engine,
)
from gatekeeper.api.schemas.common import PaginatedResponse, ErrorResponse
from gatekeeper.core.config import get_settings
from gatekeeper.core.security import Actor
from gatekeeper.core.rbac import PermissionChecker, require_permission
from gatekeeper.core.approval import (
    ApprovalError,
    DuplicateSubmissionError,
    ErrorKind,
    SubjectKind,
    SubjectStatus,
    TransitionOutcome,
    status_label,
)
from gatekeeper.core.approval.engine import TransitionEngine
from gatekeeper.core.approval.bulk import BulkOperationCoordinator
from gatekeeper.core.approval.service import SubmissionService
from gatekeeper.db.models import ApprovalSubject
from gatekeeper.services.notifications import deliver_notifications

router = APIRouter(prefix="/subjects", tags=["subjects"])

ERROR_STATUS_CODES = {
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INFRASTRUCTURE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# Schemas
class SubjectCreate(BaseModel):
    kind: SubjectKind
    payload_ref: str = Field(..., min_length=1, max_length=512)
    extra_data: Optional[dict] = None


class ResubmitRequest(BaseModel):
    payload_ref: Optional[str] = Field(default=None, min_length=1, max_length=512)
    extra_data: Optional[dict] = None


class SubjectResponse(BaseModel):
    id: UUID
    kind: str
    status: str
    status_label: str
    owner_id: str
    payload_ref: str
    submitted_at: datetime
    decided_by: Optional[str]
    decided_at: Optional[datetime]
    decision_reason: Optional[str]
    previous_subject_id: Optional[UUID]
    extra_data: Optional[dict]

    @classmethod
    def from_subject(cls, subject: ApprovalSubject) -> "SubjectResponse":
        return cls(
            id=subject.id,
            kind=subject.kind,
            status=subject.status,
            status_label=status_label(SubjectKind(subject.kind), SubjectStatus(subject.status)),
            owner_id=subject.owner_id,
            payload_ref=subject.payload_ref,
            submitted_at=subject.submitted_at,
            decided_by=subject.decided_by,
            decided_at=subject.decided_at,
            decision_reason=subject.decision_reason,
            previous_subject_id=subject.previous_subject_id,
            extra_data=subject.extra_data,
        )


class TransitionResponse(BaseModel):
    id: UUID
    subject_id: UUID
    from_status: str
    to_status: str
    reason: Optional[str]
    actor_id: str
    committed_at: datetime

    class Config:
        from_attributes = True


class DecisionRequest(BaseModel):
    status: SubjectStatus
    reason: Optional[str] = Field(default=None, max_length=2000)
    kind: Optional[SubjectKind] = None


class DecisionResponse(BaseModel):
    outcome: str  # "committed" or "already_finalized"
    subject: SubjectResponse
    transition: Optional[TransitionResponse] = None


class BulkDecisionRequest(BaseModel):
    subject_ids: List[UUID] = Field(..., min_length=1)
    status: SubjectStatus
    reason: Optional[str] = Field(default=None, max_length=2000)
    kind: Optional[SubjectKind] = None


class BulkFailureResponse(BaseModel):
    id: UUID
    error_kind: str
    message: str


class BulkDecisionResponse(BaseModel):
    operation_id: UUID
    succeeded: List[UUID]
    failed: List[BulkFailureResponse]


def _error_response(error_kind: ErrorKind, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(error_kind=error_kind.value, message=message, **extra)
    return JSONResponse(status_code=ERROR_STATUS_CODES[error_kind], content=body.model_dump())


def _raise_for(error: ApprovalError):
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(error.kind, status.HTTP_400_BAD_REQUEST),
        detail=error.message,
    )


def _can_view(actor: Actor, subject: ApprovalSubject) -> bool:
    return subject.owner_id == actor.id or PermissionChecker(actor.permissions).has_permission("subjects:read")


# Endpoints
@router.post("", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
@require_permission("subjects:create")
async def submit_subject(
    body: SubjectCreate,
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Submit something for moderation; the caller becomes its owner."""
    service = SubmissionService(db)
    try:
        subject = service.submit(
            body.kind, current_actor.id, body.payload_ref, extra_data=body.extra_data
        )
    except DuplicateSubmissionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ApprovalError as e:
        _raise_for(e)
    return SubjectResponse.from_subject(subject)


@router.get("", response_model=PaginatedResponse[SubjectResponse])
@require_permission("subjects:list")
async def list_subjects(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    kind: Optional[SubjectKind] = None,
    subject_status: Optional[SubjectStatus] = Query(None, alias="status"),
):
    """Review queue, oldest submission first."""
    items, total = SubmissionService(db).list_subjects(
        kind=kind.value if kind else None,
        status=subject_status.value if subject_status else None,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return PaginatedResponse.create(
        [SubjectResponse.from_subject(s) for s in items], total, page, per_page
    )


@router.get("/mine", response_model=PaginatedResponse[SubjectResponse])
async def list_my_subjects(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """The caller's own submissions, newest first."""
    items, total = SubmissionService(db).list_for_owner(
        current_actor.id, limit=per_page, offset=(page - 1) * per_page
    )
    return PaginatedResponse.create(
        [SubjectResponse.from_subject(s) for s in items], total, page, per_page
    )


@router.post("/bulk-decision", response_model=BulkDecisionResponse)
async def bulk_decision(
    body: BulkDecisionRequest,
    background_tasks: BackgroundTasks,
    engine: TransitionEngine = Depends(get_transition_engine),
    session_factory=Depends(get_session_factory),
    current_actor: Actor = Depends(get_current_actor),
):
    """
    Apply one decision to many subjects.

    Each id succeeds or fails on its own; the response lists every
    distinct id exactly once.
    """
    settings = get_settings()
    if len(set(body.subject_ids)) > settings.bulk_max_items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.bulk_max_items} subjects per request",
        )

    result = BulkOperationCoordinator(engine).execute_bulk(
        body.subject_ids, body.status, body.reason, current_actor.id, kind=body.kind
    )

    event_ids = [event.id for event in result.notifications]
    if event_ids:
        background_tasks.add_task(deliver_notifications, event_ids, session_factory=session_factory)

    return BulkDecisionResponse(
        operation_id=result.operation_id,
        succeeded=result.succeeded,
        failed=[
            BulkFailureResponse(id=f.subject_id, error_kind=f.error_kind.value, message=f.message)
            for f in result.failed
        ],
    )


@router.get("/{subject_id}", response_model=SubjectResponse)
async def get_subject(
    subject_id: UUID,
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Get a subject. Owners and reviewers only."""
    subject = SubmissionService(db).get_subject(subject_id)
    if not subject or not _can_view(current_actor, subject):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subject not found")
    return SubjectResponse.from_subject(subject)


@router.get("/{subject_id}/history", response_model=List[TransitionResponse])
async def get_subject_history(
    subject_id: UUID,
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Transition records for a subject, oldest first."""
    service = SubmissionService(db)
    subject = service.get_subject(subject_id)
    if not subject or not _can_view(current_actor, subject):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subject not found")
    return [TransitionResponse.model_validate(r) for r in service.get_history(subject_id)]


@router.post("/{subject_id}/resubmit", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
async def resubmit_subject(
    subject_id: UUID,
    body: ResubmitRequest,
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Submit a corrected version of one of the caller's rejected subjects."""
    try:
        subject = SubmissionService(db).resubmit(
            subject_id, current_actor.id, body.payload_ref, extra_data=body.extra_data
        )
    except DuplicateSubmissionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ApprovalError as e:
        _raise_for(e)
    return SubjectResponse.from_subject(subject)


@router.post(
    "/{subject_id}/decision",
    response_model=DecisionResponse,
    responses={code: {"model": ErrorResponse} for code in (400, 403, 404, 409, 503)},
)
async def decide_subject(
    subject_id: UUID,
    body: DecisionRequest,
    background_tasks: BackgroundTasks,
    engine: TransitionEngine = Depends(get_transition_engine),
    session_factory=Depends(get_session_factory),
    current_actor: Actor = Depends(get_current_actor),
):
    """
    Approve or reject a pending subject.

    Replaying a decision that already landed returns 200 with
    ``outcome="already_finalized"`` and the subject as it stands.
    """
    outcome: TransitionOutcome = engine.apply_transition(
        subject_id, body.status, body.reason, current_actor.id, kind=body.kind
    )

    if outcome.committed:
        if outcome.notification is not None:
            background_tasks.add_task(
                deliver_notifications, [outcome.notification.id], session_factory=session_factory
            )
        return DecisionResponse(
            outcome="committed",
            subject=SubjectResponse.from_subject(outcome.subject),
            transition=TransitionResponse.model_validate(outcome.record),
        )

    if outcome.is_already_finalized:
        subject = engine.db.get(ApprovalSubject, subject_id)
        return DecisionResponse(
            outcome=ErrorKind.ALREADY_FINALIZED.value,
            subject=SubjectResponse.from_subject(subject),
        )

    return _error_response(
        outcome.error_kind,
        outcome.message or "",
        subject_id=str(subject_id),
        current_status=outcome.current_status.value if outcome.current_status else None,
    )
