"""Decision notification endpoints for submitters."""

from typing import Optional
from uuid import UUID
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from gatekeeper.api.deps import get_db, get_current_actor
from gatekeeper.api.schemas.common import PaginatedResponse
from gatekeeper.core.security import Actor
from gatekeeper.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["notifications"])


# Schemas
class NotificationResponse(BaseModel):
    id: UUID
    subject_id: UUID
    sequence_no: int
    event_type: str
    title: str
    message: str
    data: Optional[dict]
    created_at: datetime
    read_at: Optional[datetime]

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int


# Endpoints
@router.get("", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """The caller's notifications in the order they were issued."""
    dispatcher = NotificationDispatcher(db)
    items, total = dispatcher.list_for_recipient(
        current_actor.id,
        unread_only=unread_only,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return PaginatedResponse.create(
        [NotificationResponse.model_validate(n) for n in items], total, page, per_page
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    return UnreadCountResponse(unread=NotificationDispatcher(db).unread_count(current_actor.id))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    updated = NotificationDispatcher(db).mark_all_read(current_actor.id)
    db.commit()
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_actor: Actor = Depends(get_current_actor),
):
    """Mark one notification read. Marking it again changes nothing."""
    event = NotificationDispatcher(db).mark_read(notification_id, current_actor.id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    db.commit()
    return NotificationResponse.model_validate(event)
