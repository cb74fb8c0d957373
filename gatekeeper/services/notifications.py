"""Notification dispatcher for moderation decisions.

Handles:
- Persisting a decision notice for the submitter, inside the transition's
  transaction, with a per-recipient sequence number
- Best-effort live push after commit
- Listing and read-state management for recipients

The persisted events are the source of truth. A failed or skipped push
only means the recipient sees the notice on their next fetch.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable, Iterable, Tuple
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.approval.states import SubjectKind, SubjectStatus, KIND_NAMES, status_label
from gatekeeper.db.models import (
    ApprovalSubject,
    TransitionRecord,
    NotificationEvent,
    NotificationSequence,
    NotificationEventType,
    PushStatus,
)
from gatekeeper.services.push import (
    PushChannel,
    NullPushChannel,
    WebhookPushChannel,
    RecipientUnreachable,
)

logger = logging.getLogger(__name__)


MESSAGE_TEMPLATES = {
    NotificationEventType.SUBJECT_APPROVED: {
        "title": "Your {kind_name} was {label}",
        "message": "Good news: your {kind_name} submitted on {submitted_on} has been {label}.",
    },
    NotificationEventType.SUBJECT_REJECTED: {
        "title": "Your {kind_name} was {label}",
        "message": (
            "Your {kind_name} submitted on {submitted_on} has been {label}. "
            "Reason: {reason}. You can correct it and submit again."
        ),
    },
}

EVENT_TYPES = {
    SubjectStatus.APPROVED: NotificationEventType.SUBJECT_APPROVED,
    SubjectStatus.REJECTED: NotificationEventType.SUBJECT_REJECTED,
}


def build_push_channel(settings: Optional[Settings] = None) -> PushChannel:
    """Channel configured for this deployment."""
    settings = settings or get_settings()
    if not settings.push_webhook_url:
        return NullPushChannel()
    return WebhookPushChannel(
        settings.push_webhook_url,
        timeout=settings.push_timeout_seconds,
        payload_template=settings.push_payload_template,
    )


class NotificationDispatcher:
    """
    Persists decision notices and pushes them to reachable recipients.
    """

    def __init__(
        self,
        db: Session,
        channel: Optional[PushChannel] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.channel = channel if channel is not None else build_push_channel(self.settings)

    def record(self, subject: ApprovalSubject, transition: TransitionRecord) -> NotificationEvent:
        """
        Persist the notice for a committed transition.

        Runs inside the caller's transaction; nothing is committed here.
        """
        to_status = SubjectStatus(transition.to_status)
        event_type = EVENT_TYPES[to_status]
        context = self._build_context(subject, transition)
        template = MESSAGE_TEMPLATES[event_type]

        event = NotificationEvent(
            recipient_id=subject.owner_id,
            subject_id=subject.id,
            transition_id=transition.id,
            sequence_no=self._next_sequence(subject.owner_id),
            event_type=event_type.value,
            title=template["title"].format(**context),
            message=template["message"].format(**context),
            data={
                "subject_id": str(subject.id),
                "kind": subject.kind,
                "status": to_status.value,
                "label": context["label"],
                "reason": transition.reason,
            },
            created_at=transition.committed_at,
            push_status=PushStatus.PENDING.value,
        )
        self.db.add(event)
        self.db.flush()
        return event

    async def push(self, event: NotificationEvent) -> PushStatus:
        """
        Attempt live delivery of one persisted event.

        Never raises: the transition behind the event is already committed.
        """
        timeout = self.settings.push_timeout_seconds
        error: Optional[str] = None
        try:
            reachable = await asyncio.wait_for(
                self.channel.is_reachable(event.recipient_id), timeout
            )
            if not reachable:
                status = PushStatus.SKIPPED
            else:
                await asyncio.wait_for(
                    self.channel.send(event.recipient_id, self.build_payload(event)), timeout
                )
                status = PushStatus.SENT
        except RecipientUnreachable:
            status = PushStatus.SKIPPED
        except asyncio.TimeoutError:
            status = PushStatus.FAILED
            error = f"Push timed out after {timeout}s"
            logger.warning(f"Push of notification {event.id} to {event.recipient_id} timed out")
        except Exception as e:
            status = PushStatus.FAILED
            error = str(e)
            logger.exception(f"Failed to push notification {event.id} to {event.recipient_id}")

        event.push_status = status.value
        event.push_attempts = (event.push_attempts or 0) + 1
        event.push_error = error
        if status == PushStatus.SENT:
            event.pushed_at = datetime.utcnow()

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Could not record push status for notification {event.id}")

        return status

    async def push_many(self, events: Iterable[NotificationEvent]) -> Dict[str, int]:
        """Push several events in order; returns a count per push status."""
        summary: Dict[str, int] = {}
        for event in events:
            status = await self.push(event)
            summary[status.value] = summary.get(status.value, 0) + 1
        return summary

    def list_for_recipient(
        self,
        recipient_id: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[NotificationEvent], int]:
        """Persisted notices for a recipient in sequence order, with the total."""
        query = select(NotificationEvent).where(NotificationEvent.recipient_id == recipient_id)
        if unread_only:
            query = query.where(NotificationEvent.read_at.is_(None))

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        items = self.db.execute(
            query.order_by(NotificationEvent.sequence_no.asc()).offset(offset).limit(limit)
        ).scalars().all()
        return list(items), total

    def unread_count(self, recipient_id: str) -> int:
        return self.db.execute(
            select(func.count(NotificationEvent.id)).where(
                NotificationEvent.recipient_id == recipient_id,
                NotificationEvent.read_at.is_(None),
            )
        ).scalar_one()

    def mark_read(self, notification_id: UUID, recipient_id: str) -> Optional[NotificationEvent]:
        """
        Mark one notice read. Re-marking keeps the first read time.

        Returns None when the notice does not exist for this recipient.
        """
        event = self.db.execute(
            select(NotificationEvent).where(
                NotificationEvent.id == notification_id,
                NotificationEvent.recipient_id == recipient_id,
            )
        ).scalar_one_or_none()
        if event is None:
            return None
        if event.read_at is None:
            event.read_at = datetime.utcnow()
            self.db.flush()
        return event

    def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notice read; returns how many changed."""
        result = self.db.execute(
            update(NotificationEvent)
            .where(
                NotificationEvent.recipient_id == recipient_id,
                NotificationEvent.read_at.is_(None),
            )
            .values(read_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def build_payload(self, event: NotificationEvent) -> Dict[str, Any]:
        return {
            "id": str(event.id),
            "sequence_no": event.sequence_no,
            "event_type": event.event_type,
            "subject_id": str(event.subject_id),
            "title": event.title,
            "message": event.message,
            "data": event.data,
            "created_at": event.created_at.isoformat() if event.created_at else None,
        }

    def _next_sequence(self, recipient_id: str) -> int:
        if self._bump_sequence(recipient_id):
            return self._read_sequence(recipient_id)

        try:
            with self.db.begin_nested():
                self.db.add(NotificationSequence(recipient_id=recipient_id, last_sequence_no=1))
                self.db.flush()
            return 1
        except IntegrityError:
            # Another transaction issued this recipient's first number
            self._bump_sequence(recipient_id)
            return self._read_sequence(recipient_id)

    def _bump_sequence(self, recipient_id: str) -> bool:
        result = self.db.execute(
            update(NotificationSequence)
            .where(NotificationSequence.recipient_id == recipient_id)
            .values(last_sequence_no=NotificationSequence.last_sequence_no + 1)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def _read_sequence(self, recipient_id: str) -> int:
        return self.db.execute(
            select(NotificationSequence.last_sequence_no).where(
                NotificationSequence.recipient_id == recipient_id
            )
        ).scalar_one()

    def _build_context(self, subject: ApprovalSubject, transition: TransitionRecord) -> Dict[str, Any]:
        kind = SubjectKind(subject.kind)
        to_status = SubjectStatus(transition.to_status)
        submitted = subject.submitted_at or subject.created_at
        return {
            "kind_name": KIND_NAMES.get(kind, kind.value),
            "label": status_label(kind, to_status),
            "reason": transition.reason or "No reason provided",
            "submitted_on": submitted.strftime("%Y-%m-%d") if submitted else "N/A",
            "subject_id": str(subject.id),
        }


async def deliver_notifications(
    event_ids: List[UUID],
    *,
    session_factory: Optional[Callable[[], Session]] = None,
    channel: Optional[PushChannel] = None,
) -> Dict[str, int]:
    """
    Push already-committed events using a fresh session.

    Scheduled as a background task once the decision response is sent.
    """
    if not event_ids:
        return {}
    if session_factory is None:
        from gatekeeper.db.session import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        events = db.execute(
            select(NotificationEvent)
            .where(NotificationEvent.id.in_(event_ids))
            .order_by(NotificationEvent.recipient_id, NotificationEvent.sequence_no)
        ).scalars().all()
        dispatcher = NotificationDispatcher(db, channel=channel)
        return await dispatcher.push_many(events)
    finally:
        db.close()
