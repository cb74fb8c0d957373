"""Celery tasks for Gatekeeper.

Provides:
- Periodic reconciliation of the dashboard status counters
- Retried live push for notifications whose first attempt failed
"""

from typing import Dict, Any, List
from uuid import UUID
import asyncio
import logging

from celery import Celery, shared_task
from sqlalchemy import select

from gatekeeper.db.session import SessionLocal
from gatekeeper.db.models import NotificationEvent, PushStatus
from gatekeeper.services.counters import StatusAggregator
from gatekeeper.services.notifications import deliver_notifications
from gatekeeper.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_PUSH_ATTEMPTS = 3

# Initialize Celery
celery_app = Celery(
    'gatekeeper',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_default_queue='default',
    beat_schedule={
        'reconcile-status-counters': {
            'task': 'gatekeeper.workers.tasks.reconcile_status_counters',
            'schedule': float(settings.reconcile_interval_seconds),
        },
        'retry-failed-pushes': {
            'task': 'gatekeeper.workers.tasks.retry_failed_pushes',
            'schedule': 60.0,
        },
    },
)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def reconcile_status_counters(self) -> Dict[str, Any]:
    """
    Recount every kind from the subject store and overwrite the counters.

    Returns:
        Counts per kind and the kinds that had drifted
    """
    db = SessionLocal()
    try:
        report = StatusAggregator(db).reconcile()
        return {
            "reconciled_at": report.reconciled_at.isoformat(),
            "counts": report.counts,
            "drifted": sorted(report.drifted),
        }
    except Exception as e:
        db.rollback()
        logger.exception("Counter reconciliation failed")
        raise self.retry(exc=e)
    finally:
        db.close()


@shared_task
def retry_failed_pushes(limit: int = 200) -> Dict[str, int]:
    """
    Push again the notifications whose last attempt failed.

    Skipped pushes are not retried; the recipient was offline and will
    see the notification on their next fetch.
    """
    db = SessionLocal()
    try:
        event_ids: List[UUID] = list(db.execute(
            select(NotificationEvent.id)
            .where(
                NotificationEvent.push_status == PushStatus.FAILED.value,
                NotificationEvent.push_attempts < MAX_PUSH_ATTEMPTS,
            )
            .order_by(NotificationEvent.created_at.asc())
            .limit(limit)
        ).scalars().all())
    finally:
        db.close()

    if not event_ids:
        return {}
    logger.info(f"Retrying push for {len(event_ids)} notifications")
    return asyncio.run(deliver_notifications(event_ids, session_factory=SessionLocal))
