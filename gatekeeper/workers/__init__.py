"""Celery workers for Gatekeeper."""

from gatekeeper.workers.tasks import (
    celery_app,
    reconcile_status_counters,
    retry_failed_pushes,
)

__all__ = [
    "celery_app",
    "reconcile_status_counters",
    "retry_failed_pushes",
]
