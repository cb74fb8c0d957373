"""Gatekeeper services: notifications and dashboard counters."""

from gatekeeper.services.counters import StatusAggregator, ReconciliationReport
from gatekeeper.services.notifications import (
    NotificationDispatcher,
    build_push_channel,
    deliver_notifications,
)

__all__ = [
    "StatusAggregator",
    "ReconciliationReport",
    "NotificationDispatcher",
    "build_push_channel",
    "deliver_notifications",
]
