"""API routers for Gatekeeper."""

from . import subjects
from . import dashboard
from . import notifications
from . import health

__all__ = [
    "subjects",
    "dashboard",
    "notifications",
    "health",
]
