"""Moderation states and transitions.

State Machine Diagram:

               ┌──────────┐
               │ PENDING  │ ← Initial state (new submission)
               └────┬─────┘
                    │
            ┌───────┴───────┐
            │               │
       ┌────▼─────┐    ┌────▼─────┐
       │ APPROVED │    │ REJECTED │
       └──────────┘    └──────────┘

Both decisions are terminal. The same machine applies to every
submission kind; kind-specific wording ("declined", "confirmed") is a
display mapping only.
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class SubjectKind(str, Enum):
    """Kinds of submissions that go through moderation."""

    USER_REGISTRATION = "user_registration"
    VEHICLE_LISTING = "vehicle_listing"
    BOOKING_REQUEST = "booking_request"
    DOCUMENT_UPLOAD = "document_upload"


class SubjectStatus(str, Enum):
    """States in the moderation workflow."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TransitionRule(NamedTuple):
    """Defines a valid state transition."""
    from_status: SubjectStatus
    to_status: SubjectStatus
    requires_permission: str
    requires_reason: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(SubjectStatus.PENDING, SubjectStatus.APPROVED, "subjects:approve"),
    TransitionRule(SubjectStatus.PENDING, SubjectStatus.REJECTED, "subjects:reject",
                   requires_reason=True),
]

TRANSITION_TARGETS: Dict[tuple[SubjectStatus, SubjectStatus], TransitionRule] = {
    (rule.from_status, rule.to_status): rule for rule in TRANSITION_RULES
}

INITIAL_STATUS = SubjectStatus.PENDING

TERMINAL_STATUSES: Set[SubjectStatus] = {
    SubjectStatus.APPROVED,
    SubjectStatus.REJECTED,
}

# Display vocabulary per kind. Anything not listed falls back to the status value.
STATUS_LABELS: Dict[SubjectKind, Dict[SubjectStatus, str]] = {
    SubjectKind.USER_REGISTRATION: {
        SubjectStatus.PENDING: "awaiting verification",
        SubjectStatus.APPROVED: "verified",
        SubjectStatus.REJECTED: "declined",
    },
    SubjectKind.VEHICLE_LISTING: {
        SubjectStatus.PENDING: "under review",
        SubjectStatus.APPROVED: "approved",
        SubjectStatus.REJECTED: "rejected",
    },
    SubjectKind.BOOKING_REQUEST: {
        SubjectStatus.PENDING: "requested",
        SubjectStatus.APPROVED: "confirmed",
        SubjectStatus.REJECTED: "declined",
    },
    SubjectKind.DOCUMENT_UPLOAD: {
        SubjectStatus.PENDING: "under review",
        SubjectStatus.APPROVED: "accepted",
        SubjectStatus.REJECTED: "declined",
    },
}

KIND_NAMES: Dict[SubjectKind, str] = {
    SubjectKind.USER_REGISTRATION: "account registration",
    SubjectKind.VEHICLE_LISTING: "vehicle listing",
    SubjectKind.BOOKING_REQUEST: "booking request",
    SubjectKind.DOCUMENT_UPLOAD: "document",
}


def can_transition(from_status: SubjectStatus, to_status: SubjectStatus) -> bool:
    """Check if an edge exists between two statuses."""
    return (from_status, to_status) in TRANSITION_TARGETS


def get_transition_rule(from_status: SubjectStatus, to_status: SubjectStatus) -> Optional[TransitionRule]:
    """Get the rule for an edge, or None when the edge does not exist."""
    return TRANSITION_TARGETS.get((from_status, to_status))


def is_terminal(status: SubjectStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_label(kind: SubjectKind, status: SubjectStatus) -> str:
    """Human wording for a status of a given submission kind."""
    return STATUS_LABELS.get(kind, {}).get(status, status.value)
