"""Moderation workflow module for Gatekeeper.

States, transition rules and decision outcome types. The engine, bulk
coordinator and submission service live in their own modules because
they depend on the notification and counter services.
"""

from .states import (
    SubjectKind,
    SubjectStatus,
    TransitionRule,
    TRANSITION_RULES,
    TERMINAL_STATUSES,
    can_transition,
    get_transition_rule,
    status_label,
)
from .errors import (
    ErrorKind,
    ApprovalError,
    TransitionOutcome,
    DuplicateSubmissionError,
)

__all__ = [
    "SubjectKind",
    "SubjectStatus",
    "TransitionRule",
    "TRANSITION_RULES",
    "TERMINAL_STATUSES",
    "can_transition",
    "get_transition_rule",
    "status_label",
    "ErrorKind",
    "ApprovalError",
    "TransitionOutcome",
    "DuplicateSubmissionError",
]
