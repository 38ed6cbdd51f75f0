"""
Centralized, type-safe status definitions for the IntakeFlow workflow engine.

This module is the single source of truth for all status values used across
the application:

- ``RequestStatus``: lifecycle of one internship request.
- ``BatchStatus``: derived status of a forwarded batch (never stored).
- ``AssignmentStatus``: lifecycle of a mentor assignment.
- ``Decision``: reviewer decision values.
- ``MentorTier``: mentor seniority tiers used for default capacity.
- ``Role``: directory roles resolved by the workflow.

All Enums inherit from ``(str, Enum)`` so that members are directly
comparable to plain strings and serialize naturally to JSON at API
boundaries.
"""

from enum import Enum


class RequestStatus(str, Enum):
    """Enum for statuses stored in the ``requests`` table.

    Canonical transitions (see utils/transition_policy.py):
        SUBMITTED -> UNDER_REVIEW
        UNDER_REVIEW -> APPROVED | REJECTED
        APPROVED -> MENTOR_ASSIGNED | FINAL_APPROVED | REJECTED
        FINAL_APPROVED -> MENTOR_ASSIGNED | REJECTED
        MENTOR_ASSIGNED -> IN_PROGRESS
        IN_PROGRESS -> COMPLETED
    """

    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FINAL_APPROVED = "FINAL_APPROVED"
    MENTOR_ASSIGNED = "MENTOR_ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


# Requests in these statuses never change again.
TERMINAL_REQUEST_STATUSES = frozenset({RequestStatus.REJECTED, RequestStatus.COMPLETED})

# Statuses that count as "approved by the coordinator" for forwarding and
# mentor assignment.
APPROVED_REQUEST_STATUSES = frozenset({RequestStatus.APPROVED, RequestStatus.FINAL_APPROVED})


class BatchStatus(str, Enum):
    """Derived status of a forwarded batch."""

    PENDING_REVIEW = "PENDING_REVIEW"
    PARTIALLY_DECIDED = "PARTIALLY_DECIDED"
    APPROVED_BY_REVIEWER = "APPROVED_BY_REVIEWER"
    REJECTED_BY_REVIEWER = "REJECTED_BY_REVIEWER"


class AssignmentStatus(str, Enum):
    """Enum for statuses stored in the ``assignments`` table."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Decision(str, Enum):
    """Reviewer decision for a request or a batch member."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"


class MentorTier(str, Enum):
    """Mentor seniority tier. Senior tiers carry fewer concurrent trainees."""

    PRINCIPAL = "PRINCIPAL"
    SENIOR = "SENIOR"
    GENERAL = "GENERAL"


class Role(str, Enum):
    """Directory roles the workflow resolves recipients for."""

    COORDINATOR = "COORDINATOR"
    DEPARTMENT_HOD = "DEPARTMENT_HOD"
    LND_HOD = "LND_HOD"
    MENTOR = "MENTOR"
    TRAINEE = "TRAINEE"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ReportType(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    FINAL = "FINAL"
