"""
Transition policy for internship request statuses.

This module owns the request state graph:
- Forward review path (SUBMITTED -> UNDER_REVIEW -> APPROVED | REJECTED)
- Post-approval path (APPROVED -> MENTOR_ASSIGNED -> IN_PROGRESS -> COMPLETED)
- Senior sign-off (APPROVED -> FINAL_APPROVED)
- Department rejection of a forwarded candidate (APPROVED | FINAL_APPROVED -> REJECTED)

Terminal statuses have no outgoing edges. The compensating rollback of a
failed approval is not an edge of this graph; it is performed explicitly by
the approval workflow.
"""

from typing import Dict, FrozenSet, List, Optional

from models.errors import create_invalid_transition_error
from models.status import RequestStatus


REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.SUBMITTED: frozenset({RequestStatus.UNDER_REVIEW}),
    RequestStatus.UNDER_REVIEW: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestStatus.APPROVED: frozenset(
        {RequestStatus.MENTOR_ASSIGNED, RequestStatus.FINAL_APPROVED, RequestStatus.REJECTED}
    ),
    RequestStatus.FINAL_APPROVED: frozenset(
        {RequestStatus.MENTOR_ASSIGNED, RequestStatus.REJECTED}
    ),
    RequestStatus.MENTOR_ASSIGNED: frozenset({RequestStatus.IN_PROGRESS}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.COMPLETED: frozenset(),
}


class TransitionResult:
    """Result of a transition policy check."""

    def __init__(self, allowed: bool, error_message: Optional[str] = None):
        """
        Initialize a transition result.

        Args:
            allowed: Whether the transition is allowed
            error_message: Error message if transition is blocked
        """
        self.allowed = allowed
        self.error_message = error_message

    def to_dict(self) -> Dict[str, object]:
        result: Dict[str, object] = {"allowed": self.allowed}
        if self.error_message:
            result["error_message"] = self.error_message
        return result


def allowed_targets(current_status: str) -> List[str]:
    """Sorted list of statuses reachable in one step from current_status."""
    try:
        current = RequestStatus(current_status)
    except ValueError:
        return []
    return sorted(s.value for s in REQUEST_TRANSITIONS[current])


def validate_transition(current_status: str, target_status: str) -> TransitionResult:
    """
    Validate a request status transition against the state graph.

    There is no noop or force bypass: staying in
    the same status is not a transition, and every write must follow an edge.

    Args:
        current_status: The current request status
        target_status: The desired target status

    Returns:
        TransitionResult indicating whether the transition is allowed

    Examples:
        >>> validate_transition("SUBMITTED", "UNDER_REVIEW").allowed
        True
        >>> validate_transition("SUBMITTED", "APPROVED").allowed
        False
        >>> validate_transition("REJECTED", "UNDER_REVIEW").allowed
        False
    """
    if target_status in allowed_targets(current_status):
        return TransitionResult(allowed=True)

    targets = allowed_targets(current_status)
    if targets:
        allowed_str = ", ".join(f"'{s}'" for s in targets)
    else:
        allowed_str = "none (terminal or unknown status)"

    return TransitionResult(
        allowed=False,
        error_message=(
            f"Transition from '{current_status}' to '{target_status}' is not allowed. "
            f"Allowed transitions from '{current_status}': {allowed_str}"
        ),
    )


def check_transition_or_raise(current_status: str, target_status: str) -> TransitionResult:
    """
    Validate transition and raise WorkflowError if blocked.

    Raises:
        WorkflowError: With INVALID_TRANSITION code if transition is blocked
    """
    result = validate_transition(current_status, target_status)

    if not result.allowed:
        error = create_invalid_transition_error(current_status, target_status)
        error.message = result.error_message
        raise error

    return result
