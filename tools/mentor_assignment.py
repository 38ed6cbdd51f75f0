"""
MCP tool handlers for mentor allocation.

select_mentor is a read-only preview of the allocator. assign_mentor creates
the assignment and moves the request to MENTOR_ASSIGNED in one transaction,
with the mentor's capacity re-checked by the insert itself.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from db.record_store import RecordStore
from models.errors import (
    WorkflowError,
    create_allocation_unavailable_error,
    create_concurrent_modification_error,
    create_internal_error,
    create_not_found_error,
    create_precondition_error,
    create_validation_error,
)
from models.status import (
    APPROVED_REQUEST_STATUSES,
    NotificationPriority,
    RequestStatus,
    Role,
)
from schemas.common import WorkflowResponse
from schemas.mentor_assignment import AssignMentorRequest, SelectMentorRequest
from schemas.records import AssignmentRecord, MentorChoice, RequestRecord
from utils import audit
from utils.mentor_allocator import resolve_capacity, select_mentor as allocate_mentor
from utils.notifier import NotificationOutcome, dispatch
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.request_transitions import (
    candidate_name,
    candidate_recipient,
    load_candidate,
    load_request,
)
from utils.services import WorkflowServices, get_services
from utils.transition_policy import check_transition_or_raise
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


def _mentor_display_name(mentor: Dict[str, Any]) -> str:
    name = f"{mentor.get('first_name') or ''} {mentor.get('last_name') or ''}".strip()
    return name or f"mentor #{mentor['id']}"


def _load_manual_mentor(
    store: RecordStore, mentor_id: int, department: str, services: WorkflowServices
) -> Dict[str, Any]:
    """Load snapshot of an explicitly chosen mentor."""
    for mentor in store.list_mentor_loads(department):
        if mentor["id"] == mentor_id:
            mentor = dict(mentor)
            mentor["capacity"] = resolve_capacity(mentor, services.tier_capacity)
            mentor["load"] = mentor["active_count"] / mentor["capacity"] if mentor["capacity"] else 1.0
            return mentor

    user = store.get("user", mentor_id)
    if user is None:
        raise create_not_found_error("Mentor", mentor_id)
    raise create_validation_error(
        f"Invalid mentor_id: user {mentor_id} is not an active mentor in department '{department}'"
    )


def _check_not_awaiting_department(store: RecordStore, request_id: int) -> None:
    """The department decides forwarded candidates before a mentor is allocated."""
    if store.count("batch_candidate", {"request_id": request_id, "decision": None}):
        raise create_precondition_error(
            f"Request {request_id} awaits a department decision in a forwarded batch"
        )


def perform_assignment(
    store: RecordStore,
    services: WorkflowServices,
    outcome: NotificationOutcome,
    request_id: int,
    assigned_by: Optional[int] = None,
    mentor_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Assign a mentor to an approved request.

    Picks the least-loaded mentor of the request's department (or validates
    ``mentor_id`` when given), then inserts the assignment only if that
    mentor still has a free slot. A mentor that fills up between selection
    and insert is excluded and selection is retried, up to
    ``services.allocation_attempts`` times.

    Returns:
        Dict with ``assigned`` (bool), ``request``, ``assignment``, ``mentor``
        and, when nobody was available, ``error`` describing the soft
        ALLOCATION_UNAVAILABLE outcome

    Raises:
        WorkflowError: NOT_FOUND, INVALID_TRANSITION, PRECONDITION_FAILED
            (request undecided in a forwarded batch), VALIDATION_ERROR,
            CONCURRENT_MODIFICATION or STORE_ERROR. Nothing is written when
            an error is raised.
    """
    request = load_request(store, request_id)
    status = request["status"]
    if status not in APPROVED_REQUEST_STATUSES:
        check_transition_or_raise(status, RequestStatus.MENTOR_ASSIGNED.value)
    _check_not_awaiting_department(store, request_id)
    candidate = load_candidate(store, request["candidate_id"])
    department = request["department"]

    excluded: List[int] = []
    for attempt in range(1, services.allocation_attempts + 1):
        # Step 1: Choose a mentor from the current load snapshot
        if mentor_id is not None:
            mentor = _load_manual_mentor(store, mentor_id, department, services)
            if mentor["active_count"] >= mentor["capacity"]:
                mentor = None
        else:
            mentor = allocate_mentor(store, department, excluded, services.tier_capacity)

        if mentor is None:
            break

        # Step 2: Guarded insert plus request transition, one transaction
        timestamp = get_current_utc_timestamp()
        with store.transaction():
            _check_not_awaiting_department(store, request_id)
            assignment = store.insert_assignment_within_capacity(
                request_id=request_id,
                mentor_id=mentor["id"],
                capacity=mentor["capacity"],
                assigned_at=timestamp,
                assigned_by=assigned_by,
                notes=notes,
            )
            if assignment is not None:
                updated = store.update_where(
                    "request",
                    request_id,
                    {"status": status},
                    {"status": RequestStatus.MENTOR_ASSIGNED.value, "updated_at": timestamp},
                )
                if not updated:
                    raise create_concurrent_modification_error("Request", request_id, status)
                after = load_request(store, request_id)
                audit.record(store, "assignment", assignment["id"], "ASSIGN_MENTOR", assigned_by, None, assignment)
                audit.record(store, "request", request_id, "MENTOR_ASSIGNED", assigned_by, request, after)

        if assignment is not None:
            logger.info(
                "Assigned mentor %s to request %s (attempt %d)", mentor["id"], request_id, attempt
            )
            # Step 3: Notify mentor and candidate after commit
            name = candidate_name(candidate)
            dispatch(
                services.notifier,
                outcome,
                [mentor["id"]],
                "New Mentor Assignment",
                f"You have been assigned as mentor for {name} (request #{request_id}).",
                NotificationPriority.HIGH.value,
            )
            dispatch(
                services.notifier,
                outcome,
                [candidate_recipient(candidate, request)],
                "Mentor Assigned",
                f"{_mentor_display_name(mentor)} has been assigned as mentor for {name}.",
                NotificationPriority.MEDIUM.value,
            )
            return {
                "assigned": True,
                "request": RequestRecord.model_validate(after).model_dump(),
                "assignment": AssignmentRecord.model_validate(assignment).model_dump(),
                "mentor": MentorChoice.model_validate(mentor).model_dump(),
            }

        logger.info(
            "Mentor %s filled up before assignment to request %s; retrying", mentor["id"], request_id
        )
        if mentor_id is not None:
            break
        excluded.append(mentor["id"])

    unavailable = create_allocation_unavailable_error(department)
    logger.warning("Request %s: %s", request_id, unavailable.message)
    return {
        "assigned": False,
        "request": RequestRecord.model_validate(load_request(store, request_id)).model_dump(),
        "assignment": None,
        "mentor": None,
        "error": {"kind": unavailable.code.value, "message": unavailable.message},
    }


def notify_allocation_unavailable(
    services: WorkflowServices, outcome: NotificationOutcome, department: str, request_id: int
) -> None:
    """Tell coordinators a request is waiting for a free mentor."""
    try:
        coordinators = services.directory.resolve_reviewer(Role.COORDINATOR.value)
    except Exception as e:
        outcome.failed += 1
        logger.warning("Could not resolve coordinators for notification: %s", e)
        return
    dispatch(
        services.notifier,
        outcome,
        coordinators,
        "Mentor Assignment Pending",
        f"No mentor has free capacity in {department}; request #{request_id} awaits assignment.",
        NotificationPriority.HIGH.value,
    )


def select_mentor(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Preview which mentor the allocator would choose for a department.

    Args:
        args: Dictionary containing parameters:
            - department (str): Department to allocate in
            - exclude_mentor_ids (list[int], optional): Mentors to skip
            - db_path (str, optional): Database path override
        services: Optional injected collaborators

    Returns:
        Success envelope with ``data.mentor`` (or None plus an
        ALLOCATION_UNAVAILABLE warning), or a failure envelope
    """
    try:
        request = SelectMentorRequest.model_validate(args)
        services = services or get_services(request.db_path)

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            mentor = allocate_mentor(
                store, request.department, request.exclude_mentor_ids, services.tier_capacity
            )

        warnings = []
        if mentor is None:
            unavailable = create_allocation_unavailable_error(request.department)
            warnings.append(f"{unavailable.code.value}: {unavailable.message}")

        return WorkflowResponse(
            data={
                "department": request.department,
                "available": mentor is not None,
                "mentor": MentorChoice.model_validate(mentor).model_dump() if mentor else None,
            },
            warnings=warnings,
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("select_mentor failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def assign_mentor(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Assign a mentor to an APPROVED or FINAL_APPROVED request.

    Args:
        args: Dictionary containing parameters:
            - request_id (int): Request to assign
            - assigned_by (int, optional): Acting user
            - mentor_id (int, optional): Manual choice; skips the allocator
            - notes (str, optional): Assignment notes
            - db_path (str, optional): Database path override
        services: Optional injected collaborators

    Returns:
        Success envelope with ``data.mentor_assignment``. When no mentor has
        capacity the request stays approved, ``assigned`` is false and an
        ALLOCATION_UNAVAILABLE warning is attached. Hard failures return the
        failure envelope.
    """
    try:
        request = AssignMentorRequest.model_validate(args)
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            result = perform_assignment(
                store,
                services,
                outcome,
                request.request_id,
                assigned_by=request.assigned_by,
                mentor_id=request.mentor_id,
                notes=request.notes,
            )

        warnings = []
        if not result["assigned"]:
            warnings.append(f"{result['error']['kind']}: {result['error']['message']}")
            notify_allocation_unavailable(
                services, outcome, result["request"]["department"], request.request_id
            )

        return WorkflowResponse(
            data={"mentor_assignment": result},
            warnings=warnings,
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("assign_mentor failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()
