"""
MCP tool handlers for the post-assignment part of the request lifecycle.

start_internship and complete_internship move the request along
MENTOR_ASSIGNED -> IN_PROGRESS -> COMPLETED and keep the active assignment's
dates and status in step. submit_progress_report records mentor or trainee
reports against an active assignment.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from db.record_store import RecordStore
from models.errors import (
    WorkflowError,
    create_concurrent_modification_error,
    create_internal_error,
    create_not_found_error,
    create_precondition_error,
    create_validation_error,
)
from models.status import AssignmentStatus, NotificationPriority, RequestStatus
from schemas.common import WorkflowResponse
from schemas.internship_progress import (
    CompleteInternshipRequest,
    StartInternshipRequest,
    SubmitProgressReportRequest,
)
from schemas.records import AssignmentRecord, ProgressReportRecord, RequestRecord
from utils import audit
from utils.notifier import NotificationOutcome, dispatch
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.request_transitions import (
    candidate_name,
    candidate_recipient,
    load_candidate,
    load_request,
    transition_request,
)
from utils.services import WorkflowServices, get_services
from utils.transition_policy import check_transition_or_raise
from utils.validation import get_current_utc_date, get_current_utc_timestamp, validate_iso_date

logger = logging.getLogger(__name__)


def _active_assignment(store: RecordStore, request_id: int) -> Dict[str, Any]:
    active = store.list(
        "assignment", {"request_id": request_id, "status": AssignmentStatus.ACTIVE.value}
    )
    if not active:
        raise create_precondition_error(f"Request {request_id} has no active mentor assignment")
    return active[0]


def _update_assignment(
    store: RecordStore,
    assignment: Dict[str, Any],
    fields: Dict[str, Any],
    action: str,
    actor_id: int,
) -> None:
    """Conditional update of an ACTIVE assignment plus its audit entry."""
    fields = dict(fields)
    fields["updated_at"] = get_current_utc_timestamp()
    updated = store.update_where(
        "assignment", assignment["id"], {"status": AssignmentStatus.ACTIVE.value}, fields
    )
    if not updated:
        raise create_concurrent_modification_error(
            "Assignment", assignment["id"], AssignmentStatus.ACTIVE.value
        )
    audit.record(
        store, "assignment", assignment["id"], action, actor_id, assignment, store.get("assignment", assignment["id"])
    )


def start_internship(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    MENTOR_ASSIGNED -> IN_PROGRESS; records the assignment start date.

    Args:
        args: Dictionary containing parameters:
            - request_id (int): Request with an active assignment
            - actor_id (int): Acting user
            - start_date (str, optional): YYYY-MM-DD, defaults to today (UTC)
            - db_path (str, optional): Database path override
        services: Optional injected collaborators
    """
    try:
        request = StartInternshipRequest.model_validate(args)
        start_date = validate_iso_date(request.start_date, "start_date") or get_current_utc_date()
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            current = load_request(store, request.request_id)
            check_transition_or_raise(current["status"], RequestStatus.IN_PROGRESS.value)
            assignment = _active_assignment(store, request.request_id)

            def mark_started(store, before, after):
                _update_assignment(store, assignment, {"start_date": start_date}, "START", request.actor_id)

            _, after = transition_request(
                store,
                request.request_id,
                RequestStatus.IN_PROGRESS.value,
                request.actor_id,
                "START_INTERNSHIP",
                extra_writes=mark_started,
            )
            assignment = store.get("assignment", assignment["id"])
            candidate = load_candidate(store, after["candidate_id"])

        dispatch(
            services.notifier,
            outcome,
            [assignment["mentor_id"], candidate_recipient(candidate, after)],
            "Internship Started",
            f"The internship of {candidate_name(candidate)} started on {start_date}.",
        )

        return WorkflowResponse(
            data={
                "request": RequestRecord.model_validate(after).model_dump(),
                "assignment": AssignmentRecord.model_validate(assignment).model_dump(),
            },
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("start_internship failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def complete_internship(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    IN_PROGRESS -> COMPLETED; closes the active assignment.

    The assignment moves to COMPLETED in the same transaction, which frees
    one slot of the mentor's capacity.
    """
    try:
        request = CompleteInternshipRequest.model_validate(args)
        end_date = validate_iso_date(request.end_date, "end_date") or get_current_utc_date()
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            current = load_request(store, request.request_id)
            check_transition_or_raise(current["status"], RequestStatus.COMPLETED.value)
            assignment = _active_assignment(store, request.request_id)
            if assignment.get("start_date") and end_date < assignment["start_date"]:
                raise create_validation_error(
                    f"Invalid end_date: {end_date} is before start date {assignment['start_date']}"
                )

            def close_assignment(store, before, after):
                _update_assignment(
                    store,
                    assignment,
                    {"status": AssignmentStatus.COMPLETED.value, "end_date": end_date},
                    "COMPLETE",
                    request.actor_id,
                )

            _, after = transition_request(
                store,
                request.request_id,
                RequestStatus.COMPLETED.value,
                request.actor_id,
                "COMPLETE_INTERNSHIP",
                extra_writes=close_assignment,
            )
            assignment = store.get("assignment", assignment["id"])
            candidate = load_candidate(store, after["candidate_id"])

        dispatch(
            services.notifier,
            outcome,
            [assignment["mentor_id"], candidate_recipient(candidate, after)],
            "Internship Completed",
            f"The internship of {candidate_name(candidate)} was completed on {end_date}.",
        )

        return WorkflowResponse(
            data={
                "request": RequestRecord.model_validate(after).model_dump(),
                "assignment": AssignmentRecord.model_validate(assignment).model_dump(),
            },
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("complete_internship failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def submit_progress_report(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Record a progress report on an active assignment.

    Only the assigned mentor or the trainee may report. The other party is
    notified.
    """
    try:
        request = SubmitProgressReportRequest.model_validate(args)
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            assignment = store.get("assignment", request.assignment_id)
            if assignment is None:
                raise create_not_found_error("Assignment", request.assignment_id)
            if assignment["status"] != AssignmentStatus.ACTIVE.value:
                raise create_precondition_error(
                    f"Assignment {request.assignment_id} is {assignment['status']}; "
                    "reports require an active assignment"
                )

            parent = load_request(store, assignment["request_id"])
            candidate = load_candidate(store, parent["candidate_id"])
            trainee_id = candidate_recipient(candidate, parent)
            if request.submitted_by not in (assignment["mentor_id"], trainee_id):
                raise create_validation_error(
                    f"Invalid submitted_by: user {request.submitted_by} is neither the mentor "
                    f"nor the trainee of assignment {request.assignment_id}"
                )

            with store.transaction():
                report = store.create(
                    "progress_report",
                    {
                        "assignment_id": request.assignment_id,
                        "submitted_by": request.submitted_by,
                        "report_type": request.report_type,
                        "title": request.title,
                        "content": request.content,
                        "progress_percentage": request.progress_percentage,
                        "created_at": get_current_utc_timestamp(),
                    },
                )
                audit.record(store, "progress_report", report["id"], "SUBMIT_REPORT", request.submitted_by, None, report)

        other = trainee_id if request.submitted_by == assignment["mentor_id"] else assignment["mentor_id"]
        dispatch(
            services.notifier,
            outcome,
            [other],
            "Progress Report Submitted",
            f"{request.report_type.capitalize()} report '{request.title}' for "
            f"{candidate_name(candidate)}: {request.progress_percentage}% complete.",
            NotificationPriority.LOW.value,
        )

        return WorkflowResponse(
            data={"report": ProgressReportRecord.model_validate(report).model_dump()},
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("submit_progress_report failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()
