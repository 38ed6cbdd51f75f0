"""
MCP tool handlers for the request approval state machine.

Covers intake (submit_request), coordinator review (begin_review,
decide_request), senior sign-off (final_approve) and the request read view
(get_request). Approval continues into mentor assignment; a hard failure
there is compensated by moving the request back to UNDER_REVIEW.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from db.record_store import RecordStore
from models.errors import (
    WorkflowError,
    create_internal_error,
    create_precondition_error,
    create_validation_error,
    sanitize_path,
    sanitize_stack_trace,
)
from models.status import (
    AssignmentStatus,
    Decision,
    NotificationPriority,
    RequestStatus,
    Role,
    TERMINAL_REQUEST_STATUSES,
)
from schemas.approval_workflow import (
    BeginReviewRequest,
    CandidatePayload,
    DecideRequest,
    FinalApproveRequest,
    GetRequestRequest,
    SubmitRequest,
)
from schemas.common import WorkflowResponse
from schemas.records import AssignmentRecord, CandidateRecord, RequestRecord
from tools.mentor_assignment import notify_allocation_unavailable, perform_assignment
from utils import audit
from utils.notifier import NotificationOutcome, dispatch
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.request_transitions import (
    candidate_name,
    candidate_recipient,
    find_open_requests,
    load_candidate,
    load_request,
    transition_request,
)
from utils.services import WorkflowServices, get_services
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

OPEN_REQUEST_STATUSES = [s for s in RequestStatus if s not in TERMINAL_REQUEST_STATUSES]


def sanitize_error_message(error: Exception) -> str:
    """
    Short, path-free failure reason suitable for review_comment.

    Examples:
        >>> sanitize_error_message(RuntimeError("disk full\\n  at line 3"))
        'disk full'
    """
    message = error.message if isinstance(error, WorkflowError) else str(error)
    message = sanitize_stack_trace(message)
    return " ".join(
        sanitize_path(token) if token.startswith("/") else token for token in message.split(" ")
    )


def notify_role(
    services: WorkflowServices,
    outcome: NotificationOutcome,
    role: str,
    title: str,
    message: str,
    priority: str = NotificationPriority.MEDIUM.value,
    department: Optional[str] = None,
) -> None:
    """Notify every active holder of a directory role; never raises."""
    try:
        recipients = services.directory.resolve_reviewer(role, department)
    except Exception as e:
        outcome.failed += 1
        logger.warning("Could not resolve %s recipients: %s", role, e)
        return
    dispatch(services.notifier, outcome, recipients, title, message, priority)


def _find_existing_candidate(store: RecordStore, payload: CandidatePayload) -> Optional[Dict[str, Any]]:
    """
    Match an incoming applicant to a stored candidate by email or application number.

    Raises:
        WorkflowError: VALIDATION_ERROR if email and application number belong
            to two different candidates
    """
    by_email = store.list("candidate", {"email": payload.email})
    by_number: List[Dict[str, Any]] = []
    if payload.application_number:
        by_number = store.list("candidate", {"application_number": payload.application_number})

    if by_email and by_number and by_email[0]["id"] != by_number[0]["id"]:
        raise create_validation_error(
            f"Invalid candidate: email '{payload.email}' and application number "
            f"'{payload.application_number}' belong to different candidates"
        )
    if by_email:
        return by_email[0]
    if by_number:
        return by_number[0]
    return None


def submit_request(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Record a new internship application in SUBMITTED status.

    Args:
        args: Dictionary containing parameters:
            - candidate (dict): Applicant details (first_name, last_name,
              email, preferred_department, optional phone, institution,
              course, requested_duration_weeks, application_number)
            - submitted_by (int, optional): Submitting user id
            - db_path (str, optional): Database path override
        services: Optional injected collaborators

    Returns:
        Success envelope with ``data.request`` and ``data.candidate``, or a
        failure envelope (VALIDATION_ERROR when the candidate already has an
        open request)
    """
    try:
        # Step 1: Validate request and nested candidate payload
        request = SubmitRequest.model_validate(args)
        try:
            payload = CandidatePayload.model_validate(request.candidate)
        except ValidationError as e:
            raise map_pydantic_validation_error(e, prefix="candidate") from e

        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()
        timestamp = get_current_utc_timestamp()

        # Step 2: Duplicate check and inserts under the write lock
        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            with store.transaction():
                candidate = _find_existing_candidate(store, payload)
                if candidate is None:
                    candidate = store.create(
                        "candidate",
                        {**payload.model_dump(), "created_at": timestamp},
                    )
                    audit.record(
                        store, "candidate", candidate["id"], "CREATE", request.submitted_by, None, candidate
                    )
                else:
                    open_requests = find_open_requests(store, candidate["id"], OPEN_REQUEST_STATUSES)
                    if open_requests:
                        raise create_validation_error(
                            f"Candidate {candidate['id']} already has an open request "
                            f"(request {open_requests[0]['id']}, status {open_requests[0]['status']})"
                        )

                created = store.create(
                    "request",
                    {
                        "candidate_id": candidate["id"],
                        "status": RequestStatus.SUBMITTED.value,
                        "department": payload.preferred_department,
                        "submitted_by": request.submitted_by,
                        "submitted_at": timestamp,
                        "updated_at": timestamp,
                    },
                )
                audit.record(store, "request", created["id"], "SUBMIT", request.submitted_by, None, created)

        logger.info("Request %s submitted for candidate %s", created["id"], candidate["id"])

        # Step 3: Notify coordinators after commit
        notify_role(
            services,
            outcome,
            Role.COORDINATOR.value,
            "New Internship Request",
            f"{candidate_name(candidate)} applied for an internship in "
            f"{payload.preferred_department} (request #{created['id']}).",
        )

        return WorkflowResponse(
            data={
                "request": RequestRecord.model_validate(created).model_dump(),
                "candidate": CandidateRecord.model_validate(candidate).model_dump(),
            },
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("submit_request failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def begin_review(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """Move a SUBMITTED request to UNDER_REVIEW."""
    try:
        request = BeginReviewRequest.model_validate(args)
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            _, after = transition_request(
                store,
                request.request_id,
                RequestStatus.UNDER_REVIEW.value,
                request.reviewer_id,
                "BEGIN_REVIEW",
                {"reviewer_id": request.reviewer_id},
            )
            candidate = load_candidate(store, after["candidate_id"])

        dispatch(
            services.notifier,
            outcome,
            [candidate_recipient(candidate, after)],
            "Application Under Review",
            f"The application of {candidate_name(candidate)} is now under review.",
        )

        return WorkflowResponse(
            data={"request": RequestRecord.model_validate(after).model_dump()},
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("begin_review failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def _link_trainee_account(
    store: RecordStore, services: WorkflowServices, candidate: Dict[str, Any], actor_id: int
) -> Dict[str, Any]:
    """Provision the trainee account of an approved candidate and link it."""
    if candidate.get("user_id") is not None:
        return candidate
    user_id = services.directory.provision_trainee(candidate)
    with store.transaction():
        if store.update_where("candidate", candidate["id"], {"user_id": None}, {"user_id": user_id}):
            linked = load_candidate(store, candidate["id"])
            audit.record(store, "candidate", candidate["id"], "LINK_ACCOUNT", actor_id, candidate, linked)
            return linked
    return load_candidate(store, candidate["id"])


def rollback_approval(
    store: RecordStore,
    request_id: int,
    before: Dict[str, Any],
    actor_id: int,
    error: WorkflowError,
) -> WorkflowError:
    """
    Compensate a failed post-approval step.

    Moves the request back to UNDER_REVIEW (only if it is still APPROVED),
    restores the pre-approval reviewer fields, records the failure reason in
    review_comment and writes a ROLLBACK audit entry.

    Returns:
        The error to report; its message notes a failed rollback as well
    """
    reason = sanitize_error_message(error)
    try:
        with store.transaction():
            current = load_request(store, request_id)
            reverted = store.update_where(
                "request",
                request_id,
                {"status": RequestStatus.APPROVED.value},
                {
                    "status": RequestStatus.UNDER_REVIEW.value,
                    "review_comment": f"Approval rolled back: {reason}",
                    "reviewer_id": before.get("reviewer_id"),
                    "reviewed_at": before.get("reviewed_at"),
                    "updated_at": get_current_utc_timestamp(),
                },
            )
            if not reverted:
                logger.warning(
                    "Request %s left %s; no rollback performed", request_id, current["status"]
                )
                return error
            after = load_request(store, request_id)
            audit.record(store, "request", request_id, "ROLLBACK", actor_id, current, after)
    except Exception as rollback_error:
        logger.error("Rollback of request %s failed: %s", request_id, rollback_error)
        return WorkflowError(
            code=error.code,
            message=f"{error.message}; rollback also failed: {sanitize_error_message(rollback_error)}",
            retryable=error.retryable,
            original_error=error.original_error,
            details=error.details,
        )

    logger.error("Approval of request %s rolled back: %s", request_id, reason)
    return error


def decide_request(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Approve or reject a request that is UNDER_REVIEW.

    APPROVE continues, as one logical operation, into trainee account
    provisioning (when enabled) and mentor assignment (when auto-assign is
    enabled). If no mentor has capacity the request stays APPROVED and an
    ALLOCATION_UNAVAILABLE warning is attached. Any other failure after the
    approval commit rolls the request back to UNDER_REVIEW and is returned
    as the call's error, unless a concurrent assign_mentor already moved the
    request to MENTOR_ASSIGNED; then the approval stands with a warning.

    Args:
        args: Dictionary containing parameters:
            - request_id (int): Request to decide
            - decision (str): APPROVE or REJECT
            - reviewer_id (int): Deciding reviewer
            - comment (str, optional): Review comment
            - db_path (str, optional): Database path override
        services: Optional injected collaborators

    Returns:
        Success envelope with ``data.request`` and, for approvals,
        ``data.mentor_assignment``; or a failure envelope
    """
    try:
        request = DecideRequest.model_validate(args)
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()
        warnings: List[str] = []
        approve = request.decision == Decision.APPROVE.value

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            # Step 1: Conditional UNDER_REVIEW -> APPROVED/REJECTED with audit
            before, after = transition_request(
                store,
                request.request_id,
                RequestStatus.APPROVED.value if approve else RequestStatus.REJECTED.value,
                request.reviewer_id,
                request.decision,
                {
                    "reviewer_id": request.reviewer_id,
                    "review_comment": request.comment,
                    "reviewed_at": get_current_utc_timestamp(),
                },
            )
            candidate = load_candidate(store, after["candidate_id"])
            recipients = [candidate.get("user_id"), after.get("submitted_by")]

            if not approve:
                dispatch(
                    services.notifier,
                    outcome,
                    recipients,
                    "Application Rejected",
                    f"The application of {candidate_name(candidate)} was rejected."
                    + (f" Comment: {request.comment}" if request.comment else ""),
                    NotificationPriority.HIGH.value,
                )
                return WorkflowResponse(
                    data={"request": RequestRecord.model_validate(after).model_dump()},
                    notifications=outcome.to_dict(),
                ).model_dump()

            # Step 2: Downstream steps; hard failures are compensated
            mentor_assignment = None
            assigned_elsewhere = False
            try:
                if services.provision_trainee_accounts:
                    candidate = _link_trainee_account(store, services, candidate, request.reviewer_id)
                    recipients = [candidate.get("user_id"), after.get("submitted_by")]
                if services.auto_assign_mentor:
                    mentor_assignment = perform_assignment(
                        store, services, outcome, request.request_id, assigned_by=request.reviewer_id
                    )
            except Exception as e:
                if isinstance(e, WorkflowError):
                    failure = e
                else:
                    logger.exception("Post-approval step failed for request %s", request.request_id)
                    failure = create_internal_error(message=str(e), original_error=e)
                latest = load_request(store, request.request_id)
                if latest["status"] != RequestStatus.MENTOR_ASSIGNED.value:
                    return rollback_approval(store, request.request_id, before, request.reviewer_id, failure).to_dict()
                # A concurrent assign_mentor won; the approval stands
                assigned_elsewhere = True
                logger.warning(
                    "Request %s was assigned a mentor concurrently: %s", request.request_id, failure.message
                )
                warnings.append(
                    f"{failure.code.value}: a mentor was assigned by a concurrent call; approval kept"
                )

            current = load_request(store, request.request_id)

        # Step 3: Notifications after everything committed. A successful
        # assignment already told the candidate, so only unassigned
        # approvals get the plain approval notice.
        assigned = assigned_elsewhere or (mentor_assignment is not None and mentor_assignment["assigned"])
        if not assigned:
            dispatch(
                services.notifier,
                outcome,
                recipients,
                "Application Approved",
                f"The application of {candidate_name(candidate)} was approved."
                + (f" Comment: {request.comment}" if request.comment else ""),
                NotificationPriority.HIGH.value,
            )
        if mentor_assignment is not None and not assigned:
            error = mentor_assignment["error"]
            warnings.append(f"{error['kind']}: {error['message']}")
            notify_allocation_unavailable(services, outcome, current["department"], request.request_id)

        data: Dict[str, Any] = {"request": RequestRecord.model_validate(current).model_dump()}
        if mentor_assignment is not None:
            data["mentor_assignment"] = mentor_assignment
        return WorkflowResponse(data=data, warnings=warnings, notifications=outcome.to_dict()).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("decide_request failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def final_approve(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Senior sign-off: APPROVED -> FINAL_APPROVED.

    Returns PRECONDITION_FAILED unless the request is APPROVED. The original
    submitter is notified, or every active coordinator when the submitter is
    unknown.
    """
    try:
        request = FinalApproveRequest.model_validate(args)
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            current = load_request(store, request.request_id)
            if current["status"] != RequestStatus.APPROVED.value:
                raise create_precondition_error(
                    f"Request {request.request_id} must be APPROVED for final approval "
                    f"(current status: {current['status']})"
                )

            fields: Dict[str, Any] = {
                "final_approved_by": request.reviewer_id,
                "final_approved_at": get_current_utc_timestamp(),
            }
            if request.comment is not None:
                fields["review_comment"] = request.comment
            _, after = transition_request(
                store,
                request.request_id,
                RequestStatus.FINAL_APPROVED.value,
                request.reviewer_id,
                "FINAL_APPROVE",
                fields,
            )
            candidate = load_candidate(store, after["candidate_id"])

        title = "Final Approval Granted"
        message = f"The internship of {candidate_name(candidate)} received final approval."
        if request.comment:
            message += f" Comment: {request.comment}"
        if after.get("submitted_by") is not None:
            dispatch(services.notifier, outcome, [after["submitted_by"]], title, message)
        else:
            notify_role(services, outcome, Role.COORDINATOR.value, title, message)

        return WorkflowResponse(
            data={"request": RequestRecord.model_validate(after).model_dump()},
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("final_approve failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def get_request(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """Read view of one request with its candidate, assignments and audit trail."""
    try:
        request = GetRequestRequest.model_validate(args)
        busy_timeout = services.busy_timeout if services is not None else None

        with RecordStore(request.db_path, busy_timeout=busy_timeout) as store:
            current = load_request(store, request.request_id)
            candidate = load_candidate(store, current["candidate_id"])
            assignments = store.list("assignment", {"request_id": request.request_id})
            trail = audit.list_trail(store, "request", request.request_id) if request.include_audit else None

        active = [a for a in assignments if a["status"] == AssignmentStatus.ACTIVE.value]
        data: Dict[str, Any] = {
            "request": RequestRecord.model_validate(current).model_dump(),
            "candidate": CandidateRecord.model_validate(candidate).model_dump(),
            "active_assignment": AssignmentRecord.model_validate(active[0]).model_dump() if active else None,
            "assignments": [AssignmentRecord.model_validate(a).model_dump() for a in assignments],
        }
        if trail is not None:
            data["audit_trail"] = trail
        return WorkflowResponse(data=data).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("get_request failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()
