"""
MCP tool handlers for forwarding approved candidates to a department reviewer.

A coordinator forwards an ordered list of approved candidates as one batch.
The reviewer decides any subset at a time; each member carries its own
decision in the batch_candidates side table and the batch status is derived
from those decisions on every read.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from db.record_store import RecordStore
from models.errors import (
    WorkflowError,
    create_already_decided_error,
    create_concurrent_modification_error,
    create_internal_error,
    create_invalid_candidate_state_error,
    create_invalid_subset_error,
    create_not_found_error,
    create_precondition_error,
    create_validation_error,
)
from models.status import (
    APPROVED_REQUEST_STATUSES,
    Decision,
    NotificationPriority,
    RequestStatus,
    Role,
)
from schemas.batch_forwarding import (
    DecideBatchSubsetRequest,
    ForwardBatchRequest,
    GetBatchRequest,
)
from schemas.common import WorkflowResponse
from schemas.records import BatchMemberRecord, BatchRecord
from utils import audit
from utils.batch_status import derive_batch_status, summarize_decisions
from utils.notifier import NotificationOutcome, dispatch
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.request_transitions import candidate_name, find_open_requests
from utils.services import WorkflowServices, get_services
from utils.transition_policy import check_transition_or_raise
from utils.validation import get_current_utc_timestamp, validate_id_list

logger = logging.getLogger(__name__)


def read_batch(store: RecordStore, batch_id: int) -> Dict[str, Any]:
    """
    Load a batch with its ordered members and derived status.

    Raises:
        WorkflowError: NOT_FOUND for unknown batch ids
    """
    batch = store.get("batch", batch_id)
    if batch is None:
        raise create_not_found_error("Batch", batch_id)

    members = store.list("batch_candidate", {"batch_id": batch_id}, order_by="position")
    view = BatchRecord(
        **batch,
        status=derive_batch_status(m["decision"] for m in members).value,
        candidate_ids=[m["candidate_id"] for m in members],
        members=[BatchMemberRecord.model_validate(m) for m in members],
        summary=summarize_decisions(members),
    )
    return view.model_dump()


def _candidate_names(store: RecordStore, candidate_ids: List[int]) -> List[str]:
    names = []
    for candidate_id in candidate_ids:
        candidate = store.get("candidate", candidate_id)
        names.append(candidate_name(candidate) if candidate else f"candidate #{candidate_id}")
    return names


def _held_by_another_batch(store: RecordStore, request_id: int) -> bool:
    """True while a batch holds the request undecided or approved."""
    memberships = store.list("batch_candidate", {"request_id": request_id})
    return any(m["decision"] in (None, Decision.APPROVE.value) for m in memberships)


def _resolve_department_reviewer(services: WorkflowServices, department: str) -> int:
    reviewers = services.directory.resolve_reviewer(Role.DEPARTMENT_HOD.value, department)
    if not reviewers:
        raise create_precondition_error(
            f"No active department head found for department '{department}'"
        )
    return reviewers[0]


def forward_batch(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Forward approved candidates to a department reviewer as one batch.

    Every candidate must have a request in APPROVED or FINAL_APPROVED that
    no other batch still holds undecided or approved; otherwise nothing is
    created and INVALID_CANDIDATE_STATE lists the offending candidate ids in
    input order.

    Args:
        args: Dictionary containing parameters:
            - candidate_ids (list[int]): Ordered, duplicate-free candidate ids
            - department (str): Target department
            - from_coordinator_id (int): Forwarding coordinator
            - to_reviewer_id (int, optional): Reviewer; resolved as the
              department head when omitted
            - comment (str, optional): Note for the reviewer
            - db_path (str, optional): Database path override
        services: Optional injected collaborators

    Returns:
        Success envelope with ``data.batch`` (status PENDING_REVIEW), or a
        failure envelope
    """
    try:
        # Step 1: Validate request shape and candidate list
        request = ForwardBatchRequest.model_validate(args)
        candidate_ids = validate_id_list(request.candidate_ids)
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()

        # Step 2: Resolve the addressee
        reviewer_id = request.to_reviewer_id
        if reviewer_id is None:
            reviewer_id = _resolve_department_reviewer(services, request.department)

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            # Step 3: Check every candidate and create the batch under one lock
            with store.transaction():
                members = []
                offending = []
                held = []
                for candidate_id in candidate_ids:
                    approved = find_open_requests(store, candidate_id, APPROVED_REQUEST_STATUSES)
                    if not approved:
                        offending.append(candidate_id)
                    elif _held_by_another_batch(store, approved[0]["id"]):
                        held.append(candidate_id)
                    else:
                        members.append((candidate_id, approved[0]["id"]))
                if offending:
                    raise create_invalid_candidate_state_error(offending)
                if held:
                    raise create_invalid_candidate_state_error(
                        held, "already pending or approved in another batch"
                    )

                timestamp = get_current_utc_timestamp()
                batch = store.create(
                    "batch",
                    {
                        "department": request.department,
                        "forwarded_by": request.from_coordinator_id,
                        "forwarded_to": reviewer_id,
                        "comment": request.comment,
                        "created_at": timestamp,
                        "updated_at": timestamp,
                    },
                )
                for position, (candidate_id, request_id) in enumerate(members):
                    store.create(
                        "batch_candidate",
                        {
                            "batch_id": batch["id"],
                            "position": position,
                            "candidate_id": candidate_id,
                            "request_id": request_id,
                        },
                    )
                view = read_batch(store, batch["id"])
                audit.record(
                    store, "batch", batch["id"], "FORWARD", request.from_coordinator_id, None, view
                )

            names = _candidate_names(store, candidate_ids)

        logger.info(
            "Batch %s forwarded to %s with %d candidate(s)", batch["id"], reviewer_id, len(candidate_ids)
        )

        # Step 4: Notify the reviewer with the full candidate list
        message = (
            f"{len(names)} approved candidate(s) for {request.department} were forwarded "
            f"for your review (batch #{batch['id']}): {', '.join(names)}."
        )
        if request.comment:
            message += f" Comment: {request.comment}"
        dispatch(
            services.notifier,
            outcome,
            [reviewer_id],
            "Approved Candidate Details Received",
            message,
            NotificationPriority.HIGH.value,
        )

        return WorkflowResponse(data={"batch": view}, notifications=outcome.to_dict()).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("forward_batch failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def _check_subset(batch: Dict[str, Any], members: Dict[int, Dict[str, Any]], candidate_ids: List[int]) -> None:
    """Membership and already-decided checks; raises before any write."""
    outsiders = [c for c in candidate_ids if c not in members]
    if outsiders:
        raise create_invalid_subset_error(
            f"Candidates are not members of batch {batch['id']}: "
            + ", ".join(str(c) for c in outsiders),
            outsiders,
        )
    decided = [c for c in candidate_ids if members[c]["decision"] is not None]
    if decided:
        raise create_already_decided_error(decided)


def decide_batch_subset(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """
    Record the reviewer's decision for a subset of a batch.

    All checks run before any write; then each candidate's side-table
    decision, request update and audit entry are written in one transaction.
    APPROVE keeps the request in APPROVED/FINAL_APPROVED and records the
    reviewer; REJECT moves it to REJECTED.

    Args:
        args: Dictionary containing parameters:
            - batch_id (int): Forwarded batch
            - candidate_ids (list[int]): Members to decide
            - decision (str): APPROVE or REJECT
            - reviewer_id (int): Must be the batch addressee
            - comment (str, optional): Decision comment
            - db_path (str, optional): Database path override
        services: Optional injected collaborators

    Returns:
        Success envelope with ``data.batch`` (re-derived status) and
        ``data.decided``, or a failure envelope
    """
    try:
        request = DecideBatchSubsetRequest.model_validate(args)
        try:
            candidate_ids = validate_id_list(request.candidate_ids)
        except WorkflowError as e:
            raise create_invalid_subset_error(e.message) from e
        services = services or get_services(request.db_path)
        outcome = NotificationOutcome()
        approve = request.decision == Decision.APPROVE.value

        with RecordStore(request.db_path, busy_timeout=services.busy_timeout) as store:
            with store.transaction():
                # Step 1: Checks under the write lock, before any write
                batch = store.get("batch", request.batch_id)
                if batch is None:
                    raise create_not_found_error("Batch", request.batch_id)
                if batch["forwarded_to"] != request.reviewer_id:
                    raise create_validation_error(
                        f"Invalid reviewer_id: user {request.reviewer_id} is not the reviewer "
                        f"of batch {request.batch_id}"
                    )

                members = {
                    m["candidate_id"]: m
                    for m in store.list("batch_candidate", {"batch_id": request.batch_id})
                }
                _check_subset(batch, members, candidate_ids)

                requests = {c: store.get("request", members[c]["request_id"]) for c in candidate_ids}
                offending = [
                    c for c in candidate_ids
                    if requests[c] is None or requests[c]["status"] not in APPROVED_REQUEST_STATUSES
                ]
                if offending:
                    raise create_invalid_candidate_state_error(offending)

                # Step 2: Per-candidate writes
                timestamp = get_current_utc_timestamp()
                for candidate_id in candidate_ids:
                    member = members[candidate_id]
                    before = requests[candidate_id]

                    recorded = store.update_where(
                        "batch_candidate",
                        member["id"],
                        {"decision": None},
                        {
                            "decision": request.decision,
                            "decided_by": request.reviewer_id,
                            "decided_at": timestamp,
                            "comment": request.comment,
                        },
                    )
                    if not recorded:
                        raise create_already_decided_error([candidate_id])

                    fields: Dict[str, Any] = {
                        "reviewer_id": request.reviewer_id,
                        "review_comment": request.comment,
                        "reviewed_at": timestamp,
                        "updated_at": timestamp,
                    }
                    if not approve:
                        check_transition_or_raise(before["status"], RequestStatus.REJECTED.value)
                        fields["status"] = RequestStatus.REJECTED.value
                    if not store.update_where("request", before["id"], {"status": before["status"]}, fields):
                        raise create_concurrent_modification_error("Request", before["id"], before["status"])

                    after = store.get("request", before["id"])
                    audit.record(
                        store,
                        "request",
                        before["id"],
                        "DEPARTMENT_APPROVE" if approve else "DEPARTMENT_REJECT",
                        request.reviewer_id,
                        before,
                        after,
                    )

                store.update_where("batch", request.batch_id, {}, {"updated_at": timestamp})
                view = read_batch(store, request.batch_id)
                audit.record(
                    store,
                    "batch",
                    request.batch_id,
                    "DECIDE_SUBSET",
                    request.reviewer_id,
                    {"candidate_ids": candidate_ids, "decision": None},
                    {"candidate_ids": candidate_ids, "decision": request.decision, "status": view["status"]},
                )

            names = _candidate_names(store, candidate_ids)

        logger.info(
            "Batch %s: %s %d candidate(s); status %s",
            request.batch_id, request.decision, len(candidate_ids), view["status"],
        )

        # Step 3: Notify the forwarding coordinator
        verb = "approved" if approve else "rejected"
        summary = view["summary"]
        message = (
            f"{len(names)} candidate(s) {verb} for {batch['department']} in batch "
            f"#{request.batch_id}: {', '.join(names)}. Batch status: {view['status']} "
            f"({summary['approved']} approved, {summary['rejected']} rejected, "
            f"{summary['pending']} pending)."
        )
        if request.comment:
            message += f" Comment: {request.comment}"
        dispatch(
            services.notifier,
            outcome,
            [batch["forwarded_by"]],
            f"Candidates {verb.capitalize()} by Department Head",
            message,
        )

        return WorkflowResponse(
            data={"batch": view, "decided": candidate_ids, "decision": request.decision},
            notifications=outcome.to_dict(),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("decide_batch_subset failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()


def get_batch(args: Dict[str, Any], services: Optional[WorkflowServices] = None) -> Dict[str, Any]:
    """Read view of a batch with its derived status and audit trail."""
    try:
        request = GetBatchRequest.model_validate(args)
        busy_timeout = services.busy_timeout if services is not None else None

        with RecordStore(request.db_path, busy_timeout=busy_timeout) as store:
            view = read_batch(store, request.batch_id)
            trail = audit.list_trail(store, "batch", request.batch_id)

        return WorkflowResponse(data={"batch": view, "audit_trail": trail}).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except WorkflowError as e:
        return e.to_dict()

    except Exception as e:
        logger.exception("get_batch failed")
        return create_internal_error(message=str(e), original_error=e).to_dict()
