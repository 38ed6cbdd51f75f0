"""
Read-current, write-conditional helpers for request records.

Every status change reads the current record, checks the transition policy,
and then updates with ``WHERE status = <status that was read>``. A write that
matches zero rows means another caller moved the request first.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from db.record_store import RecordStore
from models.errors import create_concurrent_modification_error, create_not_found_error
from models.status import RequestStatus
from utils import audit
from utils.transition_policy import check_transition_or_raise
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def load_request(store: RecordStore, request_id: int) -> Record:
    request = store.get("request", request_id)
    if request is None:
        raise create_not_found_error("Request", request_id)
    return request


def load_candidate(store: RecordStore, candidate_id: int) -> Record:
    candidate = store.get("candidate", candidate_id)
    if candidate is None:
        raise create_not_found_error("Candidate", candidate_id)
    return candidate


def candidate_name(candidate: Record) -> str:
    return f"{candidate['first_name']} {candidate['last_name']}"


def candidate_recipient(candidate: Record, request: Record) -> Optional[int]:
    """User id that receives candidate-facing notifications."""
    if candidate.get("user_id") is not None:
        return candidate["user_id"]
    return request.get("submitted_by")


def transition_request(
    store: RecordStore,
    request_id: int,
    target_status: str,
    actor_id: Optional[int],
    action: str,
    fields: Optional[Dict[str, Any]] = None,
    extra_writes: Optional[Callable[[RecordStore, Record, Record], None]] = None,
) -> Tuple[Record, Record]:
    """
    Move one request along an edge of the state graph.

    Args:
        store: Open store, not inside a transaction
        request_id: Request to transition
        target_status: Desired status
        actor_id: User performing the transition (audited)
        action: Audit action name
        fields: Additional request columns to set
        extra_writes: Called inside the same transaction after the status
            write with (store, before, after)

    Returns:
        (before, after) request snapshots

    Raises:
        WorkflowError: NOT_FOUND, INVALID_TRANSITION, CONCURRENT_MODIFICATION
            or STORE_ERROR; nothing is written on failure
    """
    before = load_request(store, request_id)
    check_transition_or_raise(before["status"], target_status)

    new_fields = dict(fields or {})
    new_fields["status"] = target_status
    new_fields["updated_at"] = get_current_utc_timestamp()

    with store.transaction():
        updated = store.update_where(
            "request", request_id, {"status": before["status"]}, new_fields
        )
        if not updated:
            raise create_concurrent_modification_error("Request", request_id, before["status"])
        after = load_request(store, request_id)
        audit.record(store, "request", request_id, action, actor_id, before, after)
        if extra_writes is not None:
            extra_writes(store, before, after)

    logger.info(
        "Request %s: %s -> %s (%s by %s)",
        request_id, before["status"], target_status, action, actor_id,
    )
    return before, after


def find_open_requests(store: RecordStore, candidate_id: int, statuses: Iterable[str]) -> List[Record]:
    """Requests of a candidate currently in any of ``statuses``, oldest first."""
    return store.list(
        "request",
        {"candidate_id": candidate_id, "status": [RequestStatus(s).value for s in statuses]},
    )
