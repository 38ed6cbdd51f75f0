"""
Audit recorder for workflow state changes.

Every mutating workflow operation appends one or more audit entries inside the
same store transaction as the change itself. An audit write failure is never
swallowed: it propagates, and the surrounding transaction rolls back.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from db.record_store import RecordStore
from models.errors import create_store_error
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


def _snapshot(state: Optional[Dict[str, Any]]) -> Optional[str]:
    if state is None:
        return None
    return json.dumps(state, sort_keys=True, default=str)


def record(
    store: RecordStore,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: Optional[int],
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Append one audit entry.

    Must be called inside an open store transaction so the entry commits or
    rolls back together with the change it describes.

    Args:
        store: Open RecordStore with an active transaction
        entity_type: Audited entity type (e.g. "request", "batch")
        entity_id: Audited entity id
        action: Action name (e.g. "SUBMIT", "APPROVE", "ROLLBACK")
        actor_id: User id performing the action, if known
        before: State snapshot before the change (None for creations)
        after: State snapshot after the change

    Returns:
        The stored audit entry

    Raises:
        WorkflowError: STORE_ERROR if called outside a transaction or the
            write fails
    """
    if not store.in_transaction:
        raise create_store_error("Audit entries must be written inside a transaction")

    entry = store.create(
        "audit_entry",
        {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor_id": actor_id,
            "created_at": get_current_utc_timestamp(),
            "before_json": _snapshot(before),
            "after_json": _snapshot(after),
        },
    )
    logger.debug("Audit %s %s#%s by %s", action, entity_type, entity_id, actor_id)
    return entry


def to_audit_view(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Decode stored snapshots for read views."""
    return {
        "id": entry["id"],
        "entity_type": entry["entity_type"],
        "entity_id": entry["entity_id"],
        "action": entry["action"],
        "actor_id": entry["actor_id"],
        "created_at": entry["created_at"],
        "before": json.loads(entry["before_json"]) if entry.get("before_json") else None,
        "after": json.loads(entry["after_json"]) if entry.get("after_json") else None,
    }


def list_trail(store: RecordStore, entity_type: str, entity_id: int) -> List[Dict[str, Any]]:
    """Audit entries of one entity, oldest first."""
    entries = store.list("audit_entry", {"entity_type": entity_type, "entity_id": entity_id})
    return [to_audit_view(e) for e in entries]
