"""
Mentor allocation: pick the least-loaded eligible mentor of a department.

Greedy, one assignment at a time. Load is the fraction of a mentor's capacity
in use; ties go to the mentor with fewer active trainees, then to the lowest
employee id, then to the lowest user id, so the choice is reproducible.
"""

from fractions import Fraction
from typing import Any, Dict, Iterable, List, Mapping, Optional

from db.record_store import RecordStore
from models.status import MentorTier

DEFAULT_TIER_CAPACITY: Dict[str, int] = {
    MentorTier.PRINCIPAL.value: 2,
    MentorTier.SENIOR.value: 3,
    MentorTier.GENERAL.value: 4,
}


def resolve_capacity(mentor: Mapping[str, Any], tier_capacity: Optional[Mapping[str, int]] = None) -> int:
    """
    Capacity of one mentor: explicit per-mentor value, else the tier default.

    Unknown or missing tiers fall back to the GENERAL default.
    """
    if mentor.get("capacity") is not None:
        return int(mentor["capacity"])
    capacities = tier_capacity or DEFAULT_TIER_CAPACITY
    tier = mentor.get("tier") or MentorTier.GENERAL.value
    if tier in capacities:
        return int(capacities[tier])
    return int(capacities.get(MentorTier.GENERAL.value, DEFAULT_TIER_CAPACITY[MentorTier.GENERAL.value]))


def _sort_key(mentor: Mapping[str, Any]):
    employee_id = mentor.get("employee_id")
    return (
        Fraction(mentor["active_count"], mentor["capacity"]),
        mentor["active_count"],
        employee_id is None,
        employee_id or "",
        mentor["id"],
    )


def select_least_loaded(
    mentors: Iterable[Mapping[str, Any]],
    exclude_ids: Optional[Iterable[int]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Pure selection over mentor load snapshots.

    Args:
        mentors: Dicts with id, employee_id, active_count and resolved capacity
        exclude_ids: Mentor ids that must not be chosen

    Returns:
        The chosen mentor (with a ``load`` key added), or None when no
        mentor is under capacity

    Examples:
        >>> select_least_loaded([
        ...     {"id": 1, "employee_id": "E1", "active_count": 2, "capacity": 4},
        ...     {"id": 2, "employee_id": "E2", "active_count": 1, "capacity": 3},
        ... ])["id"]
        2
    """
    excluded = set(exclude_ids or ())
    eligible: List[Mapping[str, Any]] = [
        m for m in mentors
        if m["id"] not in excluded and m["capacity"] > 0 and m["active_count"] < m["capacity"]
    ]
    if not eligible:
        return None

    chosen = dict(min(eligible, key=_sort_key))
    chosen["load"] = chosen["active_count"] / chosen["capacity"]
    return chosen


def list_department_mentors(
    store: RecordStore,
    department: str,
    tier_capacity: Optional[Mapping[str, int]] = None,
) -> List[Dict[str, Any]]:
    """Current load snapshot of every active mentor in a department."""
    mentors = []
    for row in store.list_mentor_loads(department):
        mentor = dict(row)
        mentor["capacity"] = resolve_capacity(row, tier_capacity)
        mentors.append(mentor)
    return mentors


def select_mentor(
    store: RecordStore,
    department: str,
    exclude_ids: Optional[Iterable[int]] = None,
    tier_capacity: Optional[Mapping[str, int]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Select the least-loaded mentor of a department from current store state.

    Returns:
        Chosen mentor snapshot, or None if no mentor has free capacity
    """
    return select_least_loaded(list_department_mentors(store, department, tier_capacity), exclude_ids)
