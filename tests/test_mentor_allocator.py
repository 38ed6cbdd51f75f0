"""
Unit and property-based tests for mentor allocation.
"""

from fractions import Fraction

from hypothesis import given, strategies as st

from db.record_store import RecordStore
from utils.mentor_allocator import (
    DEFAULT_TIER_CAPACITY,
    list_department_mentors,
    resolve_capacity,
    select_least_loaded,
    select_mentor,
)


def mentor(id, active, capacity, employee_id=None):
    return {"id": id, "employee_id": employee_id or f"E{id:03d}", "active_count": active, "capacity": capacity}


@st.composite
def mentor_pools(draw):
    """Distinct mentors with arbitrary load snapshots."""
    size = draw(st.integers(min_value=0, max_value=12))
    ids = draw(st.lists(st.integers(min_value=1, max_value=500), min_size=size, max_size=size, unique=True))
    pool = []
    for mentor_id in ids:
        capacity = draw(st.integers(min_value=0, max_value=6))
        active = draw(st.integers(min_value=0, max_value=8))
        pool.append(mentor(mentor_id, active, capacity))
    return pool


class TestResolveCapacity:
    """Tests for per-mentor capacity resolution."""

    def test_explicit_capacity_wins(self):
        assert resolve_capacity({"capacity": 7, "tier": "PRINCIPAL"}) == 7

    def test_explicit_zero_capacity(self):
        assert resolve_capacity({"capacity": 0, "tier": "GENERAL"}) == 0

    def test_tier_defaults(self):
        assert resolve_capacity({"tier": "PRINCIPAL"}) == 2
        assert resolve_capacity({"tier": "SENIOR"}) == 3
        assert resolve_capacity({"tier": "GENERAL"}) == 4

    def test_missing_or_unknown_tier_is_general(self):
        assert resolve_capacity({}) == DEFAULT_TIER_CAPACITY["GENERAL"]
        assert resolve_capacity({"tier": "INTERN"}) == DEFAULT_TIER_CAPACITY["GENERAL"]

    def test_configured_tiers(self):
        tiers = {"PRINCIPAL": 1, "SENIOR": 2, "GENERAL": 5}
        assert resolve_capacity({"tier": "SENIOR"}, tiers) == 2
        assert resolve_capacity({"tier": None}, tiers) == 5


class TestSelectLeastLoaded:
    """Unit tests for the pure selection function."""

    def test_empty_pool(self):
        assert select_least_loaded([]) is None

    def test_lowest_ratio_wins(self):
        chosen = select_least_loaded([mentor(1, 2, 4), mentor(2, 1, 3)])
        assert chosen["id"] == 2
        assert chosen["load"] == 1 / 3

    def test_ratio_tie_prefers_fewer_trainees(self):
        # 2/4 and 1/2 are both half loaded
        chosen = select_least_loaded([mentor(1, 2, 4), mentor(2, 1, 2)])
        assert chosen["id"] == 2

    def test_full_tie_prefers_lowest_employee_id(self):
        chosen = select_least_loaded([mentor(1, 0, 3, "E200"), mentor(2, 0, 3, "E100")])
        assert chosen["id"] == 2

    def test_mentors_at_capacity_are_ineligible(self):
        assert select_least_loaded([mentor(1, 3, 3), mentor(2, 0, 0)]) is None

    def test_excluded_ids(self):
        chosen = select_least_loaded([mentor(1, 0, 3), mentor(2, 2, 3)], exclude_ids=[1])
        assert chosen["id"] == 2

    def test_input_not_mutated(self):
        pool = [mentor(1, 0, 3)]
        select_least_loaded(pool)
        assert "load" not in pool[0]


class TestSelectLeastLoadedProperties:
    """Properties of the greedy selection over arbitrary pools."""

    @given(pool=mentor_pools())
    def test_choice_is_under_capacity(self, pool):
        chosen = select_least_loaded(pool)
        if chosen is not None:
            assert chosen["active_count"] < chosen["capacity"]

    @given(pool=mentor_pools())
    def test_none_only_when_everyone_is_full(self, pool):
        chosen = select_least_loaded(pool)
        has_free_slot = any(m["active_count"] < m["capacity"] for m in pool)
        assert (chosen is not None) == has_free_slot

    @given(pool=mentor_pools())
    def test_no_eligible_mentor_has_lower_ratio(self, pool):
        chosen = select_least_loaded(pool)
        if chosen is None:
            return
        chosen_ratio = Fraction(chosen["active_count"], chosen["capacity"])
        for m in pool:
            if m["active_count"] < m["capacity"]:
                assert Fraction(m["active_count"], m["capacity"]) >= chosen_ratio

    @given(pool=mentor_pools(), data=st.data())
    def test_selection_ignores_input_order(self, pool, data):
        shuffled = data.draw(st.permutations(pool))
        first = select_least_loaded(pool)
        second = select_least_loaded(shuffled)
        assert (first or {}).get("id") == (second or {}).get("id")

    @given(pool=mentor_pools(), data=st.data())
    def test_excluded_mentor_never_chosen(self, pool, data):
        excluded = data.draw(st.lists(st.sampled_from([m["id"] for m in pool]), unique=True)) if pool else []
        chosen = select_least_loaded(pool, exclude_ids=excluded)
        if chosen is not None:
            assert chosen["id"] not in excluded


class TestSelectMentorFromStore:
    """Selection against live store state."""

    def test_counts_only_active_assignments(self, workflow):
        first = workflow.add_mentor(capacity=2)
        workflow.add_mentor(capacity=2)
        workflow.add_active_assignments(first, 1)
        with RecordStore(workflow.db_path) as store:
            with store.transaction():
                store.update_where("assignment", 1, {}, {"status": "COMPLETED"})
            chosen = select_mentor(store, "IT")

        # first mentor's only assignment is finished, so both are idle
        assert chosen["id"] == first
        assert chosen["active_count"] == 0

    def test_inactive_mentors_are_skipped(self, workflow):
        inactive = workflow.add_mentor()
        active = workflow.add_mentor()
        with RecordStore(workflow.db_path) as store:
            with store.transaction():
                store.update_where("user", inactive, {}, {"is_active": 0})
            chosen = select_mentor(store, "IT")

        assert chosen["id"] == active

    def test_department_snapshot_resolves_capacity(self, workflow):
        workflow.add_mentor(tier="SENIOR")
        workflow.add_mentor(tier="PRINCIPAL", capacity=5)
        with RecordStore(workflow.db_path) as store:
            mentors = list_department_mentors(store, "IT")

        assert [m["capacity"] for m in mentors] == [3, 5]
