"""
Tests for the SQLite record store.

Covers schema bootstrap, keyed CRUD, conditional updates, transactions,
the append-only audit table and the capacity-guarded assignment insert.
"""

import os
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from db.record_store import RecordStore, resolve_db_path
from models.errors import ErrorCode, WorkflowError

TS = "2026-01-05T09:00:00.000Z"


def make_candidate(store, email="ada@example.edu", **extra):
    data = {"first_name": "Ada", "last_name": "Lovelace", "email": email, "created_at": TS}
    data.update(extra)
    return store.create("candidate", data)


def make_request(store, candidate_id, status="SUBMITTED"):
    return store.create(
        "request",
        {
            "candidate_id": candidate_id,
            "status": status,
            "department": "IT",
            "submitted_at": TS,
            "updated_at": TS,
        },
    )


def make_mentor(store, employee_id="M1"):
    return store.create(
        "user",
        {"employee_id": employee_id, "first_name": "M", "last_name": "Entor", "role": "MENTOR", "department": "IT"},
    )


class TestResolveDbPath:
    """Tests for database path resolution."""

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "x.db"
        assert resolve_db_path(str(path)) == path

    def test_env_override(self, tmp_path):
        with patch.dict(os.environ, {"INTAKEFLOW_DB": str(tmp_path / "env.db")}, clear=True):
            assert resolve_db_path() == tmp_path / "env.db"

    def test_root_env(self):
        with patch.dict(os.environ, {"INTAKEFLOW_ROOT": "/srv/intake"}, clear=True):
            assert resolve_db_path() == Path("/srv/intake/data/intake.db")

    def test_default_is_repo_relative(self):
        with patch.dict(os.environ, {}, clear=True):
            path = resolve_db_path()
        assert path.is_absolute()
        assert path.parts[-2:] == ("data", "intake.db")


class TestSchemaBootstrap:
    """Schema creation on connect."""

    def test_tables_created(self, temp_db):
        with RecordStore(temp_db) as store:
            rows = store.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        names = {r[0] for r in rows}
        assert {
            "users", "candidates", "requests", "forwarded_batches", "batch_candidates",
            "assignments", "audit_entries", "notifications", "progress_reports",
        } <= names

    def test_bootstrap_is_idempotent(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                make_candidate(store)
        with RecordStore(temp_db) as store:
            assert store.count("candidate") == 1

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "intake.db"
        with RecordStore(str(path)):
            pass
        assert path.exists()


class TestCrud:
    """Keyed create/get/list/count."""

    def test_create_and_get(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                created = make_candidate(store, phone="555-0100")
            fetched = store.get("candidate", created["id"])
        assert fetched == created
        assert fetched["phone"] == "555-0100"

    def test_get_missing_returns_none(self, temp_db):
        with RecordStore(temp_db) as store:
            assert store.get("request", 42) is None

    def test_unknown_entity_type(self, temp_db):
        with RecordStore(temp_db) as store:
            with pytest.raises(WorkflowError) as exc_info:
                store.get("invoice", 1)
        assert exc_info.value.code == ErrorCode.STORE_ERROR

    def test_unknown_column(self, temp_db):
        with RecordStore(temp_db) as store:
            with pytest.raises(WorkflowError) as exc_info:
                store.list("candidate", {"favourite_colour": "blue"})
        assert "favourite_colour" in exc_info.value.message

    def test_duplicate_email_is_validation_error(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                make_candidate(store)
            with pytest.raises(WorkflowError) as exc_info:
                with store.transaction():
                    make_candidate(store)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_list_filters(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                a = make_candidate(store, "a@example.edu", course="CS")
                b = make_candidate(store, "b@example.edu")
                c = make_candidate(store, "c@example.edu", course="EE")

            assert [r["id"] for r in store.list("candidate", {"course": None})] == [b["id"]]
            assert [r["id"] for r in store.list("candidate", {"course": ["CS", "EE"]})] == [a["id"], c["id"]]
            assert store.list("candidate", {"course": []}) == []
            assert store.count("candidate", {"course": "CS"}) == 1

    def test_list_order_by(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                make_candidate(store, "z@example.edu", last_name="Zed")
                make_candidate(store, "y@example.edu", last_name="Abel")
            names = [r["last_name"] for r in store.list("candidate", order_by="last_name")]
        assert names == ["Abel", "Zed"]


class TestUpdateWhere:
    """Conditional updates."""

    def test_matching_update_applies(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                request = make_request(store, make_candidate(store)["id"])
                updated = store.update_where(
                    "request", request["id"], {"status": "SUBMITTED"}, {"status": "UNDER_REVIEW"}
                )
            assert updated is True
            assert store.get("request", request["id"])["status"] == "UNDER_REVIEW"

    def test_stale_expectation_is_a_no_op(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                request = make_request(store, make_candidate(store)["id"], status="APPROVED")
                updated = store.update_where(
                    "request", request["id"], {"status": "UNDER_REVIEW"}, {"status": "REJECTED"}
                )
            assert updated is False
            assert store.get("request", request["id"])["status"] == "APPROVED"

    def test_missing_record(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                assert store.update_where("request", 99, {}, {"status": "REJECTED"}) is False

    def test_requires_fields(self, temp_db):
        with RecordStore(temp_db) as store:
            with pytest.raises(WorkflowError):
                store.update_where("request", 1, {}, {})


class TestTransactions:
    """Explicit transaction handling."""

    def test_exception_rolls_back(self, temp_db):
        with RecordStore(temp_db) as store:
            with pytest.raises(RuntimeError):
                with store.transaction():
                    make_candidate(store)
                    raise RuntimeError("boom")
            assert store.in_transaction is False
            assert store.count("candidate") == 0

    def test_context_exit_rolls_back_open_transaction(self, temp_db):
        with pytest.raises(RuntimeError):
            with RecordStore(temp_db) as store:
                store.begin()
                make_candidate(store)
                raise RuntimeError("boom")
        with RecordStore(temp_db) as store:
            assert store.count("candidate") == 0

    def test_nested_begin_is_a_no_op(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                store.begin()
                make_candidate(store)
            assert store.in_transaction is False
            assert store.count("candidate") == 1

    def test_write_lock_timeout_is_retryable(self, temp_db):
        with RecordStore(temp_db) as holder:
            holder.begin()
            with pytest.raises(WorkflowError) as exc_info:
                with RecordStore(temp_db, busy_timeout=0.05) as other:
                    other.begin()
            holder.rollback()
        assert exc_info.value.code == ErrorCode.STORE_ERROR
        assert exc_info.value.retryable is True


class TestConstraints:
    """Schema-level invariants."""

    def test_one_open_request_per_candidate(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                candidate = make_candidate(store)
                make_request(store, candidate["id"])
            with pytest.raises(WorkflowError) as exc_info:
                with store.transaction():
                    make_request(store, candidate["id"])
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_closed_requests_do_not_block_new_ones(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                candidate = make_candidate(store)
                make_request(store, candidate["id"], status="REJECTED")
                make_request(store, candidate["id"])
            assert store.count("request", {"candidate_id": candidate["id"]}) == 2

    def test_audit_entries_are_append_only(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                entry = store.create(
                    "audit_entry",
                    {"entity_type": "request", "entity_id": 1, "action": "SUBMIT", "created_at": TS},
                )
            with pytest.raises(WorkflowError):
                store.update_where("audit_entry", entry["id"], {}, {"action": "EDITED"})
            with pytest.raises(sqlite3.DatabaseError):
                store.conn.execute("UPDATE audit_entries SET action = 'EDITED'")
            with pytest.raises(sqlite3.DatabaseError):
                store.conn.execute("DELETE FROM audit_entries")
            assert store.get("audit_entry", entry["id"])["action"] == "SUBMIT"


class TestInsertAssignmentWithinCapacity:
    """Capacity-guarded assignment insert."""

    def _setup(self, store, count):
        mentor = make_mentor(store)
        requests = []
        for i in range(count):
            candidate = make_candidate(store, f"c{i}@example.edu")
            requests.append(make_request(store, candidate["id"], status="APPROVED"))
        return mentor, requests

    def test_inserts_while_under_capacity(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                mentor, requests = self._setup(store, 1)
                assignment = store.insert_assignment_within_capacity(
                    requests[0]["id"], mentor["id"], capacity=1, assigned_at=TS, notes="first"
                )
        assert assignment["status"] == "ACTIVE"
        assert assignment["notes"] == "first"

    def test_refuses_when_full(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                mentor, requests = self._setup(store, 2)
                store.insert_assignment_within_capacity(requests[0]["id"], mentor["id"], 1, TS)
                second = store.insert_assignment_within_capacity(requests[1]["id"], mentor["id"], 1, TS)
            assert second is None
            assert store.count("assignment") == 1

    def test_finished_assignments_free_capacity(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                mentor, requests = self._setup(store, 2)
                first = store.insert_assignment_within_capacity(requests[0]["id"], mentor["id"], 1, TS)
                store.update_where("assignment", first["id"], {}, {"status": "COMPLETED"})
                second = store.insert_assignment_within_capacity(requests[1]["id"], mentor["id"], 1, TS)
        assert second is not None

    def test_mentor_loads(self, temp_db):
        with RecordStore(temp_db) as store:
            with store.transaction():
                mentor, requests = self._setup(store, 2)
                for request in requests:
                    store.insert_assignment_within_capacity(request["id"], mentor["id"], 5, TS)
            loads = store.list_mentor_loads("IT")
        assert [(m["id"], m["active_count"]) for m in loads] == [(mentor["id"], 2)]
