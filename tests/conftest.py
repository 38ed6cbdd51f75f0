"""
Shared fixtures for workflow tests.

Provides a temporary SQLite database, in-memory fakes for the notifier and
directory collaborators, and a small harness that drives requests through
the public tool handlers.
"""

import os
import tempfile
import threading

import pytest

from db.record_store import RecordStore
from models.status import Role
from tools.approval_workflow import begin_review, decide_request, submit_request
from utils.directory import Directory
from utils.notifier import Notifier
from utils.services import WorkflowServices
from utils.validation import get_current_utc_timestamp


class RecordingNotifier(Notifier):
    """Notifier fake that keeps every notification in memory."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()

    def notify(self, recipient_id, title, message, priority="MEDIUM"):
        if recipient_id in self.fail_for:
            raise RuntimeError("notification channel unavailable")
        with self._lock:
            self.sent.append(
                {"recipient_id": recipient_id, "title": title, "message": message, "priority": priority}
            )

    def titles(self):
        return [n["title"] for n in self.sent]

    def recipients(self, title):
        return [n["recipient_id"] for n in self.sent if n["title"] == title]


class StaticDirectory(Directory):
    """Directory fake with fixed role holders."""

    def __init__(self, roles=None, provision_error=None, account_id=None):
        # {(role, department or None): [user ids]}
        self.roles = dict(roles or {})
        self.provision_error = provision_error
        self.account_id = account_id
        self.provisioned = []

    def resolve_reviewer(self, role, department=None):
        role = Role(role).value
        if (role, department) in self.roles:
            return list(self.roles[(role, department)])
        return list(self.roles.get((role, None), []))

    def provision_trainee(self, candidate):
        if self.provision_error is not None:
            raise self.provision_error
        self.provisioned.append(candidate["id"])
        return self.account_id


@pytest.fixture
def temp_db():
    """Create a temporary database file; the store bootstraps the schema."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    yield path

    # Cleanup
    try:
        os.unlink(path)
    except OSError:
        pass


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def directory():
    return StaticDirectory(roles={(Role.COORDINATOR.value, None): []})


@pytest.fixture
def services(notifier, directory):
    return WorkflowServices(notifier=notifier, directory=directory, busy_timeout=10)


class WorkflowHarness:
    """Seeds users and moves requests through the workflow via the tools."""

    def __init__(self, db_path, services):
        self.db_path = db_path
        self.services = services
        self._counter = 0

    def add_user(self, role, department=None, tier=None, capacity=None, employee_id=None, first_name="Test"):
        self._counter += 1
        with RecordStore(self.db_path) as store:
            with store.transaction():
                user = store.create(
                    "user",
                    {
                        "employee_id": employee_id or f"E{self._counter:04d}",
                        "first_name": first_name,
                        "last_name": f"User{self._counter}",
                        "email": f"user{self._counter}@example.com",
                        "role": Role(role).value,
                        "department": department,
                        "tier": tier,
                        "capacity": capacity,
                        "is_active": 1,
                        "created_at": get_current_utc_timestamp(),
                    },
                )
        return user["id"]

    def add_mentor(self, department="IT", tier="GENERAL", capacity=None, employee_id=None):
        return self.add_user(Role.MENTOR, department, tier, capacity, employee_id)

    def add_active_assignments(self, mentor_id, count):
        """Give a mentor ``count`` ACTIVE assignments on throwaway requests."""
        for _ in range(count):
            request_id = self.approved(auto_assign=False)
            with RecordStore(self.db_path) as store:
                with store.transaction():
                    store.create(
                        "assignment",
                        {
                            "request_id": request_id,
                            "mentor_id": mentor_id,
                            "status": "ACTIVE",
                            "assigned_at": get_current_utc_timestamp(),
                        },
                    )
                    store.update_where("request", request_id, {}, {"status": "MENTOR_ASSIGNED"})

    def candidate_payload(self, **overrides):
        self._counter += 1
        payload = {
            "first_name": "Cand",
            "last_name": f"Idate{self._counter}",
            "email": f"candidate{self._counter}@example.edu",
            "preferred_department": "IT",
            "institution": "State University",
            "requested_duration_weeks": 12,
        }
        payload.update(overrides)
        return payload

    def submit(self, submitted_by=None, **candidate):
        args = {"candidate": self.candidate_payload(**candidate), "db_path": self.db_path}
        if submitted_by is not None:
            args["submitted_by"] = submitted_by
        result = submit_request(args, self.services)
        assert result["ok"], result
        return result["data"]["request"]["id"]

    def under_review(self, reviewer_id=900, submitted_by=None, **candidate):
        request_id = self.submit(submitted_by=submitted_by, **candidate)
        result = begin_review(
            {"request_id": request_id, "reviewer_id": reviewer_id, "db_path": self.db_path},
            self.services,
        )
        assert result["ok"], result
        return request_id

    def approved(self, reviewer_id=900, submitted_by=None, auto_assign=False, **candidate):
        request_id = self.under_review(reviewer_id, submitted_by, **candidate)
        previous = self.services.auto_assign_mentor
        self.services.auto_assign_mentor = auto_assign
        try:
            result = decide_request(
                {
                    "request_id": request_id,
                    "decision": "APPROVE",
                    "reviewer_id": reviewer_id,
                    "db_path": self.db_path,
                },
                self.services,
            )
        finally:
            self.services.auto_assign_mentor = previous
        assert result["ok"], result
        return request_id

    def request(self, request_id):
        with RecordStore(self.db_path) as store:
            return store.get("request", request_id)

    def records(self, entity_type, filters=None):
        with RecordStore(self.db_path) as store:
            return store.list(entity_type, filters)


@pytest.fixture
def workflow(temp_db, services):
    return WorkflowHarness(temp_db, services)
