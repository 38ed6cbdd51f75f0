"""
Integration tests for the MCP server entry point.

Checks tool registration and metadata, then drives a full request lifecycle
through the registered tool functions with the default services.
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

from db.record_store import RecordStore
from server import (
    assign_mentor_tool,
    begin_review_tool,
    complete_internship_tool,
    decide_batch_subset_tool,
    decide_request_tool,
    final_approve_tool,
    forward_batch_tool,
    get_batch_tool,
    get_request_tool,
    mcp,
    select_mentor_tool,
    start_internship_tool,
    submit_progress_report_tool,
    submit_request_tool,
)
from utils.services import get_services, shutdown_services

TOOL_NAMES = [
    "submit_request",
    "begin_review",
    "decide_request",
    "final_approve",
    "get_request",
    "forward_batch",
    "decide_batch_subset",
    "get_batch",
    "select_mentor",
    "assign_mentor",
    "start_internship",
    "complete_internship",
    "submit_progress_report",
]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "intake.db")
    yield path
    shutdown_services()


def seed_user(db_path, role, department="IT", employee_id=None, capacity=None):
    with RecordStore(db_path) as store:
        with store.transaction():
            user = store.create(
                "user",
                {
                    "employee_id": employee_id,
                    "first_name": role.title(),
                    "last_name": "Person",
                    "role": role,
                    "department": department,
                    "capacity": capacity,
                },
            )
    return user["id"]


def candidate(email):
    return {
        "first_name": "Alan",
        "last_name": "Turing",
        "email": email,
        "preferred_department": "IT",
        "requested_duration_weeks": 12,
    }


class TestServerRegistration:
    """Server metadata and tool registration."""

    def test_server_has_correct_name(self):
        assert mcp.name == "intakeflow-mcp-server"

    def test_server_name_can_be_overridden_by_env(self):
        server_dir = Path(__file__).resolve().parents[1]
        env = os.environ.copy()
        env["INTAKEFLOW_SERVER_NAME"] = "custom-server-name"
        env["PYTHONPATH"] = str(server_dir)

        proc = subprocess.run(
            [sys.executable, "-c", "import server; print(server.mcp.name)"],
            cwd=server_dir,
            env=env,
            capture_output=True,
            text=True,
            check=True,
        )

        assert proc.stdout.strip() == "custom-server-name"

    def test_server_has_instructions(self):
        assert "decide_request" in mcp.instructions
        assert "forward_batch" in mcp.instructions

    @pytest.mark.parametrize("name", TOOL_NAMES)
    def test_tool_is_registered(self, name):
        tool = mcp._tool_manager._tools[name]
        assert tool.name == name
        assert tool.description

    def test_no_unexpected_tools(self):
        assert sorted(mcp._tool_manager._tools) == sorted(TOOL_NAMES)


class TestToolFunctions:
    """Registered tool functions called directly."""

    def test_validation_error_envelope(self, db_path):
        result = begin_review_tool(request_id=0, reviewer_id=1, db_path=db_path)

        assert result == {
            "ok": False,
            "error": {
                "kind": "VALIDATION_ERROR",
                "message": "Invalid request_id: 0 must be a positive integer (>= 1)",
                "retryable": False,
            },
        }

    def test_unknown_request(self, db_path):
        result = get_request_tool(request_id=5, db_path=db_path)

        assert result["error"]["kind"] == "NOT_FOUND"

    def test_full_lifecycle(self, db_path):
        coordinator = seed_user(db_path, "COORDINATOR", department=None, employee_id="C1")
        head = seed_user(db_path, "DEPARTMENT_HOD", employee_id="H1")
        mentor = seed_user(db_path, "MENTOR", employee_id="M1", capacity=2)

        submitted = submit_request_tool(candidate=candidate("alan@example.edu"), submitted_by=coordinator, db_path=db_path)
        assert submitted["ok"] is True, submitted
        request_id = submitted["data"]["request"]["id"]
        candidate_id = submitted["data"]["candidate"]["id"]

        assert begin_review_tool(request_id=request_id, reviewer_id=coordinator, db_path=db_path)["ok"]

        # Hold the request at APPROVED so it can be forwarded first
        services = get_services(db_path)
        services.auto_assign_mentor = False
        decided = decide_request_tool(
            request_id=request_id, decision="APPROVE", reviewer_id=coordinator, db_path=db_path
        )
        assert decided["data"]["request"]["status"] == "APPROVED"

        signed = final_approve_tool(request_id=request_id, reviewer_id=head, db_path=db_path)
        assert signed["data"]["request"]["status"] == "FINAL_APPROVED"

        batch = forward_batch_tool(
            candidate_ids=[candidate_id], department="IT", from_coordinator_id=coordinator, db_path=db_path
        )
        batch_id = batch["data"]["batch"]["id"]
        assert batch["data"]["batch"]["forwarded_to"] == head

        decided = decide_batch_subset_tool(
            batch_id=batch_id, candidate_ids=[candidate_id], decision="APPROVE", reviewer_id=head, db_path=db_path
        )
        assert decided["data"]["batch"]["status"] == "APPROVED_BY_REVIEWER"
        assert get_batch_tool(batch_id=batch_id, db_path=db_path)["data"]["batch"]["status"] == "APPROVED_BY_REVIEWER"

        preview = select_mentor_tool(department="IT", db_path=db_path)
        assert preview["data"]["mentor"]["id"] == mentor

        assigned = assign_mentor_tool(request_id=request_id, assigned_by=coordinator, db_path=db_path)
        assignment = assigned["data"]["mentor_assignment"]["assignment"]
        assert assignment["mentor_id"] == mentor

        assert start_internship_tool(
            request_id=request_id, actor_id=mentor, start_date="2026-01-05", db_path=db_path
        )["ok"]
        reported = submit_progress_report_tool(
            assignment_id=assignment["id"],
            submitted_by=mentor,
            report_type="FINAL",
            title="Wrap-up",
            content="All milestones delivered.",
            progress_percentage=100,
            db_path=db_path,
        )
        assert reported["ok"] is True
        completed = complete_internship_tool(
            request_id=request_id, actor_id=mentor, end_date="2026-03-27", db_path=db_path
        )
        assert completed["data"]["request"]["status"] == "COMPLETED"

        view = get_request_tool(request_id=request_id, include_audit=True, db_path=db_path)
        actions = [e["action"] for e in view["data"]["audit_trail"]]
        assert actions == [
            "SUBMIT",
            "BEGIN_REVIEW",
            "APPROVE",
            "FINAL_APPROVE",
            "DEPARTMENT_APPROVE",
            "MENTOR_ASSIGNED",
            "START_INTERNSHIP",
            "COMPLETE_INTERNSHIP",
        ]
        assert view["data"]["active_assignment"] is None

    def test_in_app_notifications_are_stored(self, db_path):
        coordinator = seed_user(db_path, "COORDINATOR", department=None, employee_id="C1")

        result = submit_request_tool(candidate=candidate("kay@example.edu"), db_path=db_path)
        assert result["notifications"]["queued"] == 1

        services = get_services(db_path)
        services.notifier.flush(timeout=10)
        with RecordStore(db_path) as store:
            rows = store.list("notification", {"recipient_id": coordinator})
        assert [r["title"] for r in rows] == ["New Internship Request"]
