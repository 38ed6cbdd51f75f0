#!/usr/bin/env python3
"""
MCP Server entry point for the IntakeFlow workflow engine.

Exposes the trainee intake workflow (request approval, batch forwarding to
department reviewers, mentor allocation and internship progress) as MCP
tools over stdio.

Usage:
    python server.py

The server runs in stdio mode by default, which is the standard transport
for MCP servers that are invoked by LLM agents.
"""

import logging
from mcp.server.fastmcp import FastMCP
from tools.approval_workflow import (
    begin_review,
    decide_request,
    final_approve,
    get_request,
    submit_request,
)
from tools.batch_forwarding import decide_batch_subset, forward_batch, get_batch
from tools.mentor_assignment import assign_mentor, select_mentor
from tools.internship_progress import (
    complete_internship,
    start_internship,
    submit_progress_report,
)
from utils.services import shutdown_services
from config import get_config

# Create FastMCP server instance
config = get_config()
mcp = FastMCP(
    name=config.server_name,
    instructions=(
        "This server runs the internship intake workflow. "
        "\n\n"
        "REQUEST LIFECYCLE:\n"
        "SUBMITTED -> UNDER_REVIEW -> APPROVED | REJECTED; APPROVED -> FINAL_APPROVED; "
        "APPROVED | FINAL_APPROVED -> MENTOR_ASSIGNED -> IN_PROGRESS -> COMPLETED. "
        "Use submit_request, begin_review and decide_request for coordinator review. "
        "Approving a request also assigns the least-loaded mentor of its department when "
        "auto-assignment is enabled. Use final_approve for senior sign-off."
        "\n\n"
        "BATCH FORWARDING:\n"
        "Use forward_batch to send approved candidates to a department reviewer, and "
        "decide_batch_subset to record the reviewer's decision for any subset. "
        "Batch status is derived from per-candidate decisions. A forwarded candidate "
        "cannot be assigned a mentor until the reviewer has decided them."
        "\n\n"
        "MENTORS AND PROGRESS:\n"
        "Use select_mentor to preview allocation, assign_mentor to assign, then "
        "start_internship, submit_progress_report and complete_internship. "
        "Use get_request and get_batch for read views with audit trails."
        "\n\n"
        "Every tool returns {ok: true, data, warnings, notifications} or "
        "{ok: false, error: {kind, message, retryable}}."
    ),
)


@mcp.tool(
    name="submit_request",
    description=(
        "Submit an internship application. Creates or reuses the candidate, creates the request "
        "in SUBMITTED and notifies coordinators. Fails with VALIDATION_ERROR if the candidate "
        "already has an open request."
    ),
)
def submit_request_tool(
    candidate: dict,
    submitted_by: int | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Submit an internship application.

    Args:
        candidate: Applicant details: first_name, last_name, email,
            preferred_department (required); phone, institution, course,
            requested_duration_weeks (1-104), application_number (optional).
        submitted_by: Submitting user id.
        db_path: Optional SQLite path override (default: data/intake.db).

    Returns:
        {"ok": true, "data": {"request": {...}, "candidate": {...}}, ...}
        or {"ok": false, "error": {"kind", "message", "retryable"}}
    """
    args = {"candidate": candidate}
    if submitted_by is not None:
        args["submitted_by"] = submitted_by
    if db_path is not None:
        args["db_path"] = db_path
    return submit_request(args)


@mcp.tool(
    name="begin_review",
    description="Move a SUBMITTED request to UNDER_REVIEW and record the reviewer.",
)
def begin_review_tool(request_id: int, reviewer_id: int, db_path: str | None = None) -> dict:
    """Start coordinator review of a submitted request."""
    args = {"request_id": request_id, "reviewer_id": reviewer_id}
    if db_path is not None:
        args["db_path"] = db_path
    return begin_review(args)


@mcp.tool(
    name="decide_request",
    description=(
        "Approve or reject a request UNDER_REVIEW. Approval assigns a mentor when auto-assignment "
        "is enabled; if no mentor has capacity the request stays APPROVED with an "
        "ALLOCATION_UNAVAILABLE warning. A hard failure after approval rolls the request back "
        "to UNDER_REVIEW and returns the error."
    ),
)
def decide_request_tool(
    request_id: int,
    decision: str,
    reviewer_id: int,
    comment: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Record a coordinator decision.

    Args:
        request_id: Request to decide (must be UNDER_REVIEW).
        decision: APPROVE or REJECT.
        reviewer_id: Deciding reviewer.
        comment: Optional review comment (max 2000 characters).
        db_path: Optional SQLite path override.

    Returns:
        Success envelope with data.request (and data.mentor_assignment for
        approvals), or a failure envelope. Concurrent decisions on the same
        request fail with CONCURRENT_MODIFICATION (retryable).
    """
    args = {"request_id": request_id, "decision": decision, "reviewer_id": reviewer_id}
    if comment is not None:
        args["comment"] = comment
    if db_path is not None:
        args["db_path"] = db_path
    return decide_request(args)


@mcp.tool(
    name="final_approve",
    description="Senior sign-off of an APPROVED request (APPROVED -> FINAL_APPROVED).",
)
def final_approve_tool(
    request_id: int,
    reviewer_id: int,
    comment: str | None = None,
    db_path: str | None = None,
) -> dict:
    args = {"request_id": request_id, "reviewer_id": reviewer_id}
    if comment is not None:
        args["comment"] = comment
    if db_path is not None:
        args["db_path"] = db_path
    return final_approve(args)


@mcp.tool(
    name="get_request",
    description="Read one request with its candidate, assignments and audit trail.",
)
def get_request_tool(
    request_id: int,
    include_audit: bool | None = None,
    db_path: str | None = None,
) -> dict:
    args = {"request_id": request_id}
    if include_audit is not None:
        args["include_audit"] = include_audit
    if db_path is not None:
        args["db_path"] = db_path
    return get_request(args)


@mcp.tool(
    name="forward_batch",
    description=(
        "Forward approved candidates to a department reviewer as one batch. All candidates must "
        "be APPROVED or FINAL_APPROVED, otherwise INVALID_CANDIDATE_STATE lists the offenders "
        "and nothing is created."
    ),
)
def forward_batch_tool(
    candidate_ids: list[int],
    department: str,
    from_coordinator_id: int,
    to_reviewer_id: int | None = None,
    comment: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Forward approved candidates for department review.

    Args:
        candidate_ids: Ordered, duplicate-free candidate ids (1-100).
        department: Target department.
        from_coordinator_id: Forwarding coordinator.
        to_reviewer_id: Reviewer; defaults to the department head.
        comment: Optional note for the reviewer.
        db_path: Optional SQLite path override.
    """
    args = {
        "candidate_ids": candidate_ids,
        "department": department,
        "from_coordinator_id": from_coordinator_id,
    }
    if to_reviewer_id is not None:
        args["to_reviewer_id"] = to_reviewer_id
    if comment is not None:
        args["comment"] = comment
    if db_path is not None:
        args["db_path"] = db_path
    return forward_batch(args)


@mcp.tool(
    name="decide_batch_subset",
    description=(
        "Record the reviewer's APPROVE or REJECT for a subset of a forwarded batch. Fails with "
        "INVALID_SUBSET for non-members and ALREADY_DECIDED for decided members."
    ),
)
def decide_batch_subset_tool(
    batch_id: int,
    candidate_ids: list[int],
    decision: str,
    reviewer_id: int,
    comment: str | None = None,
    db_path: str | None = None,
) -> dict:
    args = {
        "batch_id": batch_id,
        "candidate_ids": candidate_ids,
        "decision": decision,
        "reviewer_id": reviewer_id,
    }
    if comment is not None:
        args["comment"] = comment
    if db_path is not None:
        args["db_path"] = db_path
    return decide_batch_subset(args)


@mcp.tool(
    name="get_batch",
    description="Read a forwarded batch with its members, derived status and audit trail.",
)
def get_batch_tool(batch_id: int, db_path: str | None = None) -> dict:
    args = {"batch_id": batch_id}
    if db_path is not None:
        args["db_path"] = db_path
    return get_batch(args)


@mcp.tool(
    name="select_mentor",
    description="Preview the least-loaded mentor with free capacity in a department.",
)
def select_mentor_tool(
    department: str,
    exclude_mentor_ids: list[int] | None = None,
    db_path: str | None = None,
) -> dict:
    args = {"department": department}
    if exclude_mentor_ids is not None:
        args["exclude_mentor_ids"] = exclude_mentor_ids
    if db_path is not None:
        args["db_path"] = db_path
    return select_mentor(args)


@mcp.tool(
    name="assign_mentor",
    description=(
        "Assign a mentor to an APPROVED or FINAL_APPROVED request, either the least-loaded "
        "mentor of its department or a given mentor_id. No capacity is a soft result "
        "(assigned=false with an ALLOCATION_UNAVAILABLE warning). PRECONDITION_FAILED while "
        "the request awaits a decision in a forwarded batch."
    ),
)
def assign_mentor_tool(
    request_id: int,
    assigned_by: int | None = None,
    mentor_id: int | None = None,
    notes: str | None = None,
    db_path: str | None = None,
) -> dict:
    args = {"request_id": request_id}
    if assigned_by is not None:
        args["assigned_by"] = assigned_by
    if mentor_id is not None:
        args["mentor_id"] = mentor_id
    if notes is not None:
        args["notes"] = notes
    if db_path is not None:
        args["db_path"] = db_path
    return assign_mentor(args)


@mcp.tool(
    name="start_internship",
    description="Start the internship of a MENTOR_ASSIGNED request (-> IN_PROGRESS).",
)
def start_internship_tool(
    request_id: int,
    actor_id: int,
    start_date: str | None = None,
    db_path: str | None = None,
) -> dict:
    args = {"request_id": request_id, "actor_id": actor_id}
    if start_date is not None:
        args["start_date"] = start_date
    if db_path is not None:
        args["db_path"] = db_path
    return start_internship(args)


@mcp.tool(
    name="complete_internship",
    description="Complete an IN_PROGRESS internship and close its mentor assignment.",
)
def complete_internship_tool(
    request_id: int,
    actor_id: int,
    end_date: str | None = None,
    db_path: str | None = None,
) -> dict:
    args = {"request_id": request_id, "actor_id": actor_id}
    if end_date is not None:
        args["end_date"] = end_date
    if db_path is not None:
        args["db_path"] = db_path
    return complete_internship(args)


@mcp.tool(
    name="submit_progress_report",
    description="Submit a WEEKLY, MONTHLY or FINAL progress report on an active assignment.",
)
def submit_progress_report_tool(
    assignment_id: int,
    submitted_by: int,
    report_type: str,
    title: str,
    content: str,
    progress_percentage: int,
    db_path: str | None = None,
) -> dict:
    args = {
        "assignment_id": assignment_id,
        "submitted_by": submitted_by,
        "report_type": report_type,
        "title": title,
        "content": content,
        "progress_percentage": progress_percentage,
    }
    if db_path is not None:
        args["db_path"] = db_path
    return submit_progress_report(args)


def main():
    """
    Main entry point for the MCP server.

    Runs the server in stdio mode and drains queued notifications on exit.
    """
    # Load and setup configuration
    config.setup_logging()

    # Log startup information
    logger = logging.getLogger(__name__)
    logger.info("Starting IntakeFlow MCP Server")
    logger.info(f"Server name: {config.server_name}")
    logger.info(f"Database path: {config.db_path}")

    # Validate configuration and log warnings
    warnings = config.validate()
    for warning in warnings:
        logger.warning(warning)

    # Start the server
    logger.info("Server starting in stdio mode")
    try:
        mcp.run(transport="stdio")
    finally:
        shutdown_services()


if __name__ == "__main__":
    main()
