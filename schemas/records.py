"""Typed views of store records returned in tool responses."""

from __future__ import annotations

from typing import Any, Optional

from schemas.common import RecordModel


class CandidateRecord(RecordModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    institution: Optional[str] = None
    course: Optional[str] = None
    preferred_department: Optional[str] = None
    requested_duration_weeks: Optional[int] = None
    application_number: Optional[str] = None
    user_id: Optional[int] = None
    created_at: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class RequestRecord(RecordModel):
    id: int
    candidate_id: int
    status: str
    department: str
    submitted_by: Optional[int] = None
    submitted_at: str
    reviewed_at: Optional[str] = None
    reviewer_id: Optional[int] = None
    review_comment: Optional[str] = None
    final_approved_by: Optional[int] = None
    final_approved_at: Optional[str] = None
    updated_at: str


class AssignmentRecord(RecordModel):
    id: int
    request_id: int
    mentor_id: int
    status: str
    assigned_at: str
    assigned_by: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    notes: Optional[str] = None


class MentorChoice(RecordModel):
    """Allocator output: the selected mentor and its load before assignment."""

    id: int
    employee_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    tier: Optional[str] = None
    active_count: int
    capacity: int
    load: float


class BatchMemberRecord(RecordModel):
    candidate_id: int
    request_id: int
    position: int
    decision: Optional[str] = None
    decided_by: Optional[int] = None
    decided_at: Optional[str] = None
    comment: Optional[str] = None


class BatchRecord(RecordModel):
    id: int
    department: str
    forwarded_by: int
    forwarded_to: int
    comment: Optional[str] = None
    status: str
    candidate_ids: list[int]
    members: list[BatchMemberRecord]
    summary: dict[str, int]
    created_at: str
    updated_at: str


class AuditEntryRecord(RecordModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    actor_id: Optional[int] = None
    created_at: str
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None


class ProgressReportRecord(RecordModel):
    id: int
    assignment_id: int
    submitted_by: int
    report_type: str
    title: str
    content: str
    progress_percentage: int
    created_at: str
