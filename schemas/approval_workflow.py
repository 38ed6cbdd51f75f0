"""Pydantic schemas for the approval workflow tools."""

from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import Field, field_validator

from schemas.common import (
    CommentMixin,
    DbPathMixin,
    StrictIgnoreRequest,
    validate_non_empty_str,
    validate_optional_non_empty_str,
    validate_positive_id,
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CandidatePayload(StrictIgnoreRequest):
    """Applicant identity submitted with a new request."""

    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    institution: Optional[str] = None
    course: Optional[str] = None
    preferred_department: str
    requested_duration_weeks: Optional[int] = Field(default=None, ge=1, le=104)
    application_number: Optional[str] = None

    @field_validator("first_name", "last_name", "preferred_department")
    @classmethod
    def validate_required_text(cls, value: str, info) -> str:
        return validate_non_empty_str(value, info.field_name)

    @field_validator("phone", "institution", "course", "application_number")
    @classmethod
    def validate_optional_text(cls, value: Optional[str], info) -> Optional[str]:
        value = validate_optional_non_empty_str(value, info.field_name)
        return value.strip() if value is not None else None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_RE.match(value):
            raise ValueError(f"Invalid email: '{value}' is not an email address")
        return value


class SubmitRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for submit_request."""

    candidate: dict[str, Any]
    submitted_by: Optional[int] = None

    @field_validator("submitted_by")
    @classmethod
    def validate_submitted_by(cls, value: Optional[int]) -> Optional[int]:
        return validate_positive_id(value, "submitted_by")


class BeginReviewRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for begin_review."""

    request_id: int
    reviewer_id: int

    @field_validator("request_id", "reviewer_id")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)


class DecideRequest(CommentMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for decide_request."""

    request_id: int
    decision: Literal["APPROVE", "REJECT"]
    reviewer_id: int

    @field_validator("request_id", "reviewer_id")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)


class FinalApproveRequest(CommentMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for final_approve."""

    request_id: int
    reviewer_id: int

    @field_validator("request_id", "reviewer_id")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)


class GetRequestRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for get_request."""

    request_id: int
    include_audit: bool = True

    @field_validator("request_id")
    @classmethod
    def validate_request_id(cls, value: int) -> int:
        return validate_positive_id(value, "request_id")
