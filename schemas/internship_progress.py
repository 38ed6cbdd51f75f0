"""Pydantic schemas for internship progress tools."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, field_validator

from schemas.common import (
    DbPathMixin,
    StrictIgnoreRequest,
    validate_non_empty_str,
    validate_positive_id,
)


class StartInternshipRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for start_internship."""

    request_id: int
    actor_id: int
    start_date: Optional[str] = None

    @field_validator("request_id", "actor_id")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)


class CompleteInternshipRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for complete_internship."""

    request_id: int
    actor_id: int
    end_date: Optional[str] = None

    @field_validator("request_id", "actor_id")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)


class SubmitProgressReportRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for submit_progress_report."""

    assignment_id: int
    submitted_by: int
    report_type: Literal["WEEKLY", "MONTHLY", "FINAL"]
    title: str = Field(max_length=200)
    content: str
    progress_percentage: int = Field(ge=0, le=100)

    @field_validator("assignment_id", "submitted_by")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)

    @field_validator("title", "content")
    @classmethod
    def validate_text(cls, value: str, info) -> str:
        return validate_non_empty_str(value, info.field_name)
