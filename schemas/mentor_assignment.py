"""Pydantic schemas for the mentor allocation tools."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from schemas.common import (
    DbPathMixin,
    StrictIgnoreRequest,
    validate_non_empty_str,
    validate_positive_id,
)


class SelectMentorRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for select_mentor."""

    department: str
    exclude_mentor_ids: list[int] = Field(default_factory=list)

    @field_validator("department")
    @classmethod
    def validate_department(cls, value: str) -> str:
        return validate_non_empty_str(value, "department")


class AssignMentorRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for assign_mentor."""

    request_id: int
    assigned_by: Optional[int] = None
    mentor_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("request_id", "assigned_by", "mentor_id")
    @classmethod
    def validate_ids(cls, value: Optional[int], info) -> Optional[int]:
        return validate_positive_id(value, info.field_name)
