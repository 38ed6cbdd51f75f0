"""Pydantic schemas for the batch forwarding tools."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import field_validator

from schemas.common import (
    CommentMixin,
    DbPathMixin,
    StrictIgnoreRequest,
    validate_non_empty_str,
    validate_positive_id,
)


class ForwardBatchRequest(CommentMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for forward_batch."""

    candidate_ids: list[int]
    department: str
    from_coordinator_id: int
    to_reviewer_id: Optional[int] = None

    @field_validator("department")
    @classmethod
    def validate_department(cls, value: str) -> str:
        return validate_non_empty_str(value, "department")

    @field_validator("from_coordinator_id", "to_reviewer_id")
    @classmethod
    def validate_ids(cls, value: Optional[int], info) -> Optional[int]:
        return validate_positive_id(value, info.field_name)


class DecideBatchSubsetRequest(CommentMixin, DbPathMixin, StrictIgnoreRequest):
    """Request schema for decide_batch_subset."""

    batch_id: int
    candidate_ids: list[int]
    decision: Literal["APPROVE", "REJECT"]
    reviewer_id: int

    @field_validator("batch_id", "reviewer_id")
    @classmethod
    def validate_ids(cls, value: int, info) -> int:
        return validate_positive_id(value, info.field_name)


class GetBatchRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for get_batch."""

    batch_id: int

    @field_validator("batch_id")
    @classmethod
    def validate_batch_id(cls, value: int) -> int:
        return validate_positive_id(value, "batch_id")
