"""Shared schema primitives for workflow tool request/response models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def validate_optional_non_empty_str(value: Optional[str], field_name: str) -> Optional[str]:
    """Validate optional string fields that cannot be empty/whitespace."""
    if value is None:
        return None
    if not value.strip():
        raise ValueError(f"Invalid {field_name}: cannot be empty")
    return value


def validate_non_empty_str(value: str, field_name: str) -> str:
    if not value.strip():
        raise ValueError(f"Invalid {field_name}: cannot be empty")
    return value.strip()


def validate_positive_id(value: Optional[int], field_name: str) -> Optional[int]:
    """Ids are positive integers assigned by the store."""
    if value is None:
        return None
    if value < 1:
        raise ValueError(f"Invalid {field_name}: {value} must be a positive integer (>= 1)")
    return value


class StrictIgnoreRequest(BaseModel):
    """Request base with strict typing and ignored unknown fields."""

    model_config = ConfigDict(extra="ignore", strict=True)


class StrictResponse(BaseModel):
    """Response/result base with strict typing and forbidden unknown fields."""

    model_config = ConfigDict(extra="forbid")


class RecordModel(BaseModel):
    """Base for store records; unknown columns are dropped."""

    model_config = ConfigDict(extra="ignore")


class DbPathMixin(BaseModel):
    """Reusable db_path field validation."""

    db_path: Optional[str] = None

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, value: Optional[str]) -> Optional[str]:
        return validate_optional_non_empty_str(value, "db_path")


class CommentMixin(BaseModel):
    """Optional reviewer comment; blank comments are dropped."""

    comment: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("comment")
    @classmethod
    def normalize_comment(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class NotificationSummary(StrictResponse):
    """Outcome of the best-effort notification step."""

    queued: int
    failed: int


class WorkflowResponse(StrictResponse):
    """
    Success envelope shared by every workflow tool.

    Failures use ``WorkflowError.to_dict()`` instead.
    """

    ok: bool = True
    data: dict[str, Any]
    warnings: list[str] = Field(default_factory=list)
    notifications: NotificationSummary = Field(
        default_factory=lambda: NotificationSummary(queued=0, failed=0)
    )
