"""Pydantic schemas for directory seed files."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.common import validate_non_empty_str


class DirectoryUserEntry(BaseModel):
    """One user entry of a directory YAML file."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    employee_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    role: Literal["COORDINATOR", "DEPARTMENT_HOD", "LND_HOD", "MENTOR", "TRAINEE"]
    department: Optional[str] = None
    tier: Optional[Literal["PRINCIPAL", "SENIOR", "GENERAL"]] = None
    capacity: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    @field_validator("employee_id", "first_name", "last_name")
    @classmethod
    def validate_text(cls, value: str, info) -> str:
        return validate_non_empty_str(value, info.field_name)


class DirectoryFile(BaseModel):
    """Top-level layout: ``users: [...]``."""

    model_config = ConfigDict(extra="forbid")

    users: list[DirectoryUserEntry] = Field(default_factory=list)
