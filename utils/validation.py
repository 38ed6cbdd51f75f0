"""
Input validation utilities for workflow tool handlers.

Shape and type checks live in the pydantic request schemas; this module holds
the value rules shared across handlers.
"""

from datetime import date, datetime, timezone
from typing import Any, List, Optional

from models.errors import create_validation_error

# Constants for validation
MAX_BATCH_SIZE = 100


def validate_entity_id(value: Any, field_name: str = "id") -> int:
    """
    Validate a record id.

    Args:
        value: The id value to validate
        field_name: Field name used in error messages

    Returns:
        Validated id as integer

    Raises:
        WorkflowError: If the id is not a positive integer
    """
    if value is None:
        raise create_validation_error(f"Invalid {field_name}: cannot be null")

    # bool is a subclass of int in Python, reject explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise create_validation_error(
            f"Invalid {field_name} type: expected integer, got {type(value).__name__}"
        )

    if value < 1:
        raise create_validation_error(
            f"Invalid {field_name}: {value} must be a positive integer (>= 1)"
        )

    return value


def validate_id_list(values: List[Any], field_name: str = "candidate_ids") -> List[int]:
    """
    Validate a non-empty, duplicate-free list of ids, preserving order.

    Raises:
        WorkflowError: If the list is empty, too large, or has duplicates
    """
    if not values:
        raise create_validation_error(f"Invalid {field_name}: cannot be empty")

    if len(values) > MAX_BATCH_SIZE:
        raise create_validation_error(
            f"Batch size too large: {len(values)} {field_name} exceeds maximum of {MAX_BATCH_SIZE}"
        )

    ids = [validate_entity_id(v, field_name) for v in values]

    seen = set()
    duplicates = set()
    for value in ids:
        if value in seen:
            duplicates.add(value)
        else:
            seen.add(value)

    if duplicates:
        duplicate_list = ", ".join(str(d) for d in sorted(duplicates))
        raise create_validation_error(f"Duplicate ids found in {field_name}: {duplicate_list}")

    return ids


def validate_iso_date(value: Optional[str], field_name: str) -> Optional[str]:
    """Validate an optional YYYY-MM-DD date string."""
    if value is None:
        return None
    try:
        date.fromisoformat(value)
    except (TypeError, ValueError):
        raise create_validation_error(
            f"Invalid {field_name}: '{value}' is not a YYYY-MM-DD date"
        ) from None
    return value


def get_current_utc_timestamp() -> str:
    """
    Generate a UTC timestamp in ISO 8601 format with millisecond precision.

    Returns a timestamp string in the format: YYYY-MM-DDTHH:MM:SS.mmmZ
    Example: 2026-02-04T03:47:36.966Z
    """
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_current_utc_date() -> str:
    return datetime.now(timezone.utc).date().isoformat()
