"""
Error model for the IntakeFlow workflow engine.

Provides structured error codes, sanitized error messages and the result
envelope used by every tool handler. No workflow operation raises across the
tool boundary: handlers catch ``WorkflowError`` and return ``to_dict()``.
"""

from enum import Enum
from typing import Iterable, Optional
import re


class ErrorCode(str, Enum):
    """Structured error codes for workflow operations."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    INVALID_CANDIDATE_STATE = "INVALID_CANDIDATE_STATE"
    INVALID_SUBSET = "INVALID_SUBSET"
    ALREADY_DECIDED = "ALREADY_DECIDED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    ALLOCATION_UNAVAILABLE = "ALLOCATION_UNAVAILABLE"
    STORE_ERROR = "STORE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class WorkflowError(Exception):
    """Base exception for workflow errors with structured error information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: bool = False,
        original_error: Optional[Exception] = None,
        details: Optional[dict] = None,
    ):
        """
        Initialize a workflow error.

        Args:
            code: The error code
            message: Human-readable error message
            retryable: Whether the operation can be retried
            original_error: The original exception if this wraps another error
            details: Optional machine-readable context (e.g. offending ids)
        """
        self.code = code
        self.message = message
        self.retryable = retryable
        self.original_error = original_error
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert error to the failed result envelope."""
        error = {
            "kind": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            error["details"] = self.details
        return {"ok": False, "error": error}


def sanitize_path(path: str) -> str:
    """
    Sanitize file paths to avoid exposing sensitive system details.

    Returns only the basename for absolute paths, keeps relative paths.
    """
    import os
    if os.path.isabs(path):
        return os.path.basename(path)
    return path


def sanitize_sql_error(error_msg: str) -> str:
    """
    Sanitize SQL error messages to remove sensitive details.

    Removes SQL fragments and keeps only actionable information.

    Args:
        error_msg: The original error message

    Returns:
        Sanitized error message
    """
    sanitized = re.sub(r'SQL:.*', '', error_msg, flags=re.IGNORECASE)
    sanitized = re.sub(r'"[^"]*SELECT[^"]*"', '[SQL query]', sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r"'[^']*SELECT[^']*'", '[SQL query]', sanitized, flags=re.IGNORECASE)

    # Unquoted statements
    sanitized = re.sub(r'\b(SELECT|INSERT|UPDATE|DELETE)\b.*', '[SQL query]', sanitized, flags=re.IGNORECASE)

    sanitized = re.sub(r'/[^\s]+/', '[path]/', sanitized)

    return sanitized.strip()


def sanitize_stack_trace(error_msg: str) -> str:
    """Keep only the first line of an error message."""
    lines = error_msg.split('\n')
    if lines:
        return lines[0].strip()
    return error_msg


def _format_ids(ids: Iterable) -> str:
    return ", ".join(str(i) for i in ids)


def create_validation_error(message: str) -> WorkflowError:
    """
    Create a validation error (bad or duplicate input).

    Args:
        message: Description of the validation failure

    Returns:
        WorkflowError with VALIDATION_ERROR code
    """
    return WorkflowError(
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        retryable=False
    )


def create_not_found_error(entity_type: str, entity_id) -> WorkflowError:
    """
    Create a not-found error for an unknown id.

    Args:
        entity_type: Human-readable entity name (e.g. "Request", "Batch")
        entity_id: The id that was looked up
    """
    return WorkflowError(
        code=ErrorCode.NOT_FOUND,
        message=f"{entity_type} not found: {entity_id}",
        retryable=False
    )


def create_invalid_transition_error(current_status: str, target_status: str) -> WorkflowError:
    return WorkflowError(
        code=ErrorCode.INVALID_TRANSITION,
        message=f"Transition from '{current_status}' to '{target_status}' is not allowed",
        retryable=False,
        details={"current_status": current_status, "target_status": target_status},
    )


def create_precondition_error(message: str) -> WorkflowError:
    return WorkflowError(
        code=ErrorCode.PRECONDITION_FAILED,
        message=message,
        retryable=False
    )


def create_invalid_candidate_state_error(
    offending_ids: list, reason: str = "not in an approved state"
) -> WorkflowError:
    """
    Create an error for candidates that cannot be forwarded or decided.

    Args:
        offending_ids: Candidate ids that failed the check, in input order
        reason: What is wrong with them
    """
    return WorkflowError(
        code=ErrorCode.INVALID_CANDIDATE_STATE,
        message=f"Candidates are {reason}: {_format_ids(offending_ids)}",
        retryable=False,
        details={"candidate_ids": list(offending_ids)},
    )


def create_invalid_subset_error(message: str, candidate_ids: Optional[list] = None) -> WorkflowError:
    return WorkflowError(
        code=ErrorCode.INVALID_SUBSET,
        message=message,
        retryable=False,
        details={"candidate_ids": list(candidate_ids)} if candidate_ids else None,
    )


def create_already_decided_error(candidate_ids: list) -> WorkflowError:
    return WorkflowError(
        code=ErrorCode.ALREADY_DECIDED,
        message=f"Candidates already decided in this batch: {_format_ids(candidate_ids)}",
        retryable=False,
        details={"candidate_ids": list(candidate_ids)},
    )


def create_concurrent_modification_error(entity_type: str, entity_id, expected: str) -> WorkflowError:
    """
    Create an error for a conditional write that matched zero rows.

    The caller should re-read and retry.
    """
    return WorkflowError(
        code=ErrorCode.CONCURRENT_MODIFICATION,
        message=(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected status '{expected}')"
        ),
        retryable=True
    )


def create_allocation_unavailable_error(department: str) -> WorkflowError:
    """Soft error: no eligible mentor under capacity in the department."""
    return WorkflowError(
        code=ErrorCode.ALLOCATION_UNAVAILABLE,
        message=f"No mentor available under capacity in department '{department}'",
        retryable=True
    )


def create_store_error(message: str, retryable: bool = False, original_error: Optional[Exception] = None) -> WorkflowError:
    """
    Create a record store error.

    Args:
        message: Description of the store error
        retryable: Whether the operation can be retried
        original_error: The original exception

    Returns:
        WorkflowError with STORE_ERROR code
    """
    sanitized_message = sanitize_sql_error(message)
    sanitized_message = sanitize_stack_trace(sanitized_message)

    return WorkflowError(
        code=ErrorCode.STORE_ERROR,
        message=f"Store error: {sanitized_message}",
        retryable=retryable,
        original_error=original_error
    )


def create_internal_error(message: str, original_error: Optional[Exception] = None) -> WorkflowError:
    """
    Create an internal error for unexpected exceptions.

    Args:
        message: Description of the internal error
        original_error: The original exception

    Returns:
        WorkflowError with INTERNAL_ERROR code
    """
    sanitized_message = sanitize_stack_trace(message)

    return WorkflowError(
        code=ErrorCode.INTERNAL_ERROR,
        message=f"Internal error: {sanitized_message}",
        retryable=True,
        original_error=original_error
    )
