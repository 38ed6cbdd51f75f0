"""
Unit tests for shared validation helpers and the pydantic error mapper.
"""

import re

import pytest
from pydantic import ValidationError

from models.errors import ErrorCode, WorkflowError
from schemas.approval_workflow import CandidatePayload, DecideRequest
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import (
    MAX_BATCH_SIZE,
    get_current_utc_date,
    get_current_utc_timestamp,
    validate_entity_id,
    validate_id_list,
    validate_iso_date,
)


class TestValidateEntityId:
    def test_valid(self):
        assert validate_entity_id(7) == 7

    @pytest.mark.parametrize("value", [None, True, "3", 2.0])
    def test_wrong_type(self, value):
        with pytest.raises(WorkflowError) as exc_info:
            validate_entity_id(value, "request_id")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "request_id" in exc_info.value.message

    @pytest.mark.parametrize("value", [0, -4])
    def test_not_positive(self, value):
        with pytest.raises(WorkflowError):
            validate_entity_id(value)


class TestValidateIdList:
    def test_preserves_order(self):
        assert validate_id_list([5, 1, 3]) == [5, 1, 3]

    def test_empty(self):
        with pytest.raises(WorkflowError, match="cannot be empty"):
            validate_id_list([])

    def test_duplicates_listed(self):
        with pytest.raises(WorkflowError, match="Duplicate ids found in candidate_ids: 2, 4"):
            validate_id_list([4, 2, 4, 2, 1])

    def test_too_large(self):
        with pytest.raises(WorkflowError, match="Batch size too large"):
            validate_id_list(list(range(1, MAX_BATCH_SIZE + 2)))

    def test_maximum_size_allowed(self):
        assert len(validate_id_list(list(range(1, MAX_BATCH_SIZE + 1)))) == MAX_BATCH_SIZE


class TestDates:
    def test_iso_date(self):
        assert validate_iso_date("2026-02-28", "start_date") == "2026-02-28"
        assert validate_iso_date(None, "start_date") is None

    @pytest.mark.parametrize("value", ["2026-02-30", "28/02/2026", ""])
    def test_invalid_iso_date(self, value):
        with pytest.raises(WorkflowError, match="start_date"):
            validate_iso_date(value, "start_date")

    def test_timestamp_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", get_current_utc_timestamp())

    def test_date_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", get_current_utc_date())


class TestPydanticErrorMapper:
    """Mapping of pydantic errors to VALIDATION_ERROR."""

    def _error(self, model, data):
        with pytest.raises(ValidationError) as exc_info:
            model.model_validate(data)
        return exc_info.value

    def test_missing_field(self):
        error = map_pydantic_validation_error(self._error(DecideRequest, {"decision": "APPROVE", "reviewer_id": 1}))
        assert error.code == ErrorCode.VALIDATION_ERROR
        assert error.message == "Invalid request_id: Field required"

    def test_validator_message_passes_through(self):
        data = {"request_id": -1, "decision": "APPROVE", "reviewer_id": 1}
        error = map_pydantic_validation_error(self._error(DecideRequest, data))
        assert error.message == "Invalid request_id: -1 must be a positive integer (>= 1)"

    def test_prefix_for_nested_payload(self):
        data = {"first_name": "A", "last_name": "B", "email": "a@b.co"}
        error = map_pydantic_validation_error(self._error(CandidatePayload, data), prefix="candidate")
        assert error.message == "Invalid candidate.preferred_department: Field required"

    def test_literal_mismatch(self):
        data = {"request_id": 1, "decision": "MAYBE", "reviewer_id": 1}
        error = map_pydantic_validation_error(self._error(DecideRequest, data))
        assert error.message.startswith("Invalid decision:")
