"""Unit tests for ledger error types."""

import pytest

from src.services.errors import (
    CommitError,
    DataValidationError,
    LedgerError,
    LedgerInvariantError,
    StalePlanError,
    UnitBusyError,
    UnitNotFoundError,
    ValidationError,
    error_response,
)


class TestErrorCodes:
    @pytest.mark.parametrize(
        "error,code",
        [
            (ValidationError("bad amount"), "invalid_request"),
            (StalePlanError("changed"), "stale_plan"),
            (UnitBusyError("busy"), "unit_busy"),
            (CommitError("failed"), "commit_failed"),
            (LedgerInvariantError("broken"), "ledger_invariant"),
            (DataValidationError("garbled"), "unparsed"),
        ],
    )
    def test_default_codes(self, error, code):
        assert error.code == code
        assert isinstance(error, LedgerError)

    def test_unit_not_found_is_validation_error(self):
        error = UnitNotFoundError("MTC", "9Z")

        assert isinstance(error, ValidationError)
        assert error.code == "unit_not_found"
        assert error.message == "Unit MTC/9Z not found"
        assert (error.client_id, error.unit_id) == ("MTC", "9Z")

    def test_stale_plan_is_not_validation_error(self):
        assert not isinstance(StalePlanError("changed"), ValidationError)

    def test_explicit_code_overrides_default(self):
        assert ValidationError("x", code="amount_not_integer").code == "amount_not_integer"

    def test_error_response(self):
        assert error_response(StalePlanError("Unit changed")) == {
            "error": {"code": "stale_plan", "message": "Unit changed"}
        }
