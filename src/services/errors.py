"""Ledger engine error types and response helpers.

Every error carries a stable machine-readable code so callers (an HTTP
layer, the CLI) can tell validation failures from stale plans and commit
faults without parsing messages.
"""

from typing import Any, Dict


class LedgerError(Exception):
    """Base ledger engine error."""

    default_code = "ledger_error"

    def __init__(self, message: str, code: str | None = None):
        """Initialize error."""
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class ValidationError(LedgerError):
    """Request rejected before any mutation (bad amount, bad plan, etc.)."""

    default_code = "invalid_request"


class UnitNotFoundError(ValidationError):
    """No unit account exists for the given client/unit pair."""

    default_code = "unit_not_found"

    def __init__(self, client_id: str, unit_id: str):
        super().__init__(f"Unit {client_id}/{unit_id} not found")
        self.client_id = client_id
        self.unit_id = unit_id


class StalePlanError(LedgerError):
    """Bucket or ledger state changed since the plan was computed."""

    default_code = "stale_plan"


class UnitBusyError(LedgerError):
    """Another commit holds the unit's lock."""

    default_code = "unit_busy"


class CommitError(LedgerError):
    """The atomic commit failed and was rolled back."""

    default_code = "commit_failed"


class LedgerInvariantError(LedgerError):
    """A ledger entry or plan violates a money invariant."""

    default_code = "ledger_invariant"


class DataValidationError(LedgerError):
    """A legacy record could not be parsed into a clean value."""

    default_code = "unparsed"


def error_response(error: LedgerError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


__all__ = [
    "LedgerError",
    "ValidationError",
    "UnitNotFoundError",
    "StalePlanError",
    "UnitBusyError",
    "CommitError",
    "LedgerInvariantError",
    "DataValidationError",
    "error_response",
]
