"""Audit service for logging ledger-affecting events."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from src.models.audit_log import AuditLog


def _jsonable(value: Any) -> Any:
    """Convert dates, enums and tuples so the snapshot fits a JSON column."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class AuditService:
    """Service for audit log operations.

    Rows are added to the caller's session and committed (or rolled back)
    together with the caller's transaction.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            entity_type: Type of entity ("payment", "credit_ledger", etc.)
            entity_id: Primary key of the entity
            action: Action performed ("record", "adjust", "import")
            actor_id: Back-office user who performed the action (optional)
            changes: Optional snapshot of the figures involved; None values are dropped

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=_jsonable(changes) if changes else None,
        )
        db.add(audit)
        return audit


__all__ = ["AuditService"]
