"""Credit service: persistence and back-office operations for unit credit ledgers.

Provides methods for:
- Loading a unit's ledger and its current balance
- Appending validated entries (used by payment recording)
- Credit history (newest first)
- Manual admin adjustments
- One-time import of a rebuilt legacy ledger
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.settings import settings
from src.models import CreditEntryType, CreditLedgerEntry, UnitAccount
from src.services.audit_service import AuditService
from src.services.credit_ledger import CreditLedger, LedgerEntry, RebuildResult
from src.services.errors import CommitError, LedgerInvariantError, ValidationError

logger = logging.getLogger(__name__)


class CreditService:
    """Credit ledger store backed by the credit_ledger_entries table."""

    def __init__(self, db: Session):
        """Initialize credit service.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def _rows(self, unit: UnitAccount) -> List[CreditLedgerEntry]:
        return (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.unit_account_id == unit.id)
            .order_by(CreditLedgerEntry.sequence)
            .all()
        )

    def get_ledger(self, unit: UnitAccount) -> CreditLedger:
        """Load and validate the unit's full ledger.

        Raises:
            LedgerInvariantError: If the stored chain is corrupted
        """
        return CreditLedger(LedgerEntry.from_model(row) for row in self._rows(unit))

    def current_balance(self, unit: UnitAccount) -> int:
        """Current credit balance in centavos (0 when the ledger is empty)."""
        last = (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.unit_account_id == unit.id)
            .order_by(CreditLedgerEntry.sequence.desc())
            .first()
        )
        return last.balance_after if last else 0

    def append(self, unit: UnitAccount, ledger: CreditLedger, entry: LedgerEntry) -> CreditLedgerEntry:
        """Append a validated entry to the ledger and stage its row.

        The row is added to the session but not committed; the caller owns
        the transaction.
        """
        ledger.append(entry)
        row = CreditLedgerEntry(
            unit_account_id=unit.id,
            sequence=entry.sequence,
            timestamp=entry.timestamp,
            entry_type=entry.entry_type,
            amount=entry.amount,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            payment_id=entry.payment_id,
            note=entry.note,
            source=entry.source,
        )
        self.db.add(row)
        return row

    def get_history(self, unit: UnitAccount, limit: Optional[int] = None) -> List[LedgerEntry]:
        """Return the most recent ledger entries, newest first.

        Args:
            unit: Unit account
            limit: Maximum number of entries (default: settings.credit_history_limit)
        """
        limit = limit or settings.credit_history_limit
        rows = (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.unit_account_id == unit.id)
            .order_by(CreditLedgerEntry.sequence.desc())
            .limit(limit)
            .all()
        )
        return [LedgerEntry.from_model(row) for row in rows]

    def adjust_credit(
        self,
        unit: UnitAccount,
        amount: int,
        note: str,
        source: str = "admin",
        actor_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Apply a manual credit correction as a new ledger entry.

        Args:
            unit: Unit account
            amount: Signed change in centavos (positive adds, negative uses)
            note: Required explanation stored on the entry
            source: Origin label stored on the entry
            actor_id: Back-office user performing the adjustment
            timestamp: When the change applies (default: now)

        Returns:
            The appended ledger entry

        Raises:
            ValidationError: If amount is zero/non-integer, note is empty, or
                the balance would go negative
            CommitError: If the database commit fails
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError(f"Adjustment amount must be a non-zero integer, got {amount!r}")
        if not note or not note.strip():
            raise ValidationError("Adjustment note is required")

        ledger = self.get_ledger(unit)
        entry_type = CreditEntryType.CREDIT_ADDED if amount > 0 else CreditEntryType.CREDIT_USED
        try:
            entry = ledger.next_entry(
                entry_type,
                abs(amount),
                timestamp or datetime.now(timezone.utc),
                note=note.strip(),
                source=source,
            )
        except LedgerInvariantError as e:
            raise ValidationError(f"Cannot adjust credit: {e.message}") from e

        try:
            self.append(unit, ledger, entry)
            unit.bump_revision()
            self.db.flush()
            AuditService.log(
                self.db,
                entity_type="credit_ledger",
                entity_id=unit.id,
                action="adjust",
                actor_id=actor_id,
                changes={
                    "amount": amount,
                    "balance_before": entry.balance_before,
                    "balance_after": entry.balance_after,
                    "note": entry.note,
                },
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Credit adjustment failed for unit {unit.client_id}/{unit.unit_id}: {e}")
            raise CommitError(f"Credit adjustment failed: {e}") from e

        logger.info(
            f"Adjusted credit for unit {unit.client_id}/{unit.unit_id}: {amount:+d} centavos "
            f"({entry.balance_before} -> {entry.balance_after})"
        )
        return entry

    def import_rebuild(
        self,
        unit: UnitAccount,
        result: RebuildResult,
        actor_id: Optional[int] = None,
    ) -> int:
        """Persist a rebuilt legacy ledger for a unit with no ledger yet.

        Returns:
            Number of entries written

        Raises:
            ValidationError: If the unit already has ledger entries
            CommitError: If the database commit fails
        """
        if self.db.query(CreditLedgerEntry).filter_by(unit_account_id=unit.id).first():
            raise ValidationError(
                f"Unit {unit.client_id}/{unit.unit_id} already has a credit ledger; import refused"
            )

        ledger = CreditLedger()
        try:
            for entry in result.entries:
                self.append(unit, ledger, entry)
            unit.bump_revision()
            self.db.flush()
            AuditService.log(
                self.db,
                entity_type="credit_ledger",
                entity_id=unit.id,
                action="import",
                actor_id=actor_id,
                changes={
                    "entries": len(ledger),
                    "balance": ledger.current_balance(),
                    "unparsed": len(result.unparsed),
                },
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Ledger import failed for unit {unit.client_id}/{unit.unit_id}: {e}")
            raise CommitError(f"Ledger import failed: {e}") from e

        logger.info(
            f"Imported {len(ledger)} credit entries for unit {unit.client_id}/{unit.unit_id} "
            f"(balance {ledger.current_balance()} centavos)"
        )
        return len(ledger)


__all__ = ["CreditService"]
