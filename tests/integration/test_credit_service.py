"""Integration tests for stored credit ledgers: history, adjustments and imports."""

from datetime import datetime, timedelta, timezone

import pytest

from src.models import AuditLog, CreditEntryType, CreditLedgerEntry
from src.services.credit_ledger import CreditDelta, CreditLedger, UnparsedCreditRecord
from src.services.credit_service import CreditService
from src.services.errors import ValidationError

T0 = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def credit_service(db_session):
    return CreditService(db_session)


class TestAdjustCredit:
    def test_add_then_use(self, db_session, credit_service, unit):
        credit_service.adjust_credit(unit, 5000, "Refund of duplicate water charge", timestamp=T0)
        entry = credit_service.adjust_credit(unit, -2000, "Applied to parking sticker", timestamp=T0 + timedelta(days=1))

        assert entry.entry_type == CreditEntryType.CREDIT_USED
        assert (entry.amount, entry.balance_before, entry.balance_after) == (2000, 5000, 3000)
        assert entry.source == "admin"
        assert credit_service.current_balance(unit) == 3000
        assert db_session.query(CreditLedgerEntry).count() == 2

    def test_bumps_revision(self, db_session, credit_service, unit):
        revision = unit.revision

        credit_service.adjust_credit(unit, 100, "Goodwill credit")

        db_session.refresh(unit)
        assert unit.revision == revision + 1

    def test_audit_row(self, db_session, credit_service, unit):
        credit_service.adjust_credit(unit, 2500, "  Board-approved credit  ", actor_id=3)

        audit = db_session.query(AuditLog).filter_by(entity_type="credit_ledger", action="adjust").one()
        assert audit.entity_id == unit.id
        assert audit.actor_id == 3
        assert audit.changes == {
            "amount": 2500,
            "balance_before": 0,
            "balance_after": 2500,
            "note": "Board-approved credit",
        }

    def test_overdraw_rejected(self, db_session, credit_service, unit):
        credit_service.adjust_credit(unit, 1000, "Opening credit", timestamp=T0)

        with pytest.raises(ValidationError, match="Insufficient credit"):
            credit_service.adjust_credit(unit, -1001, "Too much", timestamp=T0 + timedelta(hours=1))

        assert credit_service.current_balance(unit) == 1000
        assert db_session.query(CreditLedgerEntry).count() == 1

    def test_backdated_entry_rejected(self, credit_service, unit):
        credit_service.adjust_credit(unit, 1000, "Opening credit", timestamp=T0)

        with pytest.raises(ValidationError):
            credit_service.adjust_credit(unit, 500, "Late fix", timestamp=T0 - timedelta(days=1))

    @pytest.mark.parametrize("amount,note", [(0, "nothing"), (12.5, "float"), (100, ""), (100, "   ")])
    def test_invalid_requests(self, credit_service, unit, amount, note):
        with pytest.raises(ValidationError):
            credit_service.adjust_credit(unit, amount, note)


class TestHistory:
    def test_newest_first_with_limit(self, credit_service, unit):
        for day, amount in enumerate([100, 200, 300]):
            credit_service.adjust_credit(unit, amount, f"Credit {amount}", timestamp=T0 + timedelta(days=day))

        history = credit_service.get_history(unit, limit=2)

        assert [e.amount for e in history] == [300, 200]
        assert [e.sequence for e in history] == [2, 1]
        assert all(e.timestamp.tzinfo is not None for e in history)

    def test_empty_ledger(self, credit_service, unit):
        assert credit_service.get_history(unit) == []
        assert credit_service.current_balance(unit) == 0
        assert len(credit_service.get_ledger(unit)) == 0


class TestImportRebuild:
    def _result(self):
        return CreditLedger.rebuild(
            150000,
            [
                CreditDelta(amount=80000, timestamp=T0, note="July overpayment"),
                CreditDelta(amount=-30000, timestamp=T0 + timedelta(days=30), note="Applied to dues"),
                UnparsedCreditRecord(raw="Adjusted by hand", reason="no known credit phrasing"),
            ],
            opened_at=T0 - timedelta(days=1),
        )

    def test_writes_rebuilt_entries(self, db_session, credit_service, unit):
        written = credit_service.import_rebuild(unit, self._result(), actor_id=1)

        assert written == 3
        ledger = credit_service.get_ledger(unit)
        assert [e.entry_type for e in ledger.entries] == [
            CreditEntryType.STARTING_BALANCE,
            CreditEntryType.CREDIT_ADDED,
            CreditEntryType.CREDIT_USED,
        ]
        assert ledger.current_balance() == 200000
        assert all(e.source == "import" for e in ledger.entries)

        audit = db_session.query(AuditLog).filter_by(action="import").one()
        assert audit.changes == {"entries": 3, "balance": 200000, "unparsed": 1}

    def test_refused_when_ledger_exists(self, db_session, credit_service, unit):
        credit_service.adjust_credit(unit, 100, "Existing credit")

        with pytest.raises(ValidationError, match="already has a credit ledger"):
            credit_service.import_rebuild(unit, self._result())

        assert db_session.query(CreditLedgerEntry).count() == 1

    def test_imported_ledger_accepts_new_entries(self, credit_service, unit):
        credit_service.import_rebuild(unit, self._result())

        entry = credit_service.adjust_credit(unit, -200000, "Applied to special assessment")

        assert entry.sequence == 3
        assert entry.balance_after == 0
