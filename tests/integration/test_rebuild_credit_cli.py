"""Integration tests for the legacy credit ledger rebuild CLI."""

import json
import logging
import os

import pytest

from src.cli.rebuild_credit import main, rebuild_unit, run_import
from src.models import CreditEntryType, CreditLedgerEntry, UnitAccount
from src.services.config import ImportConfig
from src.services.db import create_session

NOTES = (
    "Starting Balance: $1,500.00\n"
    "---\n"
    "Credit Adjusted to MXN 2,300.00 on Aug 01 2025 from HOA payment Seq: 25012\n"
    "---\n"
    "Added 800.00 MXN in July dues overpayment on 10/2/2025"
)

HISTORY_UNIT = {
    "startingBalance": 150000,
    "openedAt": "2025-07-01T00:00:00Z",
    "history": [
        {"amount": -50000, "timestamp": "2025-08-01T10:00:00Z", "note": "Applied to August dues"},
        {"amount": "n/a", "timestamp": "2025-08-02T10:00:00Z"},
    ],
}


@pytest.fixture
def export_file(tmp_path):
    def _write(units, client_id="MTC"):
        path = tmp_path / "credit_export.json"
        path.write_text(json.dumps({"clientId": client_id, "units": units}))
        return path

    return _write


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def restore_logging():
    root_logger = logging.getLogger()
    handlers = root_logger.handlers.copy()
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def _stored(database_url):
    """{unit_id: [(entry_type, amount, balance_after), ...]} read back from the database."""
    stored = {}
    for db in create_session(database_url):
        for unit in db.query(UnitAccount).order_by(UnitAccount.unit_id).all():
            rows = (
                db.query(CreditLedgerEntry)
                .filter_by(unit_account_id=unit.id)
                .order_by(CreditLedgerEntry.sequence)
                .all()
            )
            stored[unit.unit_id] = [(r.entry_type, r.amount, r.balance_after) for r in rows]
    return stored


class TestRebuildUnit:
    def test_from_notes(self):
        result = rebuild_unit({"notes": NOTES})

        assert result.balance == 310000
        assert [e.entry_type for e in result.entries] == [
            CreditEntryType.STARTING_BALANCE,
            CreditEntryType.CREDIT_ADDED,
            CreditEntryType.CREDIT_ADDED,
        ]
        assert result.unparsed == []

    def test_from_history_flags_bad_rows(self):
        result = rebuild_unit(HISTORY_UNIT, source="sheet-2025")

        assert result.balance == 100000
        assert len(result.entries) == 2
        assert result.entries[0].source == "sheet-2025"
        assert len(result.unparsed) == 1

    def test_starting_balance_in_pesos(self):
        result = rebuild_unit({"startingBalance": "1,250.00", "history": []})

        assert result.balance == 125000

    def test_negative_starting_balance_in_notes_is_flagged(self):
        result = rebuild_unit({"notes": "Starting Balance: -200.00"})

        assert result.balance == 0
        assert [r.reason for r in result.unparsed] == ["negative starting balance"]

    def test_record_without_history_rejected(self):
        with pytest.raises(ValueError, match="neither"):
            rebuild_unit({"lastPayment": "2025-08-01"})


class TestRunImport:
    def test_dry_run_writes_nothing(self, export_file, database_url, tmp_path):
        config = ImportConfig(export_path=str(export_file({"1A": {"notes": NOTES}})), database_url=database_url, dry_run=True)

        assert run_import(config) == 0
        assert not (tmp_path / "ledger.db").exists()

    def test_writes_every_unit(self, export_file, database_url):
        config = ImportConfig(
            export_path=str(export_file({"1A": {"notes": NOTES}, "2B": HISTORY_UNIT})),
            database_url=database_url,
        )

        assert run_import(config) == 0

        stored = _stored(database_url)
        assert stored["1A"][-1][2] == 310000
        assert stored["2B"] == [
            (CreditEntryType.STARTING_BALANCE, 150000, 150000),
            (CreditEntryType.CREDIT_USED, 50000, 100000),
        ]

    def test_bad_unit_fails_run_but_others_are_written(self, export_file, database_url):
        config = ImportConfig(
            export_path=str(export_file({"1A": {"notes": NOTES}, "3C": {}})),
            database_url=database_url,
        )

        assert run_import(config) == 1
        assert set(_stored(database_url)) == {"1A"}

    def test_second_import_is_refused(self, export_file, database_url):
        config = ImportConfig(export_path=str(export_file({"2B": HISTORY_UNIT})), database_url=database_url)
        assert run_import(config) == 0

        assert run_import(config) == 1
        assert len(_stored(database_url)["2B"]) == 2


class TestMain:
    @pytest.fixture(autouse=True)
    def isolated_env(self, monkeypatch, tmp_path, restore_logging):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(os, "environ", os.environ.copy())
        for name in ("CREDIT_EXPORT_PATH", "DRY_RUN", "IMPORT_SOURCE_LABEL"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "rebuild.log"))

    def test_configuration_error_exits_1(self):
        assert main() == 1

    def test_successful_run(self, monkeypatch, export_file, database_url, tmp_path):
        monkeypatch.setenv("CREDIT_EXPORT_PATH", str(export_file({"2B": HISTORY_UNIT})))
        monkeypatch.setenv("DATABASE_URL", database_url)

        assert main() == 0
        assert _stored(database_url)["2B"][-1][2] == 100000
        assert "Import finished" in (tmp_path / "logs" / "rebuild.log").read_text()
