"""CLI entry point for rebuilding unit credit ledgers from a legacy export.

Reads the JSON export named by CREDIT_EXPORT_PATH::

    {
      "clientId": "MTC",
      "units": {
        "1A": {"notes": "Starting Balance: $1,500.00\\n---\\nCredit Adjusted to ..."},
        "2B": {"startingBalance": 150000,
               "history": [{"amount": -50000, "timestamp": "2025-08-01", "note": "..."}]}
      }
    }

and rebuilds each unit's ledger with every balance recomputed from scratch.
Records that cannot be parsed are reported per unit for manual review and
are left out of the rebuilt balance.

Usage:
    python -m src.cli.rebuild_credit
    DRY_RUN=true python -m src.cli.rebuild_credit

Exit Codes:
    0 - Success: every unit rebuilt (and written unless dry run)
    1 - Failure: configuration error or at least one unit could not be imported

Logging:
    INFO level logs to both stdout and logs/rebuild_credit.log
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Mapping

from src.services.bucket_store import ChargeBucketStore, UnitRef
from src.services.config import ImportConfig, load_import_config
from src.services.credit_ledger import (
    CreditLedger,
    RebuildResult,
    UnparsedCreditRecord,
    deltas_from_notes,
    normalize_credit_history_record,
)
from src.services.credit_service import CreditService
from src.services.db import create_session
from src.services.errors import LedgerError
from src.services.logging import setup_logging
from src.services.parsers import parse_amount_to_centavos, parse_credit_notes, parse_timestamp

logger = logging.getLogger(__name__)


def _starting_balance(value: Any) -> int:
    """Integers are centavos; text is pesos as typed."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid starting balance {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return parse_amount_to_centavos(str(value)) or 0


def rebuild_unit(unit_data: Mapping[str, Any], source: str = "import") -> RebuildResult:
    """Rebuild one unit's ledger from its export record.

    Args:
        unit_data: {"notes": str} or {"startingBalance": ..., "history": [...]}
        source: Origin label stored on the rebuilt entries

    Raises:
        ValueError: If the record has neither notes nor history, or the
            starting balance is malformed
    """
    fallback = parse_timestamp(unit_data.get("updatedAt")) or datetime.now(timezone.utc)

    if unit_data.get("notes") is not None:
        parsed = parse_credit_notes(unit_data["notes"])
        deltas = deltas_from_notes(parsed, fallback, source=source)
        starting_balance = parsed.starting_balance or 0
        if starting_balance < 0:
            deltas.insert(
                0,
                UnparsedCreditRecord(raw=str(starting_balance), reason="negative starting balance"),
            )
            starting_balance = 0
    elif unit_data.get("history") is not None:
        starting_balance = _starting_balance(unit_data.get("startingBalance"))
        deltas = [normalize_credit_history_record(r, default_source=source) for r in unit_data["history"]]
    else:
        raise ValueError("Unit record has neither 'notes' nor 'history'")

    opened_at = parse_timestamp(unit_data.get("openedAt"))
    return CreditLedger.rebuild(starting_balance, deltas, opened_at=opened_at, source=source)


def _report(unit_id: str, result: RebuildResult) -> None:
    logger.info(
        f"Unit {unit_id}: {len(result.entries)} entries, balance {result.balance} centavos, "
        f"{len(result.unparsed)} unparsed"
    )
    for record in result.unparsed:
        logger.warning(f"Unit {unit_id}: needs manual review ({record.reason}): {record.raw.strip()[:200]}")


def run_import(config: ImportConfig) -> int:
    """Rebuild (and unless dry run, persist) every unit in the export.

    Returns:
        Exit code: 0 for success, 1 if any unit failed
    """
    with open(config.export_path, "r", encoding="utf-8") as f:
        export = json.load(f)

    client_id = str(export["clientId"])
    units = export["units"] or {}
    logger.info(f"Rebuilding credit ledgers for client {client_id}: {len(units)} unit(s)")

    results = {}
    failures = 0
    for unit_id, unit_data in units.items():
        try:
            results[unit_id] = rebuild_unit(unit_data, source=config.source_label)
        except (ValueError, LedgerError) as e:
            failures += 1
            logger.error(f"Unit {unit_id}: rebuild failed: {e}")
            continue
        _report(unit_id, results[unit_id])

    if config.dry_run:
        logger.info(f"Dry run: nothing written ({len(results)} unit(s) rebuilt, {failures} failed)")
        return 0 if failures == 0 else 1

    written = 0
    for db in create_session(config.database_url):
        store = ChargeBucketStore(db)
        credit = CreditService(db)
        for unit_id, result in results.items():
            unit = store.get_or_create_unit(UnitRef(client_id, str(unit_id)))
            try:
                credit.import_rebuild(unit, result)
                written += 1
            except LedgerError as e:
                failures += 1
                logger.error(f"Unit {unit_id}: import failed: {e.message}")

    logger.info(f"Import finished: {written} unit(s) written, {failures} failed")
    return 0 if failures == 0 else 1


def main() -> int:
    """
    Main entry point for the credit ledger rebuild CLI.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    try:
        config = load_import_config()
    except ValueError as e:
        setup_logging()
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(config.log_file)
    logger.info(f"Starting credit ledger rebuild from {config.export_path} (dry_run={config.dry_run})")
    try:
        return run_import(config)
    except KeyboardInterrupt:
        logger.warning("Rebuild interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Rebuild failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
