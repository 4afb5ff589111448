"""Credit ledger domain logic: append-only per-unit credit balance history.

The ledger is the single source of truth for how much pre-paid surplus a
unit holds. It never stores a balance on its own: the balance is the
balance_after of the last entry, and every entry must chain exactly from
the one before it.

Entry arithmetic:
    starting_balance, credit_added:  balance_after == balance_before + amount
    credit_used:                     balance_after == balance_before - amount

This module is pure (no database access). Persistence lives in
credit_service.CreditService.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence

from src.models.credit_ledger_entry import CreditEntryType
from src.services.errors import DataValidationError, LedgerInvariantError
from src.services.parsers import (
    NoteKind,
    ParsedCreditNotes,
    parse_amount_to_centavos,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as loaded from SQLite) as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable credit ledger entry (domain view of CreditLedgerEntry)."""

    sequence: int
    timestamp: datetime
    entry_type: CreditEntryType
    amount: int
    balance_before: int
    balance_after: int
    payment_id: int | None = None
    note: str | None = None
    source: str | None = None
    id: int | None = None

    @property
    def signed_amount(self) -> int:
        if self.entry_type == CreditEntryType.CREDIT_USED:
            return -self.amount
        return self.amount

    @classmethod
    def from_model(cls, row) -> "LedgerEntry":
        """Build from a CreditLedgerEntry ORM row."""
        return cls(
            sequence=row.sequence,
            timestamp=as_utc(row.timestamp),
            entry_type=CreditEntryType(row.entry_type),
            amount=row.amount,
            balance_before=row.balance_before,
            balance_after=row.balance_after,
            payment_id=row.payment_id,
            note=row.note,
            source=row.source,
            id=row.id,
        )


@dataclass(frozen=True)
class CreditDelta:
    """A clean signed change of credit parsed from a legacy record."""

    amount: int
    timestamp: datetime
    note: str | None = None
    source: str | None = "import"


@dataclass(frozen=True)
class UnparsedCreditRecord:
    """A legacy record that needs manual review."""

    raw: str
    reason: str
    timestamp: datetime | None = None


@dataclass
class RebuildResult:
    """Outcome of rebuilding a ledger from legacy history."""

    ledger: "CreditLedger"
    unparsed: list[UnparsedCreditRecord] = field(default_factory=list)

    @property
    def entries(self) -> list[LedgerEntry]:
        return self.ledger.entries

    @property
    def balance(self) -> int:
        return self.ledger.current_balance()


class CreditLedger:
    """In-memory credit ledger for one unit.

    Construct from the unit's stored entries (ordered by sequence); the
    whole chain is validated on load so a corrupted store is detected
    before any new entry is appended.
    """

    def __init__(self, entries: Iterable[LedgerEntry] = ()):
        self._entries: list[LedgerEntry] = []
        for entry in entries:
            self.append(entry)

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    @property
    def last_entry(self) -> LedgerEntry | None:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def current_balance(self) -> int:
        """Balance after the last entry, or 0 for an empty ledger."""
        last = self.last_entry
        return last.balance_after if last else 0

    def replayed_balance(self) -> int:
        """Recompute the balance from entry 0 using only signed amounts."""
        balance = 0
        for entry in self._entries:
            balance += entry.signed_amount
        return balance

    def validate(self, entry: LedgerEntry) -> None:
        """Check that entry may be appended next.

        Raises:
            LedgerInvariantError: On any arithmetic, ordering or sign violation
        """
        expected_sequence = len(self._entries)
        if entry.sequence != expected_sequence:
            raise LedgerInvariantError(
                f"Entry sequence {entry.sequence} does not follow ledger length {expected_sequence}"
            )
        if isinstance(entry.amount, bool) or not isinstance(entry.amount, int):
            raise LedgerInvariantError(f"Entry amount must be integer centavos, got {entry.amount!r}")
        if entry.amount < 0:
            raise LedgerInvariantError(f"Entry amount must be non-negative, got {entry.amount}")

        current = self.current_balance()
        if entry.balance_before != current:
            raise LedgerInvariantError(
                f"balance_before {entry.balance_before} does not match current balance {current}"
            )

        if entry.entry_type == CreditEntryType.STARTING_BALANCE and self._entries:
            raise LedgerInvariantError("starting_balance is only allowed as the first entry")

        expected_after = entry.balance_before + entry.signed_amount
        if entry.balance_after != expected_after:
            raise LedgerInvariantError(
                f"balance_after {entry.balance_after} != {entry.balance_before} "
                f"{'-' if entry.entry_type == CreditEntryType.CREDIT_USED else '+'} {entry.amount}"
            )
        if entry.balance_after < 0:
            raise LedgerInvariantError(
                f"Insufficient credit: balance {entry.balance_before}, requested {entry.amount}"
            )

        last = self.last_entry
        if last is not None and as_utc(entry.timestamp) < as_utc(last.timestamp):
            raise LedgerInvariantError(
                f"Entry timestamp {entry.timestamp.isoformat()} is earlier than "
                f"last entry {last.timestamp.isoformat()}"
            )

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Validate and append an entry; returns the appended entry."""
        self.validate(entry)
        self._entries.append(entry)
        return entry

    def next_entry(
        self,
        entry_type: CreditEntryType,
        amount: int,
        timestamp: datetime,
        payment_id: int | None = None,
        note: str | None = None,
        source: str | None = None,
    ) -> LedgerEntry:
        """Build (without appending) the correctly chained next entry."""
        before = self.current_balance()
        signed = -amount if entry_type == CreditEntryType.CREDIT_USED else amount
        entry = LedgerEntry(
            sequence=len(self._entries),
            timestamp=timestamp,
            entry_type=entry_type,
            amount=amount,
            balance_before=before,
            balance_after=before + signed,
            payment_id=payment_id,
            note=note,
            source=source,
        )
        self.validate(entry)
        return entry

    @classmethod
    def rebuild(
        cls,
        starting_balance: int,
        deltas: Sequence["CreditDelta | UnparsedCreditRecord"],
        opened_at: datetime | None = None,
        source: str = "import",
    ) -> RebuildResult:
        """Rebuild a ledger from a starting balance and legacy signed deltas.

        Every balance_before/balance_after is recomputed from scratch; no
        balance stored on the legacy records is trusted. Deltas are replayed
        oldest first (stable for equal timestamps). Unparsed records, zero
        deltas and deltas that would overdraw the balance are reported in
        RebuildResult.unparsed and excluded from the replayed balance.

        Args:
            starting_balance: Opening balance in centavos (>= 0)
            deltas: Parsed deltas and unparsed records, in legacy order
            opened_at: Timestamp of the starting_balance entry (defaults to
                the earliest delta, or now)
            source: Origin label for the starting_balance entry

        Raises:
            LedgerInvariantError: If starting_balance is negative
        """
        if isinstance(starting_balance, bool) or not isinstance(starting_balance, int):
            raise LedgerInvariantError(f"Starting balance must be integer centavos, got {starting_balance!r}")
        if starting_balance < 0:
            raise LedgerInvariantError(f"Starting balance cannot be negative: {starting_balance}")

        unparsed = [d for d in deltas if isinstance(d, UnparsedCreditRecord)]
        clean = sorted(
            (d for d in deltas if isinstance(d, CreditDelta)),
            key=lambda d: as_utc(d.timestamp),
        )

        if opened_at is None:
            opened_at = clean[0].timestamp if clean else datetime.now(timezone.utc)
        opened_at = as_utc(opened_at)
        if clean and as_utc(clean[0].timestamp) < opened_at:
            opened_at = as_utc(clean[0].timestamp)

        ledger = cls()
        ledger.append(
            ledger.next_entry(
                CreditEntryType.STARTING_BALANCE,
                starting_balance,
                opened_at,
                note="Starting balance",
                source=source,
            )
        )

        for delta in clean:
            if delta.amount == 0:
                unparsed.append(
                    UnparsedCreditRecord(raw=delta.note or "", reason="zero-amount change", timestamp=delta.timestamp)
                )
                continue
            if delta.amount < 0 and -delta.amount > ledger.current_balance():
                unparsed.append(
                    UnparsedCreditRecord(
                        raw=delta.note or "",
                        reason=(
                            f"would overdraw credit: balance {ledger.current_balance()}, "
                            f"change {delta.amount}"
                        ),
                        timestamp=delta.timestamp,
                    )
                )
                continue

            entry_type = CreditEntryType.CREDIT_ADDED if delta.amount > 0 else CreditEntryType.CREDIT_USED
            ledger.append(
                ledger.next_entry(
                    entry_type,
                    abs(delta.amount),
                    as_utc(delta.timestamp),
                    note=delta.note,
                    source=delta.source,
                )
            )

        if unparsed:
            logger.warning(f"Ledger rebuild left {len(unparsed)} record(s) for manual review")
        logger.info(
            f"Rebuilt credit ledger: {len(ledger)} entries, balance {ledger.current_balance()} centavos"
        )
        return RebuildResult(ledger=ledger, unparsed=unparsed)


# Legacy import: normalize old record shapes into CreditDelta/UnparsedCreditRecord

AMOUNT_KEYS = ("amount", "amountCentavos", "amount_centavos", "change", "delta")
TIMESTAMP_KEYS = ("timestamp", "date", "createdAt", "created_at")
NOTE_KEYS = ("note", "notes", "description", "memo")


def _first_present(record: Mapping, keys: Sequence[str]):
    for key in keys:
        if key in record and record[key] not in (None, ""):
            return record[key]
    return None


def normalize_credit_history_record(
    record: Mapping,
    default_source: str = "import",
) -> CreditDelta | UnparsedCreditRecord:
    """Normalize one structured legacy history record into a signed delta.

    Legacy history rows stored a signed amount in centavos under varying key
    names; text amounts ("$1,200.00") are read as pesos. The stored running
    balance on the row is ignored.
    """
    raw = repr(dict(record))
    try:
        amount_value = _first_present(record, AMOUNT_KEYS)
        if amount_value is None:
            raise DataValidationError("missing amount")
        if isinstance(amount_value, bool):
            raise DataValidationError(f"invalid amount {amount_value!r}")
        if isinstance(amount_value, int):
            amount = amount_value
        elif isinstance(amount_value, float):
            if not amount_value.is_integer():
                raise DataValidationError(f"fractional centavos {amount_value!r}")
            amount = int(amount_value)
        else:
            amount = parse_amount_to_centavos(str(amount_value))

        timestamp = parse_timestamp(_first_present(record, TIMESTAMP_KEYS))
        if timestamp is None:
            raise DataValidationError("missing timestamp")
    except (ValueError, DataValidationError) as e:
        reason = e.message if isinstance(e, DataValidationError) else str(e)
        return UnparsedCreditRecord(raw=raw, reason=reason)

    note = _first_present(record, NOTE_KEYS)
    return CreditDelta(
        amount=amount,
        timestamp=timestamp,
        note=str(note) if note is not None else None,
        source=str(record.get("source") or default_source),
    )


def deltas_from_notes(
    parsed: ParsedCreditNotes,
    default_timestamp: datetime,
    source: str = "import",
) -> list[CreditDelta | UnparsedCreditRecord]:
    """Convert parsed free-text notes into signed deltas.

    "Added X" blocks are deltas as written. "Adjusted to X" blocks state
    the balance after the change, so their delta is taken against the
    previous stated balance. An "Added" block that would overdraw the
    running balance is flagged, and so is a balance statement that follows
    it or an unparsed block: the dropped change would be folded into the
    adjustment. The stated balance becomes the new reference for later
    blocks.
    """
    results: list[CreditDelta | UnparsedCreditRecord] = []
    reference_balance = parsed.starting_balance or 0
    reference_reliable = True
    last_timestamp = as_utc(default_timestamp)

    for note in parsed.notes:
        timestamp = parse_timestamp(note.occurred_on) if note.occurred_on else last_timestamp
        if note.kind == NoteKind.UNPARSED:
            results.append(UnparsedCreditRecord(raw=note.raw_text, reason=note.reason or "unparsed", timestamp=None))
            reference_reliable = False
            continue

        last_timestamp = timestamp
        if note.kind == NoteKind.ADDED:
            if reference_reliable and reference_balance + note.amount < 0:
                # rebuild() would drop it, so the next stated balance cannot be diffed against it
                results.append(
                    UnparsedCreditRecord(
                        raw=note.raw_text,
                        reason=f"would overdraw credit: balance {reference_balance}, change {note.amount}",
                        timestamp=timestamp,
                    )
                )
                reference_reliable = False
                continue
            results.append(CreditDelta(amount=note.amount, timestamp=timestamp, note=note.description, source=source))
            reference_balance += note.amount
            continue

        # NoteKind.ADJUSTED_TO
        if not reference_reliable:
            results.append(
                UnparsedCreditRecord(
                    raw=note.raw_text,
                    reason="balance adjustment follows an unparsed entry; change cannot be isolated",
                    timestamp=timestamp,
                )
            )
        else:
            results.append(
                CreditDelta(
                    amount=note.amount - reference_balance,
                    timestamp=timestamp,
                    note=note.description,
                    source=source,
                )
            )
        reference_balance = note.amount
        reference_reliable = True

    return results


__all__ = [
    "LedgerEntry",
    "CreditDelta",
    "UnparsedCreditRecord",
    "RebuildResult",
    "CreditLedger",
    "as_utc",
    "normalize_credit_history_record",
    "deltas_from_notes",
]
