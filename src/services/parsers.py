"""Legacy credit-history parsing utilities.

Older unit records kept the credit balance history as free text typed by
administrators, for example::

    Starting Balance: $1,500.00
    ---
    Credit Adjusted to MXN 2,300.00 on Aug 01 2025 from HOA payment Seq: 25012
    ---
    Added 800.00 MXN in July dues overpayment on 10/2/2025

This module turns that text into typed notes. Anything that does not match a
known phrasing is returned as UNPARSED with a reason, never guessed.

Money formats handled:
- Thousand separator: comma (,)
- Decimal separator: dot (.)
- Optional currency markers: $, MXN
- Amounts are returned as integer centavos

Example:
    >>> parse_amount_to_centavos("$1,234.56")
    123456

    >>> parse_legacy_date("Aug 01 2025")
    datetime.date(2025, 8, 1)
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

BLOCK_SEPARATOR_RE = re.compile(r"\n\s*-{3,}\s*\n")
STARTING_BALANCE_RE = re.compile(r"Starting Balance:\s*\$?\s*(?P<amount>[0-9,.\-]+)", re.IGNORECASE)
ADJUSTED_TO_RE = re.compile(
    r"Credit Adjusted to\s+MXN\s*\$?\s*(?P<amount>[0-9,.\-]+)\s+on\s+"
    r"(?P<date>(?:[A-Za-z]{3}\s+)?[A-Za-z]{3}\s+\d{1,2}\s+\d{4}|\d{1,2}/\d{1,2}/\d{4})"
    r"(?:\s+\d{1,2}:\d{2}:\d{2}\s+GMT[+-]\d{4}(?:\s+\([^)]*\))?)?"
    r"\s*(?:from\s+)?(?P<rest>.*)$",
    re.IGNORECASE,
)
ADDED_RE = re.compile(
    r"Added\s+\$?(?P<amount>[0-9,.\-]+)\s*MXN\s+(?:in\s+)?(?P<desc>.+?)\s+on\s+"
    r"(?P<date>\d{1,2}/\d{1,2}/\d{4})",
    re.IGNORECASE,
)
SHORT_DATE_RE = re.compile(r"([A-Za-z]{3})\s+(\d{1,2})\s+(\d{4})")
SLASH_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


class NoteKind(str, Enum):
    """Recognised phrasings of a legacy credit note block."""

    ADJUSTED_TO = "adjusted_to"
    """Absolute balance after the change ("Credit Adjusted to MXN X")"""

    ADDED = "added"
    """Relative amount banked ("Added X MXN")"""

    UNPARSED = "unparsed"
    """Needs manual review"""


@dataclass(frozen=True)
class LegacyCreditNote:
    """One block of a legacy credit note.

    amount is the target balance for ADJUSTED_TO and the delta for ADDED,
    both in centavos. UNPARSED blocks carry the reason instead.
    """

    kind: NoteKind
    raw_text: str
    amount: int | None = None
    occurred_on: date | None = None
    description: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ParsedCreditNotes:
    """Result of parsing a whole legacy credit note."""

    starting_balance: int | None
    notes: list[LegacyCreditNote] = field(default_factory=list)

    @property
    def unparsed(self) -> list[LegacyCreditNote]:
        return [n for n in self.notes if n.kind == NoteKind.UNPARSED]


def parse_amount_to_centavos(value: Optional[str]) -> Optional[int]:
    """
    Parse a legacy money string to integer centavos.

    Args:
        value: Amount string (e.g., "$1,234.56", "MXN 800", "-250.5") or None/empty

    Returns:
        Amount in centavos or None if input is empty

    Raises:
        ValueError: If value cannot be parsed as a number

    Examples:
        >>> parse_amount_to_centavos("$1,234.56")
        123456
        >>> parse_amount_to_centavos("-250.5")
        -25050
        >>> parse_amount_to_centavos("")
        None
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Cannot parse amount {value!r}: expected text")

    value = value.strip()
    if not value:
        return None

    normalized = re.sub(r"(?i)\bMXN\b", "", value)
    normalized = normalized.replace("$", "").replace(",", "").replace(" ", "").replace("\xa0", "")
    try:
        pesos = Decimal(normalized)
    except InvalidOperation as e:
        raise ValueError(f"Cannot parse amount '{value}': {e}") from e
    if not pesos.is_finite():
        raise ValueError(f"Cannot parse amount '{value}': not a finite number")

    centavos = (pesos * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(centavos)


def parse_legacy_date(value: Optional[str]) -> Optional[date]:
    """Parse a date as written in legacy notes.

    Handles ISO dates ("2025-08-01", optionally with a time part),
    "Aug 01 2025" (optionally preceded by a weekday) and US-style "10/2/2025".

    Raises:
        ValueError: If no supported format matches

    Examples:
        >>> parse_legacy_date("2025-08-01T10:00:00Z")
        datetime.date(2025, 8, 1)
        >>> parse_legacy_date("Fri Aug 01 2025")
        datetime.date(2025, 8, 1)
        >>> parse_legacy_date("10/2/2025")
        datetime.date(2025, 10, 2)
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass

    try:
        slash = SLASH_DATE_RE.match(value)
        if slash:
            return date(int(slash.group(3)), int(slash.group(1)), int(slash.group(2)))

        for short in SHORT_DATE_RE.finditer(value):
            month = MONTHS.get(short.group(1).lower())
            if month:
                return date(int(short.group(3)), month, int(short.group(2)))
    except ValueError as e:
        raise ValueError(f"Cannot parse date '{value}': {e}") from e

    raise ValueError(f"Cannot parse date '{value}' (expected YYYY-MM-DD, 'Mon DD YYYY' or M/D/YYYY)")


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a legacy timestamp (datetime, date, ISO string or epoch seconds).

    Naive values are taken as UTC; the result is always timezone-aware.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, dict):
        # Exported document-store timestamps: {"seconds": ..., "nanoseconds": ...}
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is not None:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        return parse_timestamp(value.get("iso"))
    if isinstance(value, str):
        text = value.strip()
        try:
            return parse_timestamp(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            parsed = parse_legacy_date(text)
            return parse_timestamp(parsed)
    raise ValueError(f"Cannot parse timestamp {value!r}")


def _parse_block(block: str) -> LegacyCreditNote:
    lines = [line.strip() for line in block.splitlines() if line.strip()]
    main_line = lines[0]
    details = " ".join(lines[1:]) or None

    adjusted = ADJUSTED_TO_RE.search(main_line)
    added = None if adjusted else ADDED_RE.search(main_line)
    match = adjusted or added
    if match is None:
        return LegacyCreditNote(
            kind=NoteKind.UNPARSED,
            raw_text=block,
            reason="no known credit phrasing",
        )

    try:
        amount = parse_amount_to_centavos(match.group("amount"))
        occurred_on = parse_legacy_date(match.group("date"))
    except ValueError as e:
        return LegacyCreditNote(kind=NoteKind.UNPARSED, raw_text=block, reason=str(e))

    if adjusted:
        description = adjusted.group("rest").strip() or details
        return LegacyCreditNote(
            kind=NoteKind.ADJUSTED_TO,
            raw_text=block,
            amount=amount,
            occurred_on=occurred_on,
            description=description,
        )

    return LegacyCreditNote(
        kind=NoteKind.ADDED,
        raw_text=block,
        amount=amount,
        occurred_on=occurred_on,
        description=added.group("desc").strip(),
    )


def parse_credit_notes(text: Optional[str]) -> ParsedCreditNotes:
    """
    Parse a free-text legacy credit note into typed blocks.

    Blocks are separated by lines of three or more dashes. The first block
    may hold "Starting Balance: $X"; when it does not, it is parsed like any
    other block so nothing is dropped.

    Args:
        text: The whole note as stored on the legacy record

    Returns:
        ParsedCreditNotes with the starting balance (centavos, or None) and
        one LegacyCreditNote per remaining block, in written order
    """
    if not text or not text.strip():
        return ParsedCreditNotes(starting_balance=None)

    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    blocks = [b.strip() for b in BLOCK_SEPARATOR_RE.split(normalized) if b.strip()]

    starting_balance = None
    notes: list[LegacyCreditNote] = []

    start_match = STARTING_BALANCE_RE.search(blocks[0])
    if start_match:
        try:
            starting_balance = parse_amount_to_centavos(start_match.group("amount"))
        except ValueError as e:
            notes.append(LegacyCreditNote(kind=NoteKind.UNPARSED, raw_text=blocks[0], reason=str(e)))
        blocks = blocks[1:]

    notes.extend(_parse_block(block) for block in blocks)
    return ParsedCreditNotes(starting_balance=starting_balance, notes=notes)


__all__ = [
    "NoteKind",
    "LegacyCreditNote",
    "ParsedCreditNotes",
    "parse_amount_to_centavos",
    "parse_legacy_date",
    "parse_timestamp",
    "parse_credit_notes",
]
