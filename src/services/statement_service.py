"""Statement of account reconstruction.

A statement is replayed from a unit's buckets and payments; nothing about it
is stored. Charge lines come from buckets (dated by period/due date, amount
base + penalty). Payment lines come from payments (dated by payment date,
amount = the part of the payment applied to in-scope buckets). Credit moves
are not statement lines; the current credit balance is reported alongside.

Ordering: date, then charges before payments on the same day, then id.
The running balance starts at 0 in every window.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from src.config.settings import settings
from src.models import AllocationTarget, ChargeModule, Payment
from src.services.bucket_store import ChargeBucketStore, UnitRef
from src.services.credit_service import CreditService
from src.services.errors import ValidationError

logger = logging.getLogger(__name__)


class LineKind(str, Enum):
    CHARGE = "charge"
    PAYMENT = "payment"


KIND_RANK = {LineKind.CHARGE: 0, LineKind.PAYMENT: 1}


@dataclass(frozen=True)
class StatementWindow:
    """Inclusive date window; None leaves that side open."""

    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start and self.end and self.start > self.end:
            raise ValidationError(f"Statement window start {self.start} is after end {self.end}")

    def contains(self, value: date) -> bool:
        if self.start and value < self.start:
            return False
        if self.end and value > self.end:
            return False
        return True


@dataclass(frozen=True)
class StatementLine:
    date: date
    kind: LineKind
    amount: int
    running_balance: int
    source_id: int
    description: str


@dataclass(frozen=True)
class Statement:
    """Reconstructed statement with summary totals.

    final_balance == total_due - total_paid == total_outstanding
    """

    unit: Optional[UnitRef]
    window: StatementWindow
    lines: Tuple[StatementLine, ...]
    final_balance: int
    credit_balance: int
    total_due: int
    total_paid: int
    total_outstanding: int


def _charge_description(bucket) -> str:
    module = ChargeModule(bucket.module)
    label = bucket.reference or bucket.period_date.isoformat()
    if module == ChargeModule.DUES:
        return f"Dues {label}"
    return f"Water bill {label}"


def reconstruct_statement(
    buckets: Iterable,
    payments: Iterable,
    credit_balance: int = 0,
    window: Optional[StatementWindow] = None,
    modules: Optional[Sequence[str]] = None,
    unit: Optional[UnitRef] = None,
) -> Statement:
    """Replay buckets and payments into a chronological statement.

    Args:
        buckets: ChargeBucket rows of the unit (all of them; the window and
            module scope are applied here)
        payments: Payment rows of the unit with their allocations
        credit_balance: Current credit ledger balance, reported as is
        window: Date window (default: everything)
        modules: Restrict to these charge modules (default: all)
        unit: Unit the statement is for (carried into the result)

    Returns:
        Statement; same inputs always give the same output
    """
    window = window or StatementWindow()
    scope = {ChargeModule(m) for m in modules} if modules else None

    buckets = list(buckets)
    in_scope_buckets = {
        b.id for b in buckets if scope is None or ChargeModule(b.module) in scope
    }

    pending = []
    for bucket in buckets:
        if bucket.id not in in_scope_buckets or not window.contains(bucket.period_date):
            continue
        amount = bucket.base_amount + (bucket.penalty_amount or 0)
        pending.append((bucket.period_date, LineKind.CHARGE, bucket.id, amount, _charge_description(bucket)))

    for payment in payments:
        if not window.contains(payment.payment_date):
            continue
        scoped = [
            a
            for a in payment.allocations
            if a.target == AllocationTarget.BUCKET and a.bucket_id in in_scope_buckets
        ]
        if scope is not None and not scoped:
            continue
        amount = sum(a.amount for a in scoped)
        description = f"Payment {payment.reference}" if payment.reference else f"Payment #{payment.id}"
        pending.append((payment.payment_date, LineKind.PAYMENT, payment.id, amount, description))

    pending.sort(key=lambda item: (item[0], KIND_RANK[item[1]], item[2]))

    lines = []
    balance = 0
    total_due = 0
    total_paid = 0
    for line_date, kind, source_id, amount, description in pending:
        if kind == LineKind.CHARGE:
            balance += amount
            total_due += amount
        else:
            balance -= amount
            total_paid += amount
        lines.append(
            StatementLine(
                date=line_date,
                kind=kind,
                amount=amount,
                running_balance=balance,
                source_id=source_id,
                description=description,
            )
        )

    return Statement(
        unit=unit,
        window=window,
        lines=tuple(lines),
        final_balance=balance,
        credit_balance=credit_balance,
        total_due=total_due,
        total_paid=total_paid,
        total_outstanding=total_due - total_paid,
    )


class StatementCache:
    """Small thread-safe LRU cache of statements."""

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._items: "OrderedDict[tuple, Statement]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: tuple) -> Optional[Statement]:
        with self._lock:
            statement = self._items.get(key)
            if statement is None:
                self.misses += 1
                return None
            self._items.move_to_end(key)
            self.hits += 1
            return statement

    def put(self, key: tuple, statement: Statement) -> None:
        if self.maxsize <= 0:
            return
        with self._lock:
            self._items[key] = statement
            self._items.move_to_end(key)
            while len(self._items) > self.maxsize:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class StatementService:
    """Statement reconstruction for stored units, cached by unit revision.

    A cached statement is only reused while the unit's revision is
    unchanged, so any new bucket, payment or credit movement makes the next
    request rebuild it.
    """

    def __init__(self, db: Session, cache: Optional[StatementCache] = None):
        self.db = db
        self.cache = cache if cache is not None else StatementCache(settings.statement_cache_size)
        self.buckets = ChargeBucketStore(db)
        self.credit = CreditService(db)

    def _payments(self, unit):
        return (
            self.db.query(Payment)
            .filter_by(unit_account_id=unit.id)
            .order_by(Payment.payment_date, Payment.id)
            .all()
        )

    def reconstruct(
        self,
        unit_ref: UnitRef,
        window: Optional[StatementWindow] = None,
        modules: Optional[Sequence[str]] = None,
    ) -> Statement:
        """Build (or fetch from cache) the unit's statement.

        Raises:
            UnitNotFoundError: If the unit does not exist
        """
        unit = self.buckets.get_unit(unit_ref)
        window = window or StatementWindow()
        module_key = tuple(sorted(ChargeModule(m).value for m in modules)) if modules else None
        key = (unit.client_id, unit.unit_id, unit.revision, window.start, window.end, module_key)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Statement cache hit for {unit.client_id}/{unit.unit_id} rev {unit.revision}")
            return cached

        statement = reconstruct_statement(
            self.buckets.list_buckets(unit),
            self._payments(unit),
            credit_balance=self.credit.current_balance(unit),
            window=window,
            modules=modules,
            unit=UnitRef(unit.client_id, unit.unit_id),
        )
        self.cache.put(key, statement)
        logger.debug(
            f"Reconstructed statement for {unit.client_id}/{unit.unit_id} rev {unit.revision}: "
            f"{len(statement.lines)} lines, outstanding {statement.total_outstanding}"
        )
        return statement


__all__ = [
    "LineKind",
    "StatementWindow",
    "StatementLine",
    "Statement",
    "StatementCache",
    "StatementService",
    "reconstruct_statement",
]
