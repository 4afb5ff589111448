"""Charge bucket store: unit accounts and their billable instances.

Billing generation creates buckets here; the payment recorder is the only
caller that mutates them afterwards. Legacy-shaped records (camelCase keys,
several names for the same field, pesos vs. centavos) are normalized once
at this boundary so the allocation core only ever sees one canonical shape.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Mapping, NamedTuple, Optional

from sqlalchemy.orm import Session

from src.config.settings import settings
from src.models import BucketStatus, ChargeBucket, ChargeModule, UnitAccount
from src.services.errors import DataValidationError, UnitNotFoundError, ValidationError
from src.services.fiscal_year import calendar_to_fiscal_month, get_fiscal_year
from src.services.parsers import parse_amount_to_centavos, parse_legacy_date, parse_timestamp

logger = logging.getLogger(__name__)


class UnitRef(NamedTuple):
    """Identifies a billable unit of a client."""

    client_id: str
    unit_id: str


@dataclass(frozen=True)
class BucketSnapshot:
    """Read-only view of a bucket's outstanding amounts, as the planner needs it."""

    id: int
    module: ChargeModule
    period_date: date
    fiscal_year: int
    base_remaining: int
    penalty_remaining: int

    @property
    def remaining(self) -> int:
        return self.base_remaining + self.penalty_remaining

    @classmethod
    def from_model(cls, bucket: ChargeBucket) -> "BucketSnapshot":
        return cls(
            id=bucket.id,
            module=ChargeModule(bucket.module),
            period_date=bucket.period_date,
            fiscal_year=bucket.fiscal_year,
            base_remaining=bucket.base_remaining,
            penalty_remaining=bucket.penalty_remaining,
        )


# Legacy key names, canonical field first
MODULE_KEYS = ("module", "type", "billType")
PERIOD_DATE_KEYS = ("period_date", "periodDate", "dueDate", "due_date", "billDate", "bill_date")
FISCAL_YEAR_KEYS = ("fiscal_year", "fiscalYear", "year")
FISCAL_MONTH_KEYS = ("fiscal_month", "fiscalMonth", "month")
BASE_KEYS = ("base_amount", "baseAmount", "amount", "scheduledAmount", "baseCharge")
PENALTY_KEYS = ("penalty_amount", "penaltyAmount", "penalty", "lateFee")
REFERENCE_KEYS = ("reference", "label", "period", "billId")


def _pick(record: Mapping[str, Any], keys) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _to_centavos(value: Any, field_name: str) -> int:
    """Integers are centavos; text is pesos as typed ("1,250.00")."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise DataValidationError(f"{field_name}: invalid amount {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise DataValidationError(f"{field_name}: fractional centavos {value!r}")
        return int(value)
    try:
        return parse_amount_to_centavos(str(value)) or 0
    except ValueError as e:
        raise DataValidationError(f"{field_name}: {e}") from e


def normalize_bucket_record(
    record: Mapping[str, Any],
    fiscal_year_start_month: Optional[int] = None,
) -> dict:
    """Normalize a legacy bucket record into add_bucket keyword arguments.

    Args:
        record: Legacy bucket dict (any of the known key spellings)
        fiscal_year_start_month: Used to derive fiscal year/month when the
            record does not carry them (default: settings)

    Returns:
        Dict with module, period_date, fiscal_year, fiscal_month, base_amount,
        penalty_amount, reference

    Raises:
        DataValidationError: If a required field is missing or malformed
    """
    start_month = fiscal_year_start_month or settings.fiscal_year_start_month

    module_value = _pick(record, MODULE_KEYS)
    try:
        if isinstance(module_value, ChargeModule):
            module = module_value
        else:
            module = ChargeModule(str(module_value).lower())
    except ValueError as e:
        raise DataValidationError(f"Unknown charge module {module_value!r}") from e

    raw_date = _pick(record, PERIOD_DATE_KEYS)
    try:
        if isinstance(raw_date, date):
            period_date = raw_date
        elif isinstance(raw_date, str):
            period_date = parse_legacy_date(raw_date)
        else:
            stamp = parse_timestamp(raw_date)
            period_date = stamp.date() if stamp else None
    except ValueError as e:
        raise DataValidationError(f"period_date: {e}") from e
    if period_date is None:
        raise DataValidationError("Bucket record has no period/due date")

    fiscal_year = _pick(record, FISCAL_YEAR_KEYS)
    fiscal_year = int(fiscal_year) if fiscal_year is not None else get_fiscal_year(period_date, start_month)

    fiscal_month = _pick(record, FISCAL_MONTH_KEYS)
    if fiscal_month is not None:
        fiscal_month = int(fiscal_month)
    elif module == ChargeModule.DUES:
        fiscal_month = calendar_to_fiscal_month(period_date.month, start_month)

    reference = _pick(record, REFERENCE_KEYS)
    return {
        "module": module,
        "period_date": period_date,
        "fiscal_year": fiscal_year,
        "fiscal_month": fiscal_month,
        "base_amount": _to_centavos(_pick(record, BASE_KEYS), "base_amount"),
        "penalty_amount": _to_centavos(_pick(record, PENALTY_KEYS), "penalty_amount"),
        "reference": str(reference) if reference is not None else None,
    }


class ChargeBucketStore:
    """Persistence for unit accounts and charge buckets."""

    def __init__(self, db: Session):
        """Initialize bucket store.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def get_unit(self, unit_ref: UnitRef) -> UnitAccount:
        """Load a unit account.

        Raises:
            UnitNotFoundError: If the unit does not exist
        """
        unit = (
            self.db.query(UnitAccount)
            .filter_by(client_id=unit_ref.client_id, unit_id=unit_ref.unit_id)
            .first()
        )
        if unit is None:
            raise UnitNotFoundError(unit_ref.client_id, unit_ref.unit_id)
        return unit

    def get_or_create_unit(self, unit_ref: UnitRef) -> UnitAccount:
        """Load a unit account, creating it on first use."""
        try:
            return self.get_unit(unit_ref)
        except UnitNotFoundError:
            unit = UnitAccount(client_id=unit_ref.client_id, unit_id=unit_ref.unit_id, revision=0)
            self.db.add(unit)
            self.db.commit()
            self.db.refresh(unit)
            logger.info(f"Created unit account {unit_ref.client_id}/{unit_ref.unit_id} (ID={unit.id})")
            return unit

    def add_bucket(
        self,
        unit: UnitAccount,
        module: ChargeModule,
        period_date: date,
        base_amount: int,
        penalty_amount: int = 0,
        fiscal_year: Optional[int] = None,
        fiscal_month: Optional[int] = None,
        reference: Optional[str] = None,
    ) -> ChargeBucket:
        """Create a new unpaid bucket for a unit.

        Args:
            unit: Owning unit account
            module: Billing module (dues or water)
            period_date: Due/bill date used for payment ordering
            base_amount: Base charge in centavos (>= 0)
            penalty_amount: Penalty in centavos (>= 0)
            fiscal_year: Assigned fiscal year (default: derived from period_date)
            fiscal_month: Fiscal month position for dues (default: derived)
            reference: Optional human label

        Returns:
            Created ChargeBucket

        Raises:
            ValidationError: If an amount is negative or not an integer, or
                the bucket would be empty
        """
        for name, value in (("base_amount", base_amount), ("penalty_amount", penalty_amount)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
        if base_amount + penalty_amount == 0:
            raise ValidationError("Bucket total must be greater than zero")

        module = ChargeModule(module)
        start_month = settings.fiscal_year_start_month
        if fiscal_year is None:
            fiscal_year = get_fiscal_year(period_date, start_month)
        if fiscal_month is None and module == ChargeModule.DUES:
            fiscal_month = calendar_to_fiscal_month(period_date.month, start_month)

        bucket = ChargeBucket(
            unit_account_id=unit.id,
            module=module,
            fiscal_year=fiscal_year,
            fiscal_month=fiscal_month,
            period_date=period_date,
            reference=reference,
            base_amount=base_amount,
            penalty_amount=penalty_amount,
            base_paid=0,
            penalty_paid=0,
            paid_amount=0,
            status=BucketStatus.UNPAID,
        )
        self.db.add(bucket)
        unit.bump_revision()
        self.db.commit()
        self.db.refresh(bucket)
        logger.info(
            f"Added {module.value} bucket {bucket.id} for unit {unit.client_id}/{unit.unit_id}: "
            f"{period_date} base={base_amount} penalty={penalty_amount}"
        )
        return bucket

    def add_bucket_from_record(self, unit: UnitAccount, record: Mapping[str, Any]) -> ChargeBucket:
        """Create a bucket from a legacy-shaped record (see normalize_bucket_record)."""
        return self.add_bucket(unit, **normalize_bucket_record(record))

    def list_buckets(self, unit: UnitAccount, modules: Optional[List[ChargeModule]] = None) -> List[ChargeBucket]:
        """All buckets of a unit ordered by period date, then id."""
        query = self.db.query(ChargeBucket).filter(ChargeBucket.unit_account_id == unit.id)
        if modules:
            query = query.filter(ChargeBucket.module.in_([ChargeModule(m) for m in modules]))
        return query.order_by(ChargeBucket.period_date, ChargeBucket.id).all()

    def list_outstanding(self, unit: UnitAccount) -> List[ChargeBucket]:
        """Buckets that still have something owed, oldest first."""
        return (
            self.db.query(ChargeBucket)
            .filter(
                ChargeBucket.unit_account_id == unit.id,
                ChargeBucket.status != BucketStatus.PAID,
            )
            .order_by(ChargeBucket.period_date, ChargeBucket.id)
            .all()
        )

    def outstanding_snapshots(self, unit: UnitAccount) -> List[BucketSnapshot]:
        return [BucketSnapshot.from_model(b) for b in self.list_outstanding(unit) if b.remaining > 0]


__all__ = [
    "UnitRef",
    "BucketSnapshot",
    "ChargeBucketStore",
    "normalize_bucket_record",
]
