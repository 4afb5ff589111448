"""Dual-basis classifier: which fiscal year an allocation counts toward.

Two rules, selected per allocation:

- Accrual: bucket allocations of an accrual module (dues by default) count
  for the fiscal year the bucket is assigned to, whenever they were paid.
  Prepaying next year's dues does not inflate this year's dues income.
- Cash: credit movements and every other allocation (water bills) count for
  the fiscal year in which the payment was received.

received_total is the raw money received in the year (signed sum of all
allocations whose payment date falls in it) and generally differs from
counted_total.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, Optional, Sequence

from src.models import Allocation, AllocationTarget, ChargeModule
from src.services.errors import ValidationError
from src.services.fiscal_year import is_in_fiscal_year

logger = logging.getLogger(__name__)

CREDIT_CATEGORY = "credit"


@dataclass(frozen=True)
class ClassifiableAllocation:
    """The facts of a persisted allocation the classifier needs."""

    amount: int
    payment_date: date
    target: AllocationTarget
    module: Optional[ChargeModule] = None
    bucket_fiscal_year: Optional[int] = None

    @property
    def category(self) -> str:
        if self.target == AllocationTarget.CREDIT or self.module is None:
            return CREDIT_CATEGORY
        return ChargeModule(self.module).value

    @classmethod
    def from_allocation(cls, allocation: Allocation) -> "ClassifiableAllocation":
        """Build from an Allocation ORM row (payment and bucket are lazy-loaded)."""
        bucket = allocation.bucket
        return cls(
            amount=allocation.amount,
            payment_date=allocation.payment.payment_date,
            target=AllocationTarget(allocation.target),
            module=ChargeModule(bucket.module) if bucket is not None else None,
            bucket_fiscal_year=bucket.fiscal_year if bucket is not None else None,
        )


@dataclass
class ClassificationResult:
    """Totals counted toward one fiscal year."""

    fiscal_year: int
    counted_total: int = 0
    accrual_total: int = 0
    cash_total: int = 0
    received_total: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)


class DualBasisClassifier:
    """Classifies allocations into fiscal years under the dual basis.

    Args:
        fiscal_year_start_month: Calendar month the fiscal year starts (1-12)
        accrual_modules: Modules reported on accrual basis (default: dues)
    """

    def __init__(
        self,
        fiscal_year_start_month: int = 1,
        accrual_modules: Optional[Sequence[str]] = None,
    ):
        if accrual_modules is None:
            accrual_modules = [ChargeModule.DUES.value]
        self.fiscal_year_start_month = fiscal_year_start_month
        self.accrual_modules = frozenset(ChargeModule(m) for m in accrual_modules)

    def is_accrual(self, allocation: ClassifiableAllocation) -> bool:
        return (
            allocation.target == AllocationTarget.BUCKET
            and allocation.module is not None
            and ChargeModule(allocation.module) in self.accrual_modules
        )

    def classify(self, allocations: Iterable[ClassifiableAllocation], fiscal_year: int) -> ClassificationResult:
        """Total the allocations that count toward a fiscal year.

        Raises:
            ValidationError: If an accrual allocation has no bucket fiscal year
        """
        result = ClassificationResult(fiscal_year=fiscal_year)
        by_category: Dict[str, int] = defaultdict(int)

        for allocation in allocations:
            received_in_year = is_in_fiscal_year(
                allocation.payment_date, fiscal_year, self.fiscal_year_start_month
            )
            if received_in_year:
                result.received_total += allocation.amount

            if self.is_accrual(allocation):
                if allocation.bucket_fiscal_year is None:
                    raise ValidationError("Accrual allocation has no bucket fiscal year")
                if allocation.bucket_fiscal_year != fiscal_year:
                    continue
                result.accrual_total += allocation.amount
            else:
                if not received_in_year:
                    continue
                result.cash_total += allocation.amount

            by_category[allocation.category] += allocation.amount

        result.counted_total = result.accrual_total + result.cash_total
        result.by_category = dict(by_category)
        logger.debug(
            f"Classified FY{fiscal_year}: counted={result.counted_total} "
            f"(accrual={result.accrual_total}, cash={result.cash_total}), received={result.received_total}"
        )
        return result

    def classify_rows(self, allocations: Iterable[Allocation], fiscal_year: int) -> ClassificationResult:
        """classify() over persisted Allocation rows."""
        return self.classify((ClassifiableAllocation.from_allocation(a) for a in allocations), fiscal_year)


__all__ = [
    "ClassifiableAllocation",
    "ClassificationResult",
    "DualBasisClassifier",
]
