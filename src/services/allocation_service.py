"""Allocation planner: splits one payment across outstanding charge buckets.

Ordering of the single priority queue built over all modules:
1. Every penalty remainder, oldest period first
2. Every base remainder, oldest period first
Same-date ties break by module priority (dues before water by default),
then by bucket id.

Whatever the buckets do not absorb is banked as credit; when the payment is
short, existing credit covers the rest. Exactly one credit line is emitted
when credit moves, and the signed sum of all lines always equals the
payment amount.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from src.models import AllocationTarget, ChargeModule, CreditEntryType
from src.services.bucket_store import BucketSnapshot
from src.services.errors import LedgerInvariantError, ValidationError

logger = logging.getLogger(__name__)

PENALTY = "penalty"
BASE = "base"
PORTION_RANK = {PENALTY: 0, BASE: 1}


def validate_amount(amount, name: str = "amount") -> int:
    """Reject non-integer (including bool) or non-positive money amounts."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{name} must be an integer number of centavos, got {amount!r}")
    if amount <= 0:
        raise ValidationError(f"{name} must be greater than zero, got {amount}")
    return amount


@dataclass(frozen=True)
class PlannedAllocation:
    """One proposed line of a payment split.

    Bucket lines are positive and carry the penalty/base breakdown. The
    credit line is negative for credit_used and positive for credit_added.
    """

    target: AllocationTarget
    amount: int
    bucket_id: Optional[int] = None
    module: Optional[ChargeModule] = None
    period_date: Optional[date] = None
    penalty_portion: int = 0
    base_portion: int = 0
    credit_entry_type: Optional[CreditEntryType] = None


@dataclass(frozen=True)
class AllocationPlan:
    """Result of planning one payment, tagged with the unit revision it was built from."""

    amount: int
    payment_date: date
    allocations: List[PlannedAllocation]
    credit_balance_before: int
    credit_used: int
    credit_added: int
    new_credit_balance: int
    client_id: Optional[str] = None
    unit_id: Optional[str] = None
    revision: Optional[int] = None
    notes: List[str] = field(default_factory=list)

    @property
    def bucket_allocations(self) -> List[PlannedAllocation]:
        return [a for a in self.allocations if a.target == AllocationTarget.BUCKET]

    @property
    def credit_allocation(self) -> Optional[PlannedAllocation]:
        for allocation in self.allocations:
            if allocation.target == AllocationTarget.CREDIT:
                return allocation
        return None

    @property
    def applied_to_buckets(self) -> int:
        return sum(a.amount for a in self.bucket_allocations)

    @property
    def signed_total(self) -> int:
        return sum(a.amount for a in self.allocations)

    def bucket_totals(self) -> Dict[int, Dict[str, int]]:
        """Per-bucket {"penalty", "base"} portions, merged across lines."""
        totals: Dict[int, Dict[str, int]] = {}
        for allocation in self.bucket_allocations:
            entry = totals.setdefault(allocation.bucket_id, {PENALTY: 0, BASE: 0})
            entry[PENALTY] += allocation.penalty_portion
            entry[BASE] += allocation.base_portion
        return totals

    def same_split(self, other: "AllocationPlan") -> bool:
        """True if both plans move the same money to the same targets."""
        return (
            self.amount == other.amount
            and self.credit_used == other.credit_used
            and self.credit_added == other.credit_added
            and self.bucket_totals() == other.bucket_totals()
        )

    def validate(self) -> None:
        """Check the plan's internal money invariants.

        Raises:
            ValidationError: If the amount is invalid, a line is malformed, or
                the signed sum does not equal the payment amount
        """
        validate_amount(self.amount)
        if not isinstance(self.payment_date, date):
            raise ValidationError("Plan has no valid payment date")

        credit_lines = [a for a in self.allocations if a.target == AllocationTarget.CREDIT]
        if len(credit_lines) > 1:
            raise ValidationError("Plan has more than one credit line")
        if self.credit_used and self.credit_added:
            raise ValidationError("Plan both uses and adds credit")

        for allocation in self.allocations:
            if isinstance(allocation.amount, bool) or not isinstance(allocation.amount, int):
                raise ValidationError(f"Allocation amount must be an integer, got {allocation.amount!r}")
            if allocation.target == AllocationTarget.BUCKET:
                if allocation.bucket_id is None or allocation.amount <= 0:
                    raise ValidationError("Bucket allocation needs a bucket id and a positive amount")
                if allocation.penalty_portion + allocation.base_portion != allocation.amount:
                    raise ValidationError(
                        f"Bucket {allocation.bucket_id}: penalty + base portions != amount"
                    )

        for line in credit_lines:
            if isinstance(line.amount, bool) or not isinstance(line.amount, int) or line.amount == 0:
                raise ValidationError(f"Credit line amount must be a non-zero integer, got {line.amount!r}")
            expected_type = CreditEntryType.CREDIT_USED if line.amount < 0 else CreditEntryType.CREDIT_ADDED
            if line.credit_entry_type != expected_type:
                raise ValidationError(
                    f"Credit line of {line.amount} must be {expected_type.value}, "
                    f"got {getattr(line.credit_entry_type, 'value', line.credit_entry_type)}"
                )

        expected_credit = self.credit_added - self.credit_used
        actual_credit = credit_lines[0].amount if credit_lines else 0
        if actual_credit != expected_credit:
            raise ValidationError(
                f"Credit line {actual_credit} does not match credit used/added {expected_credit}"
            )
        if self.new_credit_balance != self.credit_balance_before + expected_credit:
            raise ValidationError("Projected credit balance does not follow from credit movement")
        if self.signed_total != self.amount:
            raise ValidationError(
                f"Allocation sum {self.signed_total} does not equal payment amount {self.amount}"
            )


class AllocationPlanner:
    """Payment allocation engine.

    Args:
        module_priority: Module names in tie-break order for buckets due on the
            same date; modules not listed sort after the listed ones
    """

    def __init__(self, module_priority: Optional[Sequence[str]] = None):
        """Initialize allocation planner."""
        if module_priority is None:
            module_priority = [ChargeModule.DUES.value, ChargeModule.WATER.value]
        self.module_rank = {ChargeModule(m): i for i, m in enumerate(module_priority)}

    def _queue(self, buckets: Iterable[BucketSnapshot]) -> List[tuple]:
        fallback_rank = len(self.module_rank)
        queue = []
        for bucket in buckets:
            module_rank = self.module_rank.get(bucket.module, fallback_rank)
            if bucket.penalty_remaining > 0:
                queue.append(
                    ((PORTION_RANK[PENALTY], bucket.period_date, module_rank, bucket.id), PENALTY, bucket)
                )
            if bucket.base_remaining > 0:
                queue.append(
                    ((PORTION_RANK[BASE], bucket.period_date, module_rank, bucket.id), BASE, bucket)
                )
        queue.sort(key=lambda item: item[0])
        return queue

    def plan(
        self,
        buckets: Iterable[BucketSnapshot],
        credit_balance: int,
        amount: int,
        payment_date: date,
    ) -> AllocationPlan:
        """Compute how a payment should be split.

        Args:
            buckets: Outstanding buckets of the unit
            credit_balance: Current credit balance in centavos
            amount: Payment amount in centavos (> 0)
            payment_date: Date the money was received

        Returns:
            AllocationPlan (revision/unit fields left for the caller to set)

        Raises:
            ValidationError: If amount, credit balance or date is invalid
            LedgerInvariantError: If the computed lines do not sum to amount
        """
        validate_amount(amount)
        if isinstance(credit_balance, bool) or not isinstance(credit_balance, int) or credit_balance < 0:
            raise ValidationError(f"Credit balance must be a non-negative integer, got {credit_balance!r}")
        if isinstance(payment_date, datetime):
            payment_date = payment_date.date()
        if not isinstance(payment_date, date):
            raise ValidationError(f"payment_date must be a date, got {payment_date!r}")

        available = amount + credit_balance
        allocations: List[PlannedAllocation] = []

        for _key, portion, bucket in self._queue(buckets):
            if available == 0:
                break
            remainder = bucket.penalty_remaining if portion == PENALTY else bucket.base_remaining
            take = min(remainder, available)
            allocations.append(
                PlannedAllocation(
                    target=AllocationTarget.BUCKET,
                    amount=take,
                    bucket_id=bucket.id,
                    module=bucket.module,
                    period_date=bucket.period_date,
                    penalty_portion=take if portion == PENALTY else 0,
                    base_portion=take if portion == BASE else 0,
                )
            )
            available -= take

        applied = sum(a.amount for a in allocations)
        credit_used = max(0, applied - amount)
        credit_added = max(0, amount - applied)

        if credit_used:
            allocations.append(
                PlannedAllocation(
                    target=AllocationTarget.CREDIT,
                    amount=-credit_used,
                    credit_entry_type=CreditEntryType.CREDIT_USED,
                )
            )
        elif credit_added:
            allocations.append(
                PlannedAllocation(
                    target=AllocationTarget.CREDIT,
                    amount=credit_added,
                    credit_entry_type=CreditEntryType.CREDIT_ADDED,
                )
            )

        signed_total = sum(a.amount for a in allocations)
        if signed_total != amount:
            raise LedgerInvariantError(
                f"Planned allocations sum to {signed_total}, expected {amount}"
            )

        new_balance = credit_balance - credit_used + credit_added
        logger.debug(
            f"Planned payment of {amount}: {len(allocations)} lines, applied {applied}, "
            f"credit {credit_balance} -> {new_balance}"
        )
        return AllocationPlan(
            amount=amount,
            payment_date=payment_date,
            allocations=allocations,
            credit_balance_before=credit_balance,
            credit_used=credit_used,
            credit_added=credit_added,
            new_credit_balance=new_balance,
        )


__all__ = [
    "AllocationPlanner",
    "AllocationPlan",
    "PlannedAllocation",
    "validate_amount",
]
