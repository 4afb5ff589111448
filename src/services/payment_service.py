"""Payment service for previewing and recording unit payments.

Provides methods for:
- Previewing how a payment would be split (read-only, no locking)
- Recording a previewed plan atomically (buckets, credit ledger, payment,
  allocations and audit row in one transaction)
- Looking up recorded payments
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.settings import settings
from src.models import (
    Allocation,
    AllocationTarget,
    ChargeBucket,
    CreditEntryType,
    CreditLedgerEntry,
    Payment,
    UnitAccount,
)
from src.services.allocation_service import AllocationPlan, AllocationPlanner
from src.services.audit_service import AuditService
from src.services.bucket_store import ChargeBucketStore, UnitRef
from src.services.credit_ledger import as_utc
from src.services.credit_service import CreditService
from src.services.errors import CommitError, StalePlanError, ValidationError
from src.services.unit_locks import UnitLockRegistry, unit_locks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordResult:
    """Identifiers created (or found, when replayed) by a record call."""

    payment_id: int
    touched_bucket_ids: List[int] = field(default_factory=list)
    ledger_entry_id: Optional[int] = None
    credit_balance_after: int = 0
    replayed: bool = False


class PaymentService:
    """Payment recorder for unit accounts."""

    def __init__(
        self,
        db: Session,
        planner: Optional[AllocationPlanner] = None,
        locks: Optional[UnitLockRegistry] = None,
        lock_timeout: Optional[float] = None,
    ):
        """Initialize payment service.

        Args:
            db: SQLAlchemy database session
            planner: Allocation planner (default: module priority from settings)
            locks: Per-unit lock registry (default: process-wide registry)
            lock_timeout: Seconds to wait for the unit lock (default: settings)
        """
        self.db = db
        self.planner = planner or AllocationPlanner(settings.module_priority)
        self.locks = locks if locks is not None else unit_locks
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.lock_timeout_seconds
        self.buckets = ChargeBucketStore(db)
        self.credit = CreditService(db)

    def _plan_for(self, unit: UnitAccount, amount: int, payment_date: date) -> AllocationPlan:
        plan = self.planner.plan(
            self.buckets.outstanding_snapshots(unit),
            self.credit.current_balance(unit),
            amount,
            payment_date,
        )
        return replace(plan, client_id=unit.client_id, unit_id=unit.unit_id, revision=unit.revision)

    def preview(self, unit_ref: UnitRef, amount: int, payment_date: date) -> AllocationPlan:
        """Compute the split of a payment without changing anything.

        Args:
            unit_ref: Unit to pay for
            amount: Payment amount in centavos (> 0)
            payment_date: Date the money was received

        Returns:
            AllocationPlan tagged with the unit's current revision

        Raises:
            ValidationError: If the amount/date is invalid or the unit is unknown
        """
        unit = self.buckets.get_unit(unit_ref)
        plan = self._plan_for(unit, amount, payment_date)
        logger.debug(
            f"Preview for {unit_ref.client_id}/{unit_ref.unit_id}: amount={amount}, "
            f"revision={plan.revision}, lines={len(plan.allocations)}"
        )
        return plan

    def find_by_idempotency_key(self, unit: UnitAccount, idempotency_key: str) -> Optional[Payment]:
        return (
            self.db.query(Payment)
            .filter_by(unit_account_id=unit.id, idempotency_key=idempotency_key)
            .first()
        )

    def get_payment(self, payment_id: int) -> Optional[Payment]:
        return self.db.query(Payment).filter_by(id=payment_id).first()

    def list_payments(self, unit: UnitAccount) -> List[Payment]:
        """All payments of a unit ordered by date, then id."""
        return (
            self.db.query(Payment)
            .filter_by(unit_account_id=unit.id)
            .order_by(Payment.payment_date, Payment.id)
            .all()
        )

    def _result_for(self, payment: Payment, replayed: bool) -> RecordResult:
        touched: List[int] = []
        for allocation in payment.allocations:
            if allocation.target == AllocationTarget.BUCKET and allocation.bucket_id not in touched:
                touched.append(allocation.bucket_id)
        ledger_entry = self.db.query(CreditLedgerEntry).filter_by(payment_id=payment.id).first()
        return RecordResult(
            payment_id=payment.id,
            touched_bucket_ids=touched,
            ledger_entry_id=ledger_entry.id if ledger_entry else None,
            credit_balance_after=payment.credit_balance_after,
            replayed=replayed,
        )

    def _check_plan(self, unit_ref: UnitRef, plan: AllocationPlan) -> None:
        if not isinstance(plan, AllocationPlan):
            raise ValidationError("A previewed allocation plan is required")
        if (plan.client_id, plan.unit_id) != (unit_ref.client_id, unit_ref.unit_id):
            raise ValidationError(
                f"Plan was computed for unit {plan.client_id}/{plan.unit_id}, "
                f"not {unit_ref.client_id}/{unit_ref.unit_id}"
            )
        if plan.revision is None:
            raise ValidationError("Plan carries no unit revision; preview it first")
        plan.validate()

    def record(
        self,
        unit_ref: UnitRef,
        plan: AllocationPlan,
        idempotency_key: Optional[str] = None,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> RecordResult:
        """Commit a previewed plan atomically.

        Args:
            unit_ref: Unit the plan was previewed for
            plan: Plan returned by preview()
            idempotency_key: Caller dedupe key; a repeated key returns the
                original result without applying anything
            method: Payment method (opaque)
            reference: External reference (opaque)
            actor_id: Back-office user recording the payment

        Returns:
            RecordResult with payment id, touched bucket ids and ledger entry id

        Raises:
            ValidationError: If the plan is malformed, for another unit, or no
                longer matches a fresh plan at the same revision
            StalePlanError: If the unit changed since the plan was computed
            UnitBusyError: If another commit holds the unit
            CommitError: If the transaction failed (fully rolled back)
        """
        self._check_plan(unit_ref, plan)
        unit = self.buckets.get_unit(unit_ref)

        with self.locks.hold(unit_ref.client_id, unit_ref.unit_id, timeout=self.lock_timeout):
            return self._record_locked(unit, plan, idempotency_key, method, reference, actor_id)

    def _record_locked(
        self,
        unit: UnitAccount,
        plan: AllocationPlan,
        idempotency_key: Optional[str],
        method: Optional[str],
        reference: Optional[str],
        actor_id: Optional[int],
    ) -> RecordResult:
        # Reload under the lock; other sessions may have committed meanwhile
        unit = (
            self.db.query(UnitAccount)
            .filter_by(id=unit.id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        label = f"{unit.client_id}/{unit.unit_id}"

        if idempotency_key:
            existing = self.find_by_idempotency_key(unit, idempotency_key)
            if existing is not None:
                logger.warning(
                    f"Duplicate payment for unit {label} with key '{idempotency_key}': "
                    f"returning payment {existing.id}"
                )
                return self._result_for(existing, replayed=True)

        if plan.revision != unit.revision:
            logger.warning(f"Stale plan for unit {label}: plan revision {plan.revision}, current {unit.revision}")
            raise StalePlanError(
                f"Unit {label} changed since the plan was computed "
                f"(revision {plan.revision} -> {unit.revision}); preview again"
            )

        fresh = self._plan_for(unit, plan.amount, plan.payment_date)
        if not fresh.same_split(plan) or fresh.credit_balance_before != plan.credit_balance_before:
            raise ValidationError(f"Submitted plan does not match the unit's current state for {label}")

        try:
            ledger = self.credit.get_ledger(unit)
            payment = Payment(
                unit_account_id=unit.id,
                amount=plan.amount,
                payment_date=plan.payment_date,
                method=method,
                reference=reference,
                idempotency_key=idempotency_key,
                credit_balance_before=ledger.current_balance(),
                credit_balance_after=ledger.current_balance(),
            )
            self.db.add(payment)
            self.db.flush()

            bucket_totals = plan.bucket_totals()
            buckets = {
                b.id: b
                for b in self.db.query(ChargeBucket)
                .filter(ChargeBucket.id.in_(list(bucket_totals)), ChargeBucket.unit_account_id == unit.id)
                .all()
            }
            for bucket_id, portions in bucket_totals.items():
                buckets[bucket_id].apply_payment(base=portions["base"], penalty=portions["penalty"])

            for sequence, line in enumerate(plan.allocations):
                self.db.add(
                    Allocation(
                        payment_id=payment.id,
                        sequence=sequence,
                        target=line.target,
                        bucket_id=line.bucket_id,
                        credit_entry_type=line.credit_entry_type,
                        amount=line.amount,
                        penalty_portion=line.penalty_portion,
                        base_portion=line.base_portion,
                    )
                )

            ledger_row = None
            # Ledger movement comes from the freshly computed plan, never the submitted line
            if fresh.credit_used or fresh.credit_added:
                if fresh.credit_used:
                    entry_type, credit_amount = CreditEntryType.CREDIT_USED, fresh.credit_used
                else:
                    entry_type, credit_amount = CreditEntryType.CREDIT_ADDED, fresh.credit_added
                now = datetime.now(timezone.utc)
                last = ledger.last_entry
                timestamp = max(now, as_utc(last.timestamp)) if last else now
                entry = ledger.next_entry(
                    entry_type,
                    credit_amount,
                    timestamp,
                    payment_id=payment.id,
                    note=f"Payment {payment.id} of {plan.amount} on {plan.payment_date.isoformat()}",
                    source="payment",
                )
                ledger_row = self.credit.append(unit, ledger, entry)
            payment.credit_balance_after = ledger.current_balance()

            unit.bump_revision()
            self.db.flush()
            AuditService.log(
                self.db,
                entity_type="payment",
                entity_id=payment.id,
                action="record",
                actor_id=actor_id,
                changes={
                    "unit": label,
                    "amount": plan.amount,
                    "payment_date": plan.payment_date,
                    "buckets": sorted(bucket_totals),
                    "credit_used": plan.credit_used,
                    "credit_added": plan.credit_added,
                    "credit_balance_after": payment.credit_balance_after,
                },
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if idempotency_key:
                existing = self.find_by_idempotency_key(unit, idempotency_key)
                if existing is not None:
                    logger.warning(
                        f"Concurrent duplicate payment for unit {label} with key '{idempotency_key}'"
                    )
                    return self._result_for(existing, replayed=True)
            logger.error(f"Payment commit rejected for unit {label}: {e}")
            raise CommitError(f"Payment could not be recorded for unit {label}: {e}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Payment commit failed for unit {label}: {e}")
            raise CommitError(f"Payment could not be recorded for unit {label}: {e}") from e
        except Exception:
            self.db.rollback()
            raise

        touched = [line.bucket_id for line in plan.bucket_allocations]
        result = RecordResult(
            payment_id=payment.id,
            touched_bucket_ids=list(dict.fromkeys(touched)),
            ledger_entry_id=ledger_row.id if ledger_row is not None else None,
            credit_balance_after=payment.credit_balance_after,
        )
        logger.info(
            f"Recorded payment {payment.id} for unit {label}: amount={plan.amount}, "
            f"buckets={result.touched_bucket_ids}, credit {plan.credit_balance_before} -> "
            f"{payment.credit_balance_after}"
        )
        return result


__all__ = ["PaymentService", "RecordResult"]
