"""Charge bucket ORM model for billable instances (dues months, water bills)."""

from datetime import date
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class ChargeModule(str, Enum):
    """Billing module a bucket belongs to."""

    DUES = "dues"
    """Monthly HOA/condominium dues"""

    WATER = "water"
    """Metered water bill"""


class BucketStatus(str, Enum):
    """Payment status of a bucket, derived from paid vs. total."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


def derive_status(paid_amount: int, total_amount: int) -> BucketStatus:
    """Derive bucket status: nothing paid, partially paid, or fully paid."""
    if paid_amount == 0:
        return BucketStatus.UNPAID
    if paid_amount >= total_amount:
        return BucketStatus.PAID
    return BucketStatus.PARTIAL


class ChargeBucket(Base, BaseModel):
    """One billable instance for a unit.

    Amounts are integer centavos. Buckets are created by billing generation,
    mutated only when a payment is recorded, and never deleted.

    Invariants:
        base_paid <= base_amount
        penalty_paid <= penalty_amount
        paid_amount == base_paid + penalty_paid <= base_amount + penalty_amount
    """

    __tablename__ = "charge_buckets"

    unit_account_id: Mapped[int] = mapped_column(
        ForeignKey("unit_accounts.id"),
        nullable=False,
        index=True,
        comment="Owning unit",
    )
    module: Mapped[ChargeModule] = mapped_column(
        SQLEnum(ChargeModule),
        nullable=False,
        comment="Billing module: dues or water",
    )
    fiscal_year: Mapped[int] = mapped_column(
        nullable=False,
        comment="Fiscal year the charge is assigned to",
    )
    fiscal_month: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="Fiscal month position (1-12) for dues; null for water bills",
    )
    period_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Due date (dues) or bill date (water); oldest is paid first",
    )
    reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Optional human label, e.g. '2026-03' or 'Q1 water'",
    )

    base_amount: Mapped[int] = mapped_column(nullable=False, comment="Base charge in centavos")
    penalty_amount: Mapped[int] = mapped_column(
        nullable=False, default=0, comment="Penalty in centavos"
    )
    base_paid: Mapped[int] = mapped_column(nullable=False, default=0)
    penalty_paid: Mapped[int] = mapped_column(nullable=False, default=0)
    paid_amount: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[BucketStatus] = mapped_column(
        SQLEnum(BucketStatus),
        nullable=False,
        default=BucketStatus.UNPAID,
    )

    # Relationships
    unit_account: Mapped["UnitAccount"] = relationship(  # noqa: F821
        "UnitAccount",
        back_populates="buckets",
    )

    __table_args__ = (
        Index("idx_bucket_unit_status", "unit_account_id", "status"),
        Index("idx_bucket_unit_period", "unit_account_id", "period_date"),
    )

    @property
    def total_amount(self) -> int:
        return self.base_amount + (self.penalty_amount or 0)

    @property
    def base_remaining(self) -> int:
        return self.base_amount - (self.base_paid or 0)

    @property
    def penalty_remaining(self) -> int:
        return (self.penalty_amount or 0) - (self.penalty_paid or 0)

    @property
    def remaining(self) -> int:
        return self.total_amount - (self.paid_amount or 0)

    def refresh_status(self) -> BucketStatus:
        """Recompute status from paid vs. total."""
        self.status = derive_status(self.paid_amount or 0, self.total_amount)
        return self.status

    def apply_payment(self, base: int = 0, penalty: int = 0) -> None:
        """Apply base/penalty portions of an allocation to this bucket.

        Raises:
            ValueError: If a portion is negative or exceeds what is still owed
        """
        if base < 0 or penalty < 0:
            raise ValueError("Payment portions must be non-negative")
        if base > self.base_remaining:
            raise ValueError(
                f"Base portion {base} exceeds remaining base {self.base_remaining} on bucket {self.id}"
            )
        if penalty > self.penalty_remaining:
            raise ValueError(
                f"Penalty portion {penalty} exceeds remaining penalty "
                f"{self.penalty_remaining} on bucket {self.id}"
            )
        self.base_paid = (self.base_paid or 0) + base
        self.penalty_paid = (self.penalty_paid or 0) + penalty
        self.paid_amount = self.base_paid + self.penalty_paid
        self.refresh_status()

    def __repr__(self) -> str:
        return (
            f"<ChargeBucket(id={self.id}, module={self.module}, period_date={self.period_date}, "
            f"total={self.total_amount}, paid={self.paid_amount}, status={self.status})>"
        )


__all__ = ["ChargeBucket", "ChargeModule", "BucketStatus", "derive_status"]
