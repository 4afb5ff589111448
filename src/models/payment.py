"""Payment and allocation ORM models for recorded incoming money."""

from datetime import date
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel
from src.models.credit_ledger_entry import CreditEntryType


class AllocationTarget(str, Enum):
    """What an allocation line is applied to."""

    BUCKET = "bucket"
    """A charge bucket (dues month or water bill)"""

    CREDIT = "credit"
    """The unit's credit ledger"""


class Payment(Base, BaseModel):
    """Model representing one incoming payment for a unit.

    Immutable once recorded. The allocation lines always sum to the payment
    amount: bucket lines and credit_added lines are positive, a credit_used
    line is negative.
    """

    __tablename__ = "payments"

    unit_account_id: Mapped[int] = mapped_column(
        ForeignKey("unit_accounts.id"),
        nullable=False,
        index=True,
        comment="Unit the payment was received for",
    )

    # Payment details
    amount: Mapped[int] = mapped_column(
        nullable=False,
        comment="Payment amount in centavos",
    )
    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Date the money was received",
    )
    method: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Payment method (opaque to the ledger)",
    )
    reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="External reference, e.g. bank transfer id",
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Caller-supplied dedupe key; unique per unit",
    )
    credit_balance_before: Mapped[int] = mapped_column(nullable=False, default=0)
    credit_balance_after: Mapped[int] = mapped_column(nullable=False, default=0)

    # Relationships
    unit_account: Mapped["UnitAccount"] = relationship(  # noqa: F821
        "UnitAccount",
        back_populates="payments",
    )
    allocations: Mapped[list["Allocation"]] = relationship(
        "Allocation",
        back_populates="payment",
        order_by="Allocation.sequence",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("unit_account_id", "idempotency_key", name="uq_payment_unit_idempotency"),
        Index("idx_payment_unit_date", "unit_account_id", "payment_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, unit_account_id={self.unit_account_id}, "
            f"amount={self.amount}, payment_date={self.payment_date})>"
        )


class Allocation(Base, BaseModel):
    """One line of a payment's split.

    Bucket lines carry the penalty/base breakdown (penalty_portion +
    base_portion == amount). Credit lines carry the ledger entry type.
    """

    __tablename__ = "allocations"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(nullable=False, comment="Position within the payment")
    target: Mapped[AllocationTarget] = mapped_column(SQLEnum(AllocationTarget), nullable=False)
    bucket_id: Mapped[int | None] = mapped_column(
        ForeignKey("charge_buckets.id"),
        nullable=True,
        index=True,
    )
    credit_entry_type: Mapped[CreditEntryType | None] = mapped_column(
        SQLEnum(CreditEntryType),
        nullable=True,
    )
    amount: Mapped[int] = mapped_column(nullable=False, comment="Signed amount in centavos")
    penalty_portion: Mapped[int] = mapped_column(nullable=False, default=0)
    base_portion: Mapped[int] = mapped_column(nullable=False, default=0)

    # Relationships
    payment: Mapped["Payment"] = relationship("Payment", back_populates="allocations")
    bucket: Mapped["ChargeBucket | None"] = relationship("ChargeBucket")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Allocation(id={self.id}, payment_id={self.payment_id}, target={self.target}, "
            f"bucket_id={self.bucket_id}, amount={self.amount})>"
        )


__all__ = ["Payment", "Allocation", "AllocationTarget"]
