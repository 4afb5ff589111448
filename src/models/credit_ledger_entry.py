"""Credit ledger entry ORM model: append-only history of a unit's credit balance."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class CreditEntryType(str, Enum):
    """Kinds of credit balance movements."""

    STARTING_BALANCE = "starting_balance"
    """Opening balance of a ledger (first entry only)"""

    CREDIT_ADDED = "credit_added"
    """Surplus banked as credit"""

    CREDIT_USED = "credit_used"
    """Credit drawn down to cover charges"""


class CreditLedgerEntry(Base, BaseModel):
    """Immutable credit ledger row.

    Rows are only ever inserted. Corrections are new rows. The
    (unit_account_id, sequence) constraint rejects two writers appending
    the same position of a unit's ledger.
    """

    __tablename__ = "credit_ledger_entries"

    unit_account_id: Mapped[int] = mapped_column(
        ForeignKey("unit_accounts.id"),
        nullable=False,
        index=True,
        comment="Owning unit",
    )
    sequence: Mapped[int] = mapped_column(
        nullable=False,
        comment="0-based position in the unit's ledger",
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the movement happened",
    )
    entry_type: Mapped[CreditEntryType] = mapped_column(
        SQLEnum(CreditEntryType),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(nullable=False, comment="Non-negative magnitude in centavos")
    balance_before: Mapped[int] = mapped_column(nullable=False)
    balance_after: Mapped[int] = mapped_column(nullable=False)
    payment_id: Mapped[int | None] = mapped_column(
        ForeignKey("payments.id"),
        nullable=True,
        comment="Payment that caused the movement, if any",
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Origin of the entry: payment, admin, import",
    )

    # Relationships
    unit_account: Mapped["UnitAccount"] = relationship(  # noqa: F821
        "UnitAccount",
        back_populates="ledger_entries",
    )

    __table_args__ = (
        UniqueConstraint("unit_account_id", "sequence", name="uq_credit_entry_unit_sequence"),
        Index("idx_credit_entry_payment", "payment_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditLedgerEntry(id={self.id}, unit_account_id={self.unit_account_id}, "
            f"sequence={self.sequence}, type={self.entry_type}, amount={self.amount}, "
            f"balance={self.balance_before}->{self.balance_after})>"
        )


__all__ = ["CreditLedgerEntry", "CreditEntryType"]
