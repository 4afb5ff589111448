"""Unit account ORM model: the billable unit that owns buckets and a credit ledger."""

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class UnitAccount(Base, BaseModel):
    """Model representing one billable unit of a client (condominium/HOA).

    A unit owns zero or more charge buckets, one credit ledger and the
    payments recorded against it. The revision counter is bumped by every
    mutation of the unit's buckets or ledger and is used to detect stale
    allocation plans and to invalidate cached statements.
    """

    __tablename__ = "unit_accounts"

    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Client (association) identifier",
    )
    unit_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Unit identifier within the client",
    )
    revision: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        comment="Monotonic version of the unit's buckets and ledger",
    )

    # Relationships
    buckets: Mapped[list["ChargeBucket"]] = relationship(  # noqa: F821
        "ChargeBucket",
        back_populates="unit_account",
        order_by="ChargeBucket.id",
    )
    ledger_entries: Mapped[list["CreditLedgerEntry"]] = relationship(  # noqa: F821
        "CreditLedgerEntry",
        back_populates="unit_account",
        order_by="CreditLedgerEntry.sequence",
    )
    payments: Mapped[list["Payment"]] = relationship(  # noqa: F821
        "Payment",
        back_populates="unit_account",
        order_by="Payment.id",
    )

    __table_args__ = (
        UniqueConstraint("client_id", "unit_id", name="uq_unit_account_client_unit"),
        Index("idx_unit_account_client", "client_id"),
    )

    def bump_revision(self) -> int:
        """Advance the revision after a mutation and return the new value."""
        self.revision = (self.revision or 0) + 1
        return self.revision

    def __repr__(self) -> str:
        return (
            f"<UnitAccount(id={self.id}, client_id={self.client_id}, "
            f"unit_id={self.unit_id}, revision={self.revision})>"
        )


__all__ = ["UnitAccount"]
