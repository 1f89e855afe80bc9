"""Leave ORM models: LeaveType, LeaveAccount, LeaveLedgerEntry."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from time_manager.common.constants import CREDIT_KINDS, LeaveLedgerKind
from time_manager.database import Base


class LeaveType(Base):
    __tablename__ = "leave_types"

    code: Mapped[str] = mapped_column(sa.String(20), primary_key=True)
    label: Mapped[str] = mapped_column(sa.String(100), nullable=False)

    # Relationships
    accounts: Mapped[list[LeaveAccount]] = relationship(
        back_populates="leave_type", passive_deletes=True
    )


class LeaveAccount(Base):
    __tablename__ = "leave_accounts"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "leave_type_code", name="uq_leave_account"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    leave_type_code: Mapped[str] = mapped_column(
        sa.String(20), sa.ForeignKey("leave_types.code"), nullable=False
    )
    opening_balance: Mapped[Decimal] = mapped_column(
        sa.Numeric(8, 2), default=Decimal("0"), nullable=False
    )
    accrual_per_month: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 3), default=Decimal("0"), nullable=False
    )
    max_carryover: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(8, 2))
    carryover_expire_on: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    user: Mapped["time_manager.directory.models.User"] = relationship()
    leave_type: Mapped[LeaveType] = relationship(back_populates="accounts")
    entries: Mapped[list[LeaveLedgerEntry]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LeaveLedgerEntry(Base):
    __tablename__ = "leave_ledger"
    __table_args__ = (
        sa.UniqueConstraint(
            "reference_absence_id", name="uq_leave_ledger_reference_absence"
        ),
        sa.UniqueConstraint(
            "account_id", "accrual_period", name="uq_leave_ledger_accrual_period"
        ),
        sa.CheckConstraint("amount >= 0", name="ck_leave_ledger_amount_non_negative"),
        sa.Index("idx_ledger_account_date", "account_id", "entry_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("leave_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    entry_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    kind: Mapped[LeaveLedgerKind] = mapped_column(
        sa.Enum(LeaveLedgerKind, name="leave_ledger_kind", native_enum=False, length=20),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(9, 3), nullable=False)
    reference_absence_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("absences.id")
    )
    # First day of the month an automatic accrual was posted for
    accrual_period: Mapped[Optional[date]] = mapped_column(sa.Date)
    note: Mapped[Optional[str]] = mapped_column(sa.String(255))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    account: Mapped[LeaveAccount] = relationship(back_populates="entries")

    @property
    def signed_amount(self) -> Decimal:
        """Contribution of this entry to the account balance."""
        amount = Decimal(self.amount)
        return amount if self.kind in CREDIT_KINDS else -amount
