from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from allocations import Allocation, AllocationSet
from database import Base
from months import Month


class EntryKind(str, Enum):
    income = "income"
    expense = "expense"


class TransactionStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class MonthType(TypeDecorator):
    """Stores a :class:`Month` as its 7-character ``YYYY-MM`` form."""

    impl = String(7)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Month):
            return str(value)
        return str(Month.parse(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Month.parse(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "kind", "name", name="uq_category_user_kind_name"),
    )


class PaymentMethod(Base, TimestampMixin):
    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_payment_method_user_name"),
    )


class RecurringObligation(Base, TimestampMixin):
    """One version of a recurring income/expense rule.

    Open while ``active_to_month`` is null, Closed once it is set. Versions of
    the same logical rule share ``lineage_id``; ``supersedes_id`` points at the
    version this row replaced.
    """

    __tablename__ = "recurring_obligations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    lineage_id: Mapped[Optional[int]] = mapped_column(Integer)
    supersedes_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_obligations.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.pending
    )
    payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="SET NULL")
    )
    active_from_month: Mapped[Month] = mapped_column(MonthType, nullable=False)
    active_to_month: Mapped[Optional[Month]] = mapped_column(MonthType)

    allocations: Mapped[list["ObligationAllocation"]] = relationship(
        "ObligationAllocation",
        back_populates="obligation",
        cascade="all, delete-orphan",
        order_by="ObligationAllocation.category_id",
    )
    payment_method: Mapped[Optional["PaymentMethod"]] = relationship("PaymentMethod")
    supersedes: Mapped[Optional["RecurringObligation"]] = relationship(
        "RecurringObligation", remote_side=[id]
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="source_obligation"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_obligation_amount_positive"),
        CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31",
            name="ck_obligation_day_of_month",
        ),
        Index("ix_obligations_user_from_month", "user_id", "active_from_month"),
        Index("ix_obligations_user_lineage", "user_id", "lineage_id"),
    )

    @property
    def is_open(self) -> bool:
        return self.active_to_month is None

    @property
    def effective_to_month(self) -> Optional[Month]:
        # Inconsistent historical rows are read as a single-month window.
        if self.active_to_month is None:
            return None
        return max(self.active_to_month, self.active_from_month)

    def is_active_in(self, month: Month) -> bool:
        if month < self.active_from_month:
            return False
        end = self.effective_to_month
        return end is None or month <= end

    def allocation_set(self) -> AllocationSet:
        return AllocationSet(
            Allocation(item.category_id, item.amount_cents) for item in self.allocations
        )


class ObligationAllocation(Base):
    __tablename__ = "obligation_allocations"

    obligation_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_obligations.id", ondelete="CASCADE"), primary_key=True
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="RESTRICT"), primary_key=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    obligation: Mapped["RecurringObligation"] = relationship(
        "RecurringObligation", back_populates="allocations"
    )
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint(
            "amount_cents > 0", name="ck_obligation_allocation_amount_positive"
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="SET NULL")
    )
    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.paid
    )
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    due_on: Mapped[Optional[date]] = mapped_column(Date)
    paid_on: Mapped[Optional[date]] = mapped_column(Date)
    occurred_month: Mapped[Month] = mapped_column(MonthType, nullable=False)
    source_obligation_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_obligations.id", ondelete="SET NULL")
    )

    source_obligation: Mapped[Optional["RecurringObligation"]] = relationship(
        "RecurringObligation", back_populates="transactions"
    )
    allocations: Mapped[list["TransactionAllocation"]] = relationship(
        "TransactionAllocation",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionAllocation.category_id",
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "source_obligation_id",
            "occurred_month",
            name="uq_txn_source_obligation_month",
        ),
        Index("ix_transactions_user_occurred_on", "user_id", "occurred_on"),
        Index("ix_transactions_user_month", "user_id", "occurred_month"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "status = 'paid' OR due_on IS NOT NULL",
            name="ck_transactions_pending_due_on",
        ),
    )

    def allocation_set(self) -> AllocationSet:
        return AllocationSet(
            (Allocation(item.category_id, item.amount_cents) for item in self.allocations),
            required=True,
        )


class TransactionAllocation(Base):
    __tablename__ = "transaction_allocations"

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), primary_key=True
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="RESTRICT"), primary_key=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="allocations"
    )
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint(
            "amount_cents > 0", name="ck_transaction_allocation_amount_positive"
        ),
    )
