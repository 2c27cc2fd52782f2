from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from periods import local_now


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now, onupdate=local_now, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_transactions_owner_occurred", "owner_id", "occurred_at"),
        Index("ix_transactions_owner_type_occurred", "owner_id", "type", "occurred_at"),
        Index(
            "ix_transactions_owner_category_occurred",
            "owner_id",
            "category",
            "occurred_at",
        ),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"Transaction(id={self.id!r}, owner_id={self.owner_id!r}, "
            f"type={self.type!r}, amount={self.amount!r}, category={self.category!r})"
        )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_budgets_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budgets_month_range"),
        UniqueConstraint(
            "owner_id",
            "category",
            "month",
            "year",
            name="uq_budget_owner_category_month",
        ),
        Index("ix_budget_owner_month", "owner_id", "year", "month"),
    )
