from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from analytics import (
    Alert,
    LifetimeStats,
    TrackingRecord,
    TrendPoint,
    aggregate,
    build_alerts,
    build_trend,
    lifetime_stats,
    track,
)
from config import get_settings
from errors import DuplicateBudgetError, ValidationError
from ledger import LedgerFilter, LedgerQuery
from models import Budget, Transaction, TransactionType
from periods import (
    default_period,
    local_now,
    month_period,
    resolve_period,
    to_reference,
    validate_month,
)
from schemas import BudgetIn, TransactionIn, TransactionUpdate
from stores import BudgetStore, LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: dict[str, list[str]] = {
    "income": ["Salary", "Freelance", "Investments", "Gifts", "Other income"],
    "expense": [
        "Food",
        "Transport",
        "Housing",
        "Health",
        "Leisure",
        "Shopping",
        "Bills",
        "Education",
        "Other expenses",
    ],
}

RECENT_LIMIT = 5
LIST_LIMIT = 50


def newest_first(transactions: list[Transaction]) -> list[Transaction]:
    return sorted(
        transactions, key=lambda txn: (txn.occurred_at, txn.id or 0), reverse=True
    )


def _clean_category(value: str) -> str:
    category = value.strip()
    if not category:
        raise ValidationError("Category cannot be empty")
    return category


class TransactionService:
    def __init__(self, ledger_store: LedgerStore, ledger_query: LedgerQuery) -> None:
        self.store = ledger_store
        self.query = ledger_query

    def create(self, data: TransactionIn) -> Transaction:
        occurred_at = to_reference(data.occurred_at) if data.occurred_at else local_now()
        txn = self.store.insert(
            {
                "type": data.type,
                "amount": data.amount,
                "category": _clean_category(data.category),
                "description": data.description.strip(),
                "occurred_at": occurred_at,
            }
        )
        logger.info(
            f"transaction_created: owner={self.store.owner_id} id={txn.id} "
            f"type={txn.type.value} category={txn.category}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        return self.store.get(transaction_id)

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if "category" in changes:
            changes["category"] = _clean_category(changes["category"])
        if "description" in changes:
            changes["description"] = changes["description"].strip()
        if "occurred_at" in changes:
            changes["occurred_at"] = to_reference(changes["occurred_at"])
        if not changes:
            return self.store.get(transaction_id)
        txn = self.store.update(transaction_id, changes)
        logger.info(
            f"transaction_updated: owner={self.store.owner_id} id={transaction_id} "
            f"fields={sorted(changes)}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        self.store.delete(transaction_id)
        logger.info(
            f"transaction_deleted: owner={self.store.owner_id} id={transaction_id}"
        )

    def list(
        self, filters: Optional[LedgerFilter] = None, limit: int = LIST_LIMIT
    ) -> list[Transaction]:
        filters = filters or LedgerFilter()
        if filters.start and filters.end and filters.start > filters.end:
            raise ValidationError("Start date must be before end date")
        return newest_first(self.query.fetch(filters))[: max(limit, 0)]

    def categories(self) -> dict[str, object]:
        return {
            "user_categories": self.store.categories(),
            "default_categories": DEFAULT_CATEGORIES,
        }


class BudgetService:
    def __init__(self, budget_store: BudgetStore, ledger_query: LedgerQuery) -> None:
        self.store = budget_store
        self.query = ledger_query

    def list(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[Budget]:
        if (month is None) != (year is None):
            raise ValidationError("Month and year must be given together")
        if month is None:
            return self.store.query()
        validate_month(month, year)
        return self.store.query(month=month, year=year)

    def _existing(self, category: str, month: int, year: int) -> Optional[Budget]:
        rows = self.store.query(month=month, year=year, category=category)
        return rows[0] if rows else None

    def create(self, data: BudgetIn) -> Budget:
        validate_month(data.month, data.year)
        category = _clean_category(data.category)
        # Check-then-act: two concurrent creates can both pass this check.
        # Only a store with a uniqueness constraint rejects the second write.
        if self._existing(category, data.month, data.year) is not None:
            logger.warning(
                f"budget_duplicate_rejected: owner={self.store.owner_id} "
                f"category={category} month={data.month} year={data.year}"
            )
            raise DuplicateBudgetError(
                "A budget already exists for this category and period"
            )
        budget = self.store.insert(
            {
                "category": category,
                "amount": data.amount,
                "month": data.month,
                "year": data.year,
            }
        )
        logger.info(
            f"budget_created: owner={self.store.owner_id} id={budget.id} "
            f"category={category} month={data.month} year={data.year}"
        )
        return budget

    def upsert(self, data: BudgetIn) -> tuple[Budget, bool]:
        """Create the budget, or set the amount of the one already there.

        Returns the budget and whether it was created.
        """
        validate_month(data.month, data.year)
        category = _clean_category(data.category)
        existing = self._existing(category, data.month, data.year)
        if existing is None:
            try:
                budget = self.store.insert(
                    {
                        "category": category,
                        "amount": data.amount,
                        "month": data.month,
                        "year": data.year,
                    }
                )
                return budget, True
            except DuplicateBudgetError:
                # Lost the race to a concurrent writer; fall through to update.
                existing = self._existing(category, data.month, data.year)
                if existing is None:
                    raise
        return self.store.update_amount(existing.id, data.amount), False

    def update(self, budget_id: int, amount: Decimal) -> Budget:
        if amount is None or Decimal(amount) <= 0:
            raise ValidationError("Budget amount must be positive")
        budget = self.store.update_amount(budget_id, Decimal(amount))
        logger.info(
            f"budget_updated: owner={self.store.owner_id} id={budget_id} amount={amount}"
        )
        return budget

    def delete(self, budget_id: int) -> None:
        self.store.delete(budget_id)
        logger.info(f"budget_deleted: owner={self.store.owner_id} id={budget_id}")

    def tracking(self, month: int, year: int) -> list[TrackingRecord]:
        validate_month(month, year)
        period = month_period(month, year)
        budgets = self.store.query(month=month, year=year)
        expenses = aggregate(
            self.query.fetch(
                LedgerFilter.for_period(period, type=TransactionType.expense)
            )
        )
        return track(budgets, expenses.expense_by_category)


class DashboardService:
    def __init__(
        self,
        ledger_query: LedgerQuery,
        budget_store: BudgetStore,
        *,
        currency: Optional[str] = None,
        trend_workers: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.query = ledger_query
        self.budget_store = budget_store
        self.currency = settings.currency if currency is None else currency
        self.trend_workers = trend_workers or settings.trend_max_workers

    def summary(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        *,
        reference: Optional[datetime] = None,
    ) -> dict[str, object]:
        period = resolve_period(month, year, reference=reference)
        totals = aggregate(self.query.fetch(LedgerFilter.for_period(period)))
        return {
            "period": {"start": period.start, "end": period.end},
            "total_income": totals.total_income,
            "total_expense": totals.total_expense,
            "balance": totals.balance,
            "transaction_count": totals.transaction_count,
            "breakdown": {
                "expenses_by_category": totals.expense_by_category,
                "incomes_by_category": totals.income_by_category,
            },
        }

    def trend(
        self, months: int = 6, *, reference: Optional[datetime] = None
    ) -> list[TrendPoint]:
        return build_trend(
            self.query, months, reference, max_workers=self.trend_workers
        )

    def recent(self, limit: int = RECENT_LIMIT) -> list[Transaction]:
        return newest_first(self.query.fetch())[: max(limit, 0)]

    def alerts(self, *, reference: Optional[datetime] = None) -> list[Alert]:
        period = default_period(reference)
        budgets = self.budget_store.query(month=period.month, year=period.year)
        if not budgets:
            return []
        expenses = aggregate(
            self.query.fetch(
                LedgerFilter.for_period(period, type=TransactionType.expense)
            )
        )
        return build_alerts(
            budgets, expenses.expense_by_category, currency=self.currency
        )

    def stats(self, *, now: Optional[datetime] = None) -> LifetimeStats:
        return lifetime_stats(self.query.fetch(), now=now)
