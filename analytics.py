"""Aggregations behind the dashboard and budget views.

Everything here is a pure reduction over already-fetched records except
``build_trend``, which drives the ledger query once per month.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_DOWN, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Mapping, Optional

from ledger import LedgerFilter, LedgerQuery
from models import Budget, Transaction, TransactionType
from periods import Period, local_now, trailing_periods

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
WARNING_THRESHOLD = Decimal("80")
EXCEEDED_THRESHOLD = Decimal("100")


def round_half_up(value: Decimal) -> int:
    """Nearest integer, ties toward positive infinity (-2.5 gives -2)."""
    value = Decimal(value)
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    return int(value.quantize(Decimal("1"), rounding=rounding))


def format_amount(amount: Decimal) -> str:
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return f"{amount:,.0f}".replace(",", " ")
    return f"{amount:,.2f}".replace(",", " ").replace(".", ",")


def _percentage(spent: Decimal, budgeted: Decimal) -> Decimal:
    if budgeted <= 0:
        return ZERO
    return spent / budgeted * HUNDRED


# ─── Aggregator ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Aggregate:
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    income_by_category: dict[str, Decimal] = field(default_factory=dict)
    expense_by_category: dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0

    @property
    def balance(self) -> Decimal:
        return self.total_income - self.total_expense


def aggregate(transactions: Iterable[Transaction]) -> Aggregate:
    total_income = ZERO
    total_expense = ZERO
    income_by_category: dict[str, Decimal] = {}
    expense_by_category: dict[str, Decimal] = {}
    count = 0
    for txn in transactions:
        count += 1
        amount = Decimal(txn.amount)
        if txn.type == TransactionType.income:
            total_income += amount
            income_by_category[txn.category] = (
                income_by_category.get(txn.category, ZERO) + amount
            )
        else:
            total_expense += amount
            expense_by_category[txn.category] = (
                expense_by_category.get(txn.category, ZERO) + amount
            )
    return Aggregate(
        total_income=total_income,
        total_expense=total_expense,
        income_by_category=income_by_category,
        expense_by_category=expense_by_category,
        transaction_count=count,
    )


# ─── Budget tracking ──────────────────────────────────────────────────────────


class TrackingStatus(str, Enum):
    ok = "ok"
    warning = "warning"
    exceeded = "exceeded"
    no_budget = "no_budget"


@dataclass(frozen=True)
class TrackingRecord:
    category: str
    budgeted: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: int
    status: TrackingStatus
    budget_id: Optional[int] = None


def classify(percentage: Decimal) -> TrackingStatus:
    if percentage > EXCEEDED_THRESHOLD:
        return TrackingStatus.exceeded
    if percentage > WARNING_THRESHOLD:
        return TrackingStatus.warning
    return TrackingStatus.ok


def track(
    budgets: Iterable[Budget], expense_by_category: Mapping[str, Decimal]
) -> list[TrackingRecord]:
    """Budget-vs-actual for one period.

    One record per budget, in the order given, then one ``no_budget`` record
    per category that has spending but no budget, sorted by category. Status
    is decided on the exact percentage; the reported one is rounded.
    """
    records: list[TrackingRecord] = []
    budgeted_categories: set[str] = set()
    for budget in budgets:
        budgeted = Decimal(budget.amount)
        spent = expense_by_category.get(budget.category, ZERO)
        percentage = _percentage(spent, budgeted)
        records.append(
            TrackingRecord(
                category=budget.category,
                budgeted=budgeted,
                spent=spent,
                remaining=budgeted - spent,
                percentage=round_half_up(percentage),
                status=classify(percentage),
                budget_id=budget.id,
            )
        )
        budgeted_categories.add(budget.category)

    for category in sorted(set(expense_by_category) - budgeted_categories):
        spent = expense_by_category[category]
        records.append(
            TrackingRecord(
                category=category,
                budgeted=ZERO,
                spent=spent,
                remaining=-spent,
                percentage=100,
                status=TrackingStatus.no_budget,
            )
        )
    return records


# ─── Alerts ───────────────────────────────────────────────────────────────────


class AlertSeverity(str, Enum):
    warning = "warning"
    danger = "danger"


@dataclass(frozen=True)
class Alert:
    severity: AlertSeverity
    category: str
    percentage: int
    message: str


def build_alerts(
    budgets: Iterable[Budget],
    expense_by_category: Mapping[str, Decimal],
    *,
    currency: str = "",
) -> list[Alert]:
    unit = f" {currency}" if currency else ""
    alerts: list[Alert] = []
    for budget in budgets:
        budgeted = Decimal(budget.amount)
        spent = expense_by_category.get(budget.category, ZERO)
        percentage = _percentage(spent, budgeted)
        rounded = round_half_up(percentage)
        if percentage >= EXCEEDED_THRESHOLD:
            alerts.append(
                Alert(
                    severity=AlertSeverity.danger,
                    category=budget.category,
                    percentage=rounded,
                    message=(
                        f"Budget exceeded! {format_amount(spent)}{unit} / "
                        f"{format_amount(budgeted)}{unit}"
                    ),
                )
            )
        elif percentage >= WARNING_THRESHOLD:
            alerts.append(
                Alert(
                    severity=AlertSeverity.warning,
                    category=budget.category,
                    percentage=rounded,
                    message=f"Warning: {rounded}% of budget used",
                )
            )
    return alerts


# ─── Trend ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TrendPoint:
    period: Period
    income: Decimal
    expense: Decimal

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense

    @property
    def month(self) -> int:
        return self.period.month

    @property
    def year(self) -> int:
        return self.period.year


def _month_point(ledger_query: LedgerQuery, period: Period) -> TrendPoint:
    totals = aggregate(ledger_query.fetch(LedgerFilter.for_period(period)))
    return TrendPoint(period, totals.total_income, totals.total_expense)


def build_trend(
    ledger_query: LedgerQuery,
    months: int,
    reference: Optional[datetime] = None,
    *,
    max_workers: int = 4,
) -> list[TrendPoint]:
    periods = trailing_periods(months, reference)
    if not periods:
        return []

    started = time.perf_counter()
    workers = max(1, min(max_workers, len(periods)))
    points: list[TrendPoint] = []
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_month_point, ledger_query, p) for p in periods]
        for future in as_completed(futures):
            points.append(future.result())
    points.sort(key=lambda point: point.period.start)

    logger.info(
        f"trend_built: owner={ledger_query.store.owner_id} months={len(points)} "
        f"workers={workers} duration={time.perf_counter() - started:.3f}s"
    )
    return points


# ─── Lifetime statistics ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class LifetimeStats:
    total_income: Decimal
    total_expense: Decimal
    transaction_count: int
    months_tracked: int
    avg_monthly_savings: int
    savings_rate: int
    first_activity: Optional[datetime] = None

    @property
    def total_savings(self) -> Decimal:
        return self.total_income - self.total_expense


def months_between(first: datetime, now: datetime) -> int:
    """Calendar months from ``first`` to ``now``, counting both ends."""
    return (now.year - first.year) * 12 + (now.month - first.month) + 1


def lifetime_stats(
    transactions: Iterable[Transaction], now: Optional[datetime] = None
) -> LifetimeStats:
    now = now or local_now()
    transactions = list(transactions)
    totals = aggregate(transactions)
    first_activity = min((txn.occurred_at for txn in transactions), default=None)

    months_tracked = 1
    if first_activity is not None:
        months_tracked = max(1, months_between(first_activity, now))

    savings = totals.balance
    savings_rate = 0
    if totals.total_income > 0:
        savings_rate = round_half_up(savings / totals.total_income * HUNDRED)

    return LifetimeStats(
        total_income=totals.total_income,
        total_expense=totals.total_expense,
        transaction_count=totals.transaction_count,
        months_tracked=months_tracked,
        avg_monthly_savings=round_half_up(savings / months_tracked),
        savings_rate=savings_rate,
        first_activity=first_activity,
    )
