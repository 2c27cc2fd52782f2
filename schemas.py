from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_serializer
from pydantic.alias_generators import to_camel

from analytics import AlertSeverity, TrackingStatus
from models import TransactionType
from periods import as_instant

# Monetary values leave the API as plain JSON numbers.
Money = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class TransactionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: TransactionType
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    occurred_at: Optional[datetime] = Field(default=None, alias="date")


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=14, decimal_places=2
    )
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    occurred_at: Optional[datetime] = Field(default=None, alias="date")


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)


class BudgetAmountIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class TransactionOut(CamelModel):
    id: int
    type: TransactionType
    amount: Money
    category: str
    description: str
    date: datetime = Field(validation_alias="occurred_at")
    created_at: datetime

    @field_serializer("date", "created_at")
    def _instant(self, value: datetime) -> str:
        return as_instant(value).isoformat()


class BudgetOut(CamelModel):
    id: int
    category: str
    amount: Money
    month: int
    year: int
    created_at: datetime

    @field_serializer("created_at")
    def _instant(self, value: datetime) -> str:
        return as_instant(value).isoformat()


class PeriodOut(CamelModel):
    start: datetime
    end: datetime

    @field_serializer("start", "end")
    def _instant(self, value: datetime) -> str:
        return as_instant(value).isoformat()


class BreakdownOut(CamelModel):
    expenses_by_category: dict[str, Money]
    incomes_by_category: dict[str, Money]


class SummaryOut(CamelModel):
    period: PeriodOut
    total_income: Money
    total_expense: Money
    balance: Money
    transaction_count: int
    breakdown: BreakdownOut


class TrendPointOut(CamelModel):
    month: int
    year: int
    income: Money
    expense: Money
    balance: Money


class TrackingRecordOut(CamelModel):
    id: Optional[int] = Field(default=None, validation_alias="budget_id")
    category: str
    budgeted: Money
    spent: Money
    remaining: Money
    percentage: int
    status: TrackingStatus


class AlertOut(CamelModel):
    severity: AlertSeverity
    category: str
    percentage: int
    message: str


class StatsOut(CamelModel):
    total_income: Money
    total_expense: Money
    total_savings: Money
    transaction_count: int
    months_tracked: int
    avg_monthly_savings: int
    savings_rate: int


class CategoriesOut(CamelModel):
    user_categories: list[str]
    default_categories: dict[str, list[str]]


class TransactionListOut(CamelModel):
    transactions: list[TransactionOut]


class TransactionResultOut(CamelModel):
    message: str
    transaction: TransactionOut


class BudgetListOut(CamelModel):
    budgets: list[BudgetOut]


class BudgetResultOut(CamelModel):
    message: str
    budget: BudgetOut


class TrackingOut(CamelModel):
    budgets: list[TrackingRecordOut]


class TrendOut(CamelModel):
    data: list[TrendPointOut]


class AlertsOut(CamelModel):
    alerts: list[AlertOut]


class StatsEnvelopeOut(CamelModel):
    stats: StatsOut


class MessageOut(CamelModel):
    message: str
