import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import SessionLocal, session_scope
from errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from ledger import LedgerFilter, LedgerQuery, make_ledger_query
from models import TransactionType
from periods import as_instant, local_now, to_reference
from schemas import (
    AlertOut,
    AlertsOut,
    BudgetAmountIn,
    BudgetIn,
    BudgetListOut,
    BudgetOut,
    BudgetResultOut,
    CategoriesOut,
    MessageOut,
    StatsEnvelopeOut,
    StatsOut,
    SummaryOut,
    TrackingOut,
    TrackingRecordOut,
    TransactionIn,
    TransactionListOut,
    TransactionOut,
    TransactionResultOut,
    TransactionUpdate,
    TrendOut,
    TrendPointOut,
)
from services import BudgetService, DashboardService, TransactionService
from stores import BudgetStore, LedgerStore, SQLBudgetStore, SQLLedgerStore

settings = get_settings()
logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Ledger Analytics")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@contextmanager
def http_errors():
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AuthorizationError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        logging.exception("Ledger store failure")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


# ─── Dependencies ─────────────────────────────────────────────────────────────


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_owner(x_account_id: Optional[str] = Header(default=None)) -> str:
    owner = (x_account_id or "").strip() or get_settings().default_owner
    if len(owner) > 64:
        raise HTTPException(status_code=400, detail="Invalid account identifier")
    return owner


def get_ledger_store(
    session_factory: sessionmaker = Depends(get_session_factory),
    owner: str = Depends(get_owner),
) -> LedgerStore:
    return SQLLedgerStore(session_factory, owner)


def get_budget_store(
    session_factory: sessionmaker = Depends(get_session_factory),
    owner: str = Depends(get_owner),
) -> BudgetStore:
    return SQLBudgetStore(session_factory, owner)


def get_ledger_query(store: LedgerStore = Depends(get_ledger_store)) -> LedgerQuery:
    return make_ledger_query(store, get_settings().query_strategy)


def get_transaction_service(
    store: LedgerStore = Depends(get_ledger_store),
    query: LedgerQuery = Depends(get_ledger_query),
) -> TransactionService:
    return TransactionService(store, query)


def get_budget_service(
    store: BudgetStore = Depends(get_budget_store),
    query: LedgerQuery = Depends(get_ledger_query),
) -> BudgetService:
    return BudgetService(store, query)


def get_dashboard_service(
    query: LedgerQuery = Depends(get_ledger_query),
    budget_store: BudgetStore = Depends(get_budget_store),
) -> DashboardService:
    return DashboardService(query, budget_store)


def _type_filter(value: Optional[str]) -> Optional[TransactionType]:
    if not value or value == "all":
        return None
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Unknown transaction type: {value}"
        ) from exc


# ─── Health ───────────────────────────────────────────────────────────────────


@app.get("/api/health")
def health(session_factory: sessionmaker = Depends(get_session_factory)):
    database = "connected"
    try:
        with session_scope(session_factory) as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logging.warning("Health check could not reach the database", exc_info=True)
        database = "unavailable"
    return {
        "status": "OK",
        "timestamp": as_instant(local_now()).isoformat(),
        "database": database,
    }


# ─── Transactions ─────────────────────────────────────────────────────────────


@app.get("/api/transactions", response_model=TransactionListOut)
def list_transactions(
    type: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    limit: int = Query(default=50, ge=1, le=500),
    service: TransactionService = Depends(get_transaction_service),
):
    filters = LedgerFilter(
        type=_type_filter(type),
        category=None if not category or category == "all" else category,
        start=to_reference(start_date) if start_date else None,
        end=to_reference(end_date) if end_date else None,
    )
    with http_errors():
        items = service.list(filters, limit=limit)
    return TransactionListOut(
        transactions=[TransactionOut.model_validate(txn) for txn in items]
    )


@app.get("/api/transactions/categories", response_model=CategoriesOut)
def transaction_categories(
    service: TransactionService = Depends(get_transaction_service),
):
    with http_errors():
        return CategoriesOut.model_validate(service.categories())


@app.post(
    "/api/transactions", response_model=TransactionResultOut, status_code=201
)
def create_transaction(
    payload: TransactionIn,
    service: TransactionService = Depends(get_transaction_service),
):
    with http_errors():
        txn = service.create(payload)
    return TransactionResultOut(
        message="Transaction created", transaction=TransactionOut.model_validate(txn)
    )


@app.put("/api/transactions/{transaction_id}", response_model=TransactionResultOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    service: TransactionService = Depends(get_transaction_service),
):
    with http_errors():
        txn = service.update(transaction_id, payload)
    return TransactionResultOut(
        message="Transaction updated", transaction=TransactionOut.model_validate(txn)
    )


@app.delete("/api/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int,
    service: TransactionService = Depends(get_transaction_service),
):
    with http_errors():
        service.delete(transaction_id)
    return MessageOut(message="Transaction deleted")


# ─── Budgets ──────────────────────────────────────────────────────────────────


@app.get("/api/budgets", response_model=BudgetListOut)
def list_budgets(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    service: BudgetService = Depends(get_budget_service),
):
    with http_errors():
        budgets = service.list(month, year)
    return BudgetListOut(budgets=[BudgetOut.model_validate(b) for b in budgets])


@app.get("/api/budgets/tracking", response_model=TrackingOut)
def budget_tracking(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    service: BudgetService = Depends(get_budget_service),
):
    with http_errors():
        if month is None or year is None:
            raise ValidationError("Month and year are required")
        records = service.tracking(month, year)
    return TrackingOut(
        budgets=[TrackingRecordOut.model_validate(record) for record in records]
    )


@app.post("/api/budgets", response_model=BudgetResultOut, status_code=201)
def create_budget(
    payload: BudgetIn,
    service: BudgetService = Depends(get_budget_service),
):
    with http_errors():
        budget = service.create(payload)
    return BudgetResultOut(
        message="Budget created", budget=BudgetOut.model_validate(budget)
    )


@app.put("/api/budgets", response_model=BudgetResultOut)
def upsert_budget(
    payload: BudgetIn,
    service: BudgetService = Depends(get_budget_service),
):
    with http_errors():
        budget, created = service.upsert(payload)
    return BudgetResultOut(
        message="Budget created" if created else "Budget updated",
        budget=BudgetOut.model_validate(budget),
    )


@app.put("/api/budgets/{budget_id}", response_model=BudgetResultOut)
def update_budget(
    budget_id: int,
    payload: BudgetAmountIn,
    service: BudgetService = Depends(get_budget_service),
):
    with http_errors():
        budget = service.update(budget_id, payload.amount)
    return BudgetResultOut(
        message="Budget updated", budget=BudgetOut.model_validate(budget)
    )


@app.delete("/api/budgets/{budget_id}", response_model=MessageOut)
def delete_budget(
    budget_id: int,
    service: BudgetService = Depends(get_budget_service),
):
    with http_errors():
        service.delete(budget_id)
    return MessageOut(message="Budget deleted")


# ─── Dashboard ────────────────────────────────────────────────────────────────


@app.get("/api/dashboard/summary", response_model=SummaryOut)
def dashboard_summary(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    service: DashboardService = Depends(get_dashboard_service),
):
    with http_errors():
        return SummaryOut.model_validate(service.summary(month, year))


@app.get("/api/dashboard/trend", response_model=TrendOut)
def dashboard_trend(
    months: int = Query(default=6, ge=1, le=24),
    service: DashboardService = Depends(get_dashboard_service),
):
    with http_errors():
        points = service.trend(months)
    return TrendOut(data=[TrendPointOut.model_validate(p) for p in points])


@app.get("/api/dashboard/recent", response_model=TransactionListOut)
def dashboard_recent(
    limit: int = Query(default=5, ge=1, le=100),
    service: DashboardService = Depends(get_dashboard_service),
):
    with http_errors():
        items = service.recent(limit)
    return TransactionListOut(
        transactions=[TransactionOut.model_validate(txn) for txn in items]
    )


@app.get("/api/dashboard/alerts", response_model=AlertsOut)
def dashboard_alerts(service: DashboardService = Depends(get_dashboard_service)):
    with http_errors():
        alerts = service.alerts()
    return AlertsOut(alerts=[AlertOut.model_validate(alert) for alert in alerts])


@app.get("/api/dashboard/stats", response_model=StatsEnvelopeOut)
def dashboard_stats(service: DashboardService = Depends(get_dashboard_service)):
    with http_errors():
        stats = service.stats()
    return StatsEnvelopeOut(stats=StatsOut.model_validate(stats))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
