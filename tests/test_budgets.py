import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

import pytest

from errors import (
    AuthorizationError,
    DuplicateBudgetError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from ledger import make_ledger_query
from models import TransactionType
from schemas import BudgetIn, TransactionIn
from services import BudgetService, TransactionService
from stores import MemoryBackend, MemoryBudgetStore, MemoryLedgerStore, SQLBudgetStore


def _services(make_stores, owner: str):
    ledger, budgets = make_stores(owner)
    query = make_ledger_query(ledger)
    return TransactionService(ledger, query), BudgetService(budgets, query)


def test_create_rejects_duplicate_category_for_same_month(make_stores) -> None:
    _, budgets = _services(make_stores, "alice")
    budgets.create(BudgetIn(category="Food", amount=Decimal("200"), month=3, year=2025))

    with pytest.raises(DuplicateBudgetError):
        budgets.create(
            BudgetIn(category="Food", amount=Decimal("300"), month=3, year=2025)
        )

    # Another month or another owner is fine.
    budgets.create(BudgetIn(category="Food", amount=Decimal("200"), month=4, year=2025))
    _, other = _services(make_stores, "bob")
    other.create(BudgetIn(category="Food", amount=Decimal("200"), month=3, year=2025))

    assert len(budgets.list(3, 2025)) == 1
    assert len(budgets.list()) == 2


def test_list_requires_month_and_year_together(make_stores) -> None:
    _, budgets = _services(make_stores, "alice")
    with pytest.raises(ValidationError):
        budgets.list(month=3)
    with pytest.raises(ValidationError):
        budgets.list(month=13, year=2025)


def test_upsert_creates_then_updates(make_stores) -> None:
    _, budgets = _services(make_stores, "alice")
    payload = BudgetIn(category="Bills", amount=Decimal("150"), month=5, year=2025)

    first, created = budgets.upsert(payload)
    assert created is True
    second, created = budgets.upsert(payload.model_copy(update={"amount": Decimal("175")}))
    assert created is False
    assert second.id == first.id
    assert second.amount == Decimal("175")
    assert len(budgets.list(5, 2025)) == 1


def test_update_and_delete_distinguish_missing_from_foreign(make_stores) -> None:
    _, alice = _services(make_stores, "alice")
    _, bob = _services(make_stores, "bob")
    owned = alice.create(
        BudgetIn(category="Food", amount=Decimal("200"), month=1, year=2025)
    )

    with pytest.raises(AuthorizationError):
        bob.update(owned.id, Decimal("10"))
    with pytest.raises(AuthorizationError):
        bob.delete(owned.id)
    with pytest.raises(NotFoundError):
        alice.update(owned.id + 1000, Decimal("10"))
    with pytest.raises(ValidationError):
        alice.update(owned.id, Decimal("0"))

    assert alice.update(owned.id, Decimal("250")).amount == Decimal("250")
    alice.delete(owned.id)
    with pytest.raises(NotFoundError):
        alice.delete(owned.id)


def test_tracking_combines_budgets_and_month_expenses(make_stores) -> None:
    transactions, budgets = _services(make_stores, "alice")
    budgets.create(BudgetIn(category="Food", amount=Decimal("200"), month=2, year=2025))
    for amount, category, day in [("150", "Food", 3), ("100", "Food", 20), ("50", "Transport", 5)]:
        transactions.create(
            TransactionIn(
                type=TransactionType.expense,
                amount=Decimal(amount),
                category=category,
                date=datetime(2025, 2, day, 12, 0),
            )
        )
    # Outside the month, and income, are ignored.
    transactions.create(
        TransactionIn(
            type=TransactionType.expense,
            amount=Decimal("999"),
            category="Food",
            date=datetime(2025, 3, 1, 0, 0),
        )
    )
    transactions.create(
        TransactionIn(
            type=TransactionType.income,
            amount=Decimal("999"),
            category="Food",
            date=datetime(2025, 2, 10),
        )
    )

    records = budgets.tracking(2, 2025)
    assert [(r.category, r.spent, r.percentage, r.status.value) for r in records] == [
        ("Food", Decimal("250"), 125, "exceeded"),
        ("Transport", Decimal("50"), 100, "no_budget"),
    ]


class PausingBudgetQuery:
    """Holds every duplicate check until both writers have made theirs."""

    barrier: threading.Barrier

    def query(self, **kwargs):
        rows = super().query(**kwargs)
        if kwargs.get("category") is not None:
            self.barrier.wait(timeout=5)
        return rows


class PausingMemoryBudgetStore(PausingBudgetQuery, MemoryBudgetStore):
    pass


class PausingSQLBudgetStore(PausingBudgetQuery, SQLBudgetStore):
    pass


def _race(stores) -> list[object]:
    barrier = threading.Barrier(len(stores))
    payload = BudgetIn(category="Food", amount=Decimal("200"), month=6, year=2025)

    def attempt(store):
        store.barrier = barrier
        try:
            return BudgetService(store, None).create(payload)
        except DuplicateBudgetError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(stores)) as pool:
        return list(pool.map(attempt, stores))


def test_concurrent_creates_both_land_without_a_unique_constraint() -> None:
    backend = MemoryBackend()
    outcomes = _race(
        [PausingMemoryBudgetStore(backend, "alice") for _ in range(2)]
    )

    # The check-then-act race is not prevented by the service.
    assert not any(isinstance(o, DuplicateBudgetError) for o in outcomes)
    assert len(MemoryBudgetStore(backend, "alice").query(month=6, year=2025)) == 2


def test_unique_constraint_rejects_the_losing_concurrent_create(session_factory) -> None:
    outcomes = _race(
        [PausingSQLBudgetStore(session_factory, "alice") for _ in range(2)]
    )

    assert sum(isinstance(o, DuplicateBudgetError) for o in outcomes) == 1
    assert len(SQLBudgetStore(session_factory, "alice").query(month=6, year=2025)) == 1


def test_upsert_absorbs_a_lost_insert_race(session_factory) -> None:
    payload = BudgetIn(category="Food", amount=Decimal("200"), month=6, year=2025)
    SQLBudgetStore(session_factory, "alice").insert(
        {"category": "Food", "amount": Decimal("100"), "month": 6, "year": 2025}
    )

    class StaleStore(SQLBudgetStore):
        """Misses the existing row on the first lookup only."""

        calls = 0

        def query(self, **kwargs):
            self.calls += 1
            if self.calls == 1:
                return []
            return super().query(**kwargs)

    budget, created = BudgetService(StaleStore(session_factory, "alice"), None).upsert(payload)
    assert created is False
    assert budget.amount == Decimal("200")


def test_memory_store_isolates_owners() -> None:
    backend = MemoryBackend()
    alice = MemoryLedgerStore(backend, "alice")
    bob = MemoryLedgerStore(backend, "bob")
    txn = alice.insert(
        {
            "type": TransactionType.expense,
            "amount": Decimal("12"),
            "category": "Food",
            "occurred_at": datetime(2025, 1, 1),
        }
    )
    assert bob.query() == []
    assert bob.categories() == []
    with pytest.raises(AuthorizationError):
        bob.get(txn.id)


@pytest.mark.parametrize(
    "data",
    [
        {"category": "Food", "amount": Decimal("-1"), "month": 6, "year": 2025},
        {"category": "Food", "amount": Decimal("10"), "month": 13, "year": 2025},
    ],
)
def test_other_integrity_failures_are_not_duplicates(session_factory, data) -> None:
    store = SQLBudgetStore(session_factory, "alice")
    with pytest.raises(StoreError) as excinfo:
        store.insert(data)
    assert not isinstance(excinfo.value, DuplicateBudgetError)
    assert store.query() == []
