import os
import tempfile

os.environ.setdefault("LEDGER_DATA_DIR", tempfile.mkdtemp(prefix="ledger-tests-"))
os.environ["LEDGER_TIMEZONE"] = "UTC"
os.environ["LEDGER_CURRENCY"] = "FCFA"

from datetime import datetime
from decimal import Decimal

import pytest

import models  # noqa: F401
from database import Base, create_ledger_engine, make_session_factory
from models import Budget, Transaction, TransactionType
from stores import (
    MemoryBackend,
    MemoryBudgetStore,
    MemoryLedgerStore,
    SQLBudgetStore,
    SQLLedgerStore,
)


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so worker threads share one database.
    engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture(params=["memory", "sql"])
def store_kind(request) -> str:
    return request.param


@pytest.fixture
def make_stores(store_kind, request):
    """Return a factory building (ledger_store, budget_store) for an owner."""
    if store_kind == "memory":
        backend = MemoryBackend()

        def build(owner_id: str):
            return (
                MemoryLedgerStore(backend, owner_id),
                MemoryBudgetStore(backend, owner_id),
            )

        return build

    factory = request.getfixturevalue("session_factory")

    def build(owner_id: str):
        return SQLLedgerStore(factory, owner_id), SQLBudgetStore(factory, owner_id)

    return build


def txn(
    type: TransactionType,
    amount: str,
    category: str,
    occurred_at: datetime,
    *,
    id: int = 0,
    owner_id: str = "alice",
) -> Transaction:
    return Transaction(
        id=id,
        owner_id=owner_id,
        type=type,
        amount=Decimal(amount),
        category=category,
        description="",
        occurred_at=occurred_at,
    )


def budget(category: str, amount: str, *, id: int = 1, month: int = 1, year: int = 2025):
    return Budget(
        id=id,
        owner_id="alice",
        category=category,
        amount=Decimal(amount),
        month=month,
        year=year,
    )
