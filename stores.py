"""Ledger and budget stores.

A store is a view over the persisted records of exactly one owner; the owner
is fixed when the view is built, so no call can reach another account's rows.
Lookups by id still tell "does not exist" apart from "belongs to someone
else".
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from errors import AuthorizationError, DuplicateBudgetError, NotFoundError, StoreError
from ledger import LedgerFilter
from models import Budget, Transaction
from periods import local_now

logger = logging.getLogger(__name__)

TRANSACTION_FIELDS = ("type", "amount", "category", "description", "occurred_at")
BUDGET_UNIQUE_MARKERS = (
    "uq_budget_owner_category_month",
    "UNIQUE constraint failed: budgets.",
)


def _owned(record, record_id: int, owner_id: str, label: str):
    if record is None:
        raise NotFoundError(f"{label} {record_id} not found")
    if record.owner_id != owner_id:
        raise AuthorizationError(f"{label} {record_id} belongs to another account")
    return record


class LedgerStore(ABC):
    owner_id: str
    # Filter fields the store can evaluate itself; anything else it ignores.
    pushdown_fields: frozenset[str] = frozenset()

    @abstractmethod
    def query(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        ...

    @abstractmethod
    def get(self, transaction_id: int) -> Transaction:
        ...

    @abstractmethod
    def insert(self, data: dict[str, object]) -> Transaction:
        ...

    @abstractmethod
    def update(self, transaction_id: int, changes: dict[str, object]) -> Transaction:
        ...

    @abstractmethod
    def delete(self, transaction_id: int) -> None:
        ...

    @abstractmethod
    def categories(self) -> list[str]:
        ...


class BudgetStore(ABC):
    owner_id: str

    @abstractmethod
    def query(
        self,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        ...

    @abstractmethod
    def get(self, budget_id: int) -> Budget:
        ...

    @abstractmethod
    def insert(self, data: dict[str, object]) -> Budget:
        ...

    @abstractmethod
    def update_amount(self, budget_id: int, amount: Decimal) -> Budget:
        ...

    @abstractmethod
    def delete(self, budget_id: int) -> None:
        ...


# ─── SQLAlchemy ───────────────────────────────────────────────────────────────


class _SQLStore:
    label = "Record"

    def __init__(self, session_factory: sessionmaker, owner_id: str) -> None:
        self.session_factory = session_factory
        self.owner_id = owner_id

    def _integrity_failure(self, exc: IntegrityError) -> Exception:
        return StoreError(f"{self.label} rejected by the store")

    @contextmanager
    def _session(self) -> Iterator[Session]:
        # One short-lived session per operation; views may be used from
        # several threads at once.
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except IntegrityError as exc:
            raise self._integrity_failure(exc) from exc
        except SQLAlchemyError as exc:
            logger.exception(
                f"store_fault: store={type(self).__name__} owner={self.owner_id}"
            )
            raise StoreError(f"{self.label} store unavailable") from exc


class SQLLedgerStore(_SQLStore, LedgerStore):
    label = "Transaction"
    pushdown_fields = frozenset({"type", "category", "start", "end"})

    def query(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        filters = filters or LedgerFilter()
        stmt = select(Transaction).where(Transaction.owner_id == self.owner_id)
        if filters.type is not None:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category is not None:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.start is not None:
            stmt = stmt.where(Transaction.occurred_at >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(Transaction.occurred_at <= filters.end)
        with self._session() as session:
            return list(session.scalars(stmt).all())

    def get(self, transaction_id: int) -> Transaction:
        with self._session() as session:
            txn = session.get(Transaction, transaction_id)
        return _owned(txn, transaction_id, self.owner_id, self.label)

    def insert(self, data: dict[str, object]) -> Transaction:
        with self._session() as session:
            txn = Transaction(owner_id=self.owner_id, **data)
            session.add(txn)
            session.flush()
        return txn

    def update(self, transaction_id: int, changes: dict[str, object]) -> Transaction:
        with self._session() as session:
            txn = _owned(
                session.get(Transaction, transaction_id),
                transaction_id,
                self.owner_id,
                self.label,
            )
            for key, value in changes.items():
                if key in TRANSACTION_FIELDS:
                    setattr(txn, key, value)
            session.flush()
        return txn

    def delete(self, transaction_id: int) -> None:
        with self._session() as session:
            txn = _owned(
                session.get(Transaction, transaction_id),
                transaction_id,
                self.owner_id,
                self.label,
            )
            session.delete(txn)

    def categories(self) -> list[str]:
        stmt = (
            select(Transaction.category)
            .where(Transaction.owner_id == self.owner_id)
            .distinct()
            .order_by(Transaction.category.asc())
        )
        with self._session() as session:
            return list(session.scalars(stmt).all())


class SQLBudgetStore(_SQLStore, BudgetStore):
    label = "Budget"

    def _integrity_failure(self, exc: IntegrityError) -> Exception:
        # SQLite reports the columns rather than the constraint name.
        detail = str(exc.orig)
        if any(marker in detail for marker in BUDGET_UNIQUE_MARKERS):
            return DuplicateBudgetError(
                "A budget already exists for this category and period"
            )
        return super()._integrity_failure(exc)

    def query(
        self,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.owner_id == self.owner_id)
            .order_by(Budget.year.asc(), Budget.month.asc(), Budget.category.asc())
        )
        if month is not None:
            stmt = stmt.where(Budget.month == month)
        if year is not None:
            stmt = stmt.where(Budget.year == year)
        if category is not None:
            stmt = stmt.where(Budget.category == category)
        with self._session() as session:
            return list(session.scalars(stmt).all())

    def get(self, budget_id: int) -> Budget:
        with self._session() as session:
            budget = session.get(Budget, budget_id)
        return _owned(budget, budget_id, self.owner_id, self.label)

    def insert(self, data: dict[str, object]) -> Budget:
        with self._session() as session:
            budget = Budget(owner_id=self.owner_id, **data)
            session.add(budget)
            session.flush()
        return budget

    def update_amount(self, budget_id: int, amount: Decimal) -> Budget:
        with self._session() as session:
            budget = _owned(
                session.get(Budget, budget_id), budget_id, self.owner_id, self.label
            )
            budget.amount = amount
            session.flush()
        return budget

    def delete(self, budget_id: int) -> None:
        with self._session() as session:
            budget = _owned(
                session.get(Budget, budget_id), budget_id, self.owner_id, self.label
            )
            session.delete(budget)


# ─── In-process memory ────────────────────────────────────────────────────────


class MemoryBackend:
    """Shared record tables for every owner; views never see each other's rows.

    Budget uniqueness is not enforced here, so concurrent ``create`` calls for
    the same category and month can both land.
    """

    def __init__(self) -> None:
        self.transactions: dict[int, Transaction] = {}
        self.budgets: dict[int, Budget] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)


def _copy_transaction(txn: Transaction) -> Transaction:
    return Transaction(
        id=txn.id,
        owner_id=txn.owner_id,
        type=txn.type,
        amount=txn.amount,
        category=txn.category,
        description=txn.description,
        occurred_at=txn.occurred_at,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )


def _copy_budget(budget: Budget) -> Budget:
    return Budget(
        id=budget.id,
        owner_id=budget.owner_id,
        category=budget.category,
        amount=budget.amount,
        month=budget.month,
        year=budget.year,
        created_at=budget.created_at,
        updated_at=budget.updated_at,
    )


class MemoryLedgerStore(LedgerStore):
    # Equality lookups only; date ranges are left to the caller.
    pushdown_fields = frozenset({"type", "category"})

    def __init__(self, backend: MemoryBackend, owner_id: str) -> None:
        self.backend = backend
        self.owner_id = owner_id

    def _lookup(self, transaction_id: int) -> Transaction:
        return _owned(
            self.backend.transactions.get(transaction_id),
            transaction_id,
            self.owner_id,
            "Transaction",
        )

    def query(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        filters = filters or LedgerFilter()
        out: list[Transaction] = []
        for txn in self.backend.transactions.values():
            if txn.owner_id != self.owner_id:
                continue
            if filters.type is not None and txn.type != filters.type:
                continue
            if filters.category is not None and txn.category != filters.category:
                continue
            out.append(_copy_transaction(txn))
        return out

    def get(self, transaction_id: int) -> Transaction:
        return _copy_transaction(self._lookup(transaction_id))

    def insert(self, data: dict[str, object]) -> Transaction:
        now = local_now()
        txn = Transaction(
            id=self.backend.next_id(),
            owner_id=self.owner_id,
            description="",
            created_at=now,
            updated_at=now,
        )
        for key, value in data.items():
            setattr(txn, key, value)
        self.backend.transactions[txn.id] = txn
        return _copy_transaction(txn)

    def update(self, transaction_id: int, changes: dict[str, object]) -> Transaction:
        txn = self._lookup(transaction_id)
        for key, value in changes.items():
            if key in TRANSACTION_FIELDS:
                setattr(txn, key, value)
        txn.updated_at = local_now()
        return _copy_transaction(txn)

    def delete(self, transaction_id: int) -> None:
        self._lookup(transaction_id)
        del self.backend.transactions[transaction_id]

    def categories(self) -> list[str]:
        return sorted(
            {
                txn.category
                for txn in self.backend.transactions.values()
                if txn.owner_id == self.owner_id
            }
        )


class MemoryBudgetStore(BudgetStore):
    def __init__(self, backend: MemoryBackend, owner_id: str) -> None:
        self.backend = backend
        self.owner_id = owner_id

    def _lookup(self, budget_id: int) -> Budget:
        return _owned(
            self.backend.budgets.get(budget_id), budget_id, self.owner_id, "Budget"
        )

    def query(
        self,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        rows = [
            _copy_budget(budget)
            for budget in self.backend.budgets.values()
            if budget.owner_id == self.owner_id
            and (month is None or budget.month == month)
            and (year is None or budget.year == year)
            and (category is None or budget.category == category)
        ]
        rows.sort(key=lambda b: (b.year, b.month, b.category))
        return rows

    def get(self, budget_id: int) -> Budget:
        return _copy_budget(self._lookup(budget_id))

    def insert(self, data: dict[str, object]) -> Budget:
        now = local_now()
        budget = Budget(
            id=self.backend.next_id(),
            owner_id=self.owner_id,
            created_at=now,
            updated_at=now,
            **data,
        )
        self.backend.budgets[budget.id] = budget
        return _copy_budget(budget)

    def update_amount(self, budget_id: int, amount: Decimal) -> Budget:
        budget = self._lookup(budget_id)
        budget.amount = amount
        budget.updated_at = local_now()
        return _copy_budget(budget)

    def delete(self, budget_id: int) -> None:
        self._lookup(budget_id)
        del self.backend.budgets[budget_id]
