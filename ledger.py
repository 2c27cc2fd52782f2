"""Ledger query layer.

Two interchangeable ways of pulling an owner's transactions out of a
``LedgerStore``: scan everything and filter in memory, or push the predicates
the store can evaluate down to it. Both strategies re-check every predicate
themselves, so they return the same set of transactions regardless of how
much the store filtered. Neither orders its results.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Optional

from models import Transaction, TransactionType
from periods import Period

if TYPE_CHECKING:  # pragma: no cover
    from stores import LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerFilter:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def for_period(cls, period: Period, **kwargs) -> "LedgerFilter":
        return cls(start=period.start, end=period.end, **kwargs)

    def declared(self) -> frozenset[str]:
        return frozenset(f.name for f in fields(self) if getattr(self, f.name) is not None)

    def restricted_to(self, supported: Iterable[str]) -> "LedgerFilter":
        supported = frozenset(supported)
        dropped = {name: None for name in self.declared() - supported}
        return replace(self, **dropped)

    def matches(self, txn: Transaction) -> bool:
        if self.type is not None and txn.type != self.type:
            return False
        if self.category is not None and txn.category != self.category:
            return False
        if self.start is not None and txn.occurred_at < self.start:
            return False
        if self.end is not None and txn.occurred_at > self.end:
            return False
        return True


class LedgerQuery(ABC):
    strategy: str

    def __init__(self, store: "LedgerStore") -> None:
        self.store = store

    @abstractmethod
    def fetch(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        ...

    def _log(self, filters: LedgerFilter, fetched: int, matched: int) -> None:
        logger.debug(
            f"ledger_fetch: strategy={self.strategy} owner={self.store.owner_id} "
            f"filters={sorted(filters.declared())} fetched={fetched} matched={matched}"
        )


class ScanLedgerQuery(LedgerQuery):
    strategy = "scan"

    def fetch(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        filters = filters or LedgerFilter()
        rows = self.store.query(LedgerFilter())
        matched = [txn for txn in rows if filters.matches(txn)]
        self._log(filters, len(rows), len(matched))
        return matched


class PushdownLedgerQuery(LedgerQuery):
    strategy = "pushdown"

    def fetch(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        filters = filters or LedgerFilter()
        rows = self.store.query(filters.restricted_to(self.store.pushdown_fields))
        # The store may ignore predicates; never trust it to have filtered.
        matched = [txn for txn in rows if filters.matches(txn)]
        self._log(filters, len(rows), len(matched))
        return matched


STRATEGIES: dict[str, type[LedgerQuery]] = {
    ScanLedgerQuery.strategy: ScanLedgerQuery,
    PushdownLedgerQuery.strategy: PushdownLedgerQuery,
}


def make_ledger_query(store: "LedgerStore", strategy: str = "pushdown") -> LedgerQuery:
    try:
        query_cls = STRATEGIES[strategy]
    except KeyError as exc:
        raise ValueError(f"Unknown ledger query strategy: {strategy}") from exc
    return query_cls(store)
