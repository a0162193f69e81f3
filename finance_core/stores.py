"""Persistence contracts consumed by the core, plus in-memory implementations.

The core never talks to a database directly. It receives a transaction store
and a pattern store that satisfy the protocols below. Every call is a
coroutine and should raise :class:`StoreError` on failure; the core does not
interpret store-specific error codes. Series generation also tolerates any
other exception from ``create`` and records it as a failed occurrence.

The in-memory stores are deterministic and process-local. They back the test
suite and are suitable for embedding the core where no database is wanted.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from finance_core.records import SuggestionPattern, TransactionOccurrence

_OCCURRENCE_FIELDS = {f.name for f in fields(TransactionOccurrence)}


class StoreError(RuntimeError):
    """Raised when a backing store cannot complete a read or write."""


class TransactionStore(Protocol):
    async def create(self, record: TransactionOccurrence) -> int: ...

    async def get(self, transaction_id: int) -> Optional[TransactionOccurrence]: ...

    async def update(self, transaction_id: int, changes: Mapping[str, Any]) -> bool: ...

    async def delete(self, transaction_id: int) -> bool: ...

    async def query_by_series(self, user_id: int, series_id: str) -> list[TransactionOccurrence]: ...

    async def count_by_category(self, user_id: int, category_id: int) -> int: ...


class PatternStore(Protocol):
    async def get_exact(self, user_id: int, key: str) -> Optional[SuggestionPattern]: ...

    async def range_query(
        self, user_id: int, start: str, end: str, limit: int
    ) -> list[SuggestionPattern]: ...

    async def upsert_merge(
        self,
        user_id: int,
        key: str,
        *,
        category_id: int,
        account_id: Optional[int],
        credit_card_id: Optional[int],
        payment_method: Optional[str],
        used_at: datetime,
    ) -> SuggestionPattern: ...


def check_changes(changes: Mapping[str, Any]) -> None:
    unknown = set(changes) - (_OCCURRENCE_FIELDS - {"id"})
    if unknown:
        raise ValueError(f"Unsupported transaction fields: {', '.join(sorted(unknown))}")


@dataclass
class InMemoryTransactionStore:
    records: dict[int, TransactionOccurrence] = field(default_factory=dict)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    async def create(self, record: TransactionOccurrence) -> int:
        transaction_id = next(self._ids)
        self.records[transaction_id] = replace(record, id=transaction_id)
        return transaction_id

    async def get(self, transaction_id: int) -> Optional[TransactionOccurrence]:
        return self.records.get(transaction_id)

    async def update(self, transaction_id: int, changes: Mapping[str, Any]) -> bool:
        check_changes(changes)
        current = self.records.get(transaction_id)
        if current is None:
            return False
        self.records[transaction_id] = replace(current, **changes)
        return True

    async def delete(self, transaction_id: int) -> bool:
        return self.records.pop(transaction_id, None) is not None

    async def query_by_series(self, user_id: int, series_id: str) -> list[TransactionOccurrence]:
        matches = [
            record
            for record in self.records.values()
            if record.user_id == user_id and record.series_id == series_id
        ]
        return sorted(matches, key=lambda record: (record.date, record.id))

    async def count_by_category(self, user_id: int, category_id: int) -> int:
        return sum(
            1
            for record in self.records.values()
            if record.user_id == user_id and record.category_id == category_id
        )


@dataclass
class InMemoryPatternStore:
    patterns: dict[tuple[int, str], SuggestionPattern] = field(default_factory=dict)
    reads: int = 0

    async def get_exact(self, user_id: int, key: str) -> Optional[SuggestionPattern]:
        self.reads += 1
        return self.patterns.get((user_id, key))

    async def range_query(
        self, user_id: int, start: str, end: str, limit: int
    ) -> list[SuggestionPattern]:
        self.reads += 1
        matches = sorted(
            (
                pattern
                for (owner, key), pattern in self.patterns.items()
                if owner == user_id and start <= key < end
            ),
            key=lambda pattern: pattern.normalized_description,
        )
        return matches[:limit]

    async def upsert_merge(
        self,
        user_id: int,
        key: str,
        *,
        category_id: int,
        account_id: Optional[int],
        credit_card_id: Optional[int],
        payment_method: Optional[str],
        used_at: datetime,
    ) -> SuggestionPattern:
        existing = self.patterns.get((user_id, key))
        merged = SuggestionPattern(
            normalized_description=key,
            category_id=category_id,
            count=(existing.count if existing else 0) + 1,
            account_id=account_id,
            credit_card_id=credit_card_id,
            payment_method=payment_method,
            last_used_at=used_at,
        )
        self.patterns[(user_id, key)] = merged
        return merged
