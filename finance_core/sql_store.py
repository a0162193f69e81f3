"""SQLAlchemy-backed transaction and pattern stores.

Tables are declared with SQLAlchemy Core and driven through the asyncio
extension, so any async driver works; the default configuration uses
``sqlite+aiosqlite``. Pattern upserts rely on ``INSERT ... ON CONFLICT DO
UPDATE`` with ``count = count + 1`` so concurrent learns for the same key
never lose an increment (SQLite and PostgreSQL).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import datetime
from typing import Any, AsyncIterator, Mapping, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    and_,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from finance_core.records import AnticipatedFrom, SuggestionPattern, TransactionOccurrence
from finance_core.stores import StoreError, check_changes

metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(255), nullable=False, default=""),
    Column("category_id", Integer, index=True),
    Column("account_id", Integer),
    Column("to_account_id", Integer),
    Column("credit_card_id", Integer),
    Column("date", Date, nullable=False),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("status", String(20), nullable=False),
    Column("recurrence", String(20), nullable=False, default="none"),
    Column("recurrence_mode", String(20)),
    Column("series_id", String(64), index=True),
    Column("installment_current", Integer),
    Column("installment_total", Integer),
    Column("anticipated_from_month", Integer),
    Column("anticipated_from_year", Integer),
    Column("anticipated_at", DateTime),
    Column("anticipation_discount", Numeric(12, 2)),
    Column("related_transaction_id", Integer),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime),
)

suggestion_patterns = Table(
    "suggestion_patterns",
    metadata,
    Column("user_id", Integer, primary_key=True),
    Column("normalized_description", String(255), primary_key=True),
    Column("category_id", Integer),
    Column("account_id", Integer),
    Column("credit_card_id", Integer),
    Column("payment_method", String(20)),
    Column("count", Integer, nullable=False, default=0),
    Column("last_used_at", DateTime),
)


def create_engine_from_url(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


@asynccontextmanager
async def _begin(engine: AsyncEngine, action: str) -> AsyncIterator[AsyncConnection]:
    try:
        async with engine.begin() as conn:
            yield conn
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to {action}.") from exc


def _occurrence_values(changes: Mapping[str, Any]) -> dict[str, Any]:
    values = {key: value for key, value in changes.items() if key not in {"id", "anticipated_from"}}
    if "anticipated_from" in changes:
        anticipated = changes["anticipated_from"]
        values["anticipated_from_month"] = anticipated.month if anticipated else None
        values["anticipated_from_year"] = anticipated.year if anticipated else None
        values["anticipated_at"] = anticipated.captured_at if anticipated else None
    if values.get("created_at") is None:
        values.pop("created_at", None)
    return values


def _row_to_occurrence(row: Mapping[str, Any]) -> TransactionOccurrence:
    anticipated = None
    if row["anticipated_from_month"] is not None:
        anticipated = AnticipatedFrom(
            month=row["anticipated_from_month"],
            year=row["anticipated_from_year"],
            captured_at=row["anticipated_at"],
        )
    return TransactionOccurrence(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        amount=row["amount"],
        date=row["date"],
        month=row["month"],
        year=row["year"],
        status=row["status"],
        description=row["description"] or "",
        category_id=row["category_id"],
        account_id=row["account_id"],
        to_account_id=row["to_account_id"],
        credit_card_id=row["credit_card_id"],
        recurrence=row["recurrence"],
        recurrence_mode=row["recurrence_mode"],
        series_id=row["series_id"],
        installment_current=row["installment_current"],
        installment_total=row["installment_total"],
        anticipated_from=anticipated,
        anticipation_discount=row["anticipation_discount"],
        related_transaction_id=row["related_transaction_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_pattern(row: Mapping[str, Any]) -> SuggestionPattern:
    return SuggestionPattern(
        normalized_description=row["normalized_description"],
        category_id=row["category_id"],
        count=row["count"] or 0,
        account_id=row["account_id"],
        credit_card_id=row["credit_card_id"],
        payment_method=row["payment_method"],
        last_used_at=row["last_used_at"],
    )


class SqlTransactionStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create(self, record: TransactionOccurrence) -> int:
        values = _occurrence_values(
            {field.name: getattr(record, field.name) for field in fields(record)}
        )
        async with _begin(self._engine, "create transaction") as conn:
            result = await conn.execute(insert(transactions).values(**values))
            return result.inserted_primary_key[0]

    async def get(self, transaction_id: int) -> Optional[TransactionOccurrence]:
        async with _begin(self._engine, "read transaction") as conn:
            result = await conn.execute(select(transactions).where(transactions.c.id == transaction_id))
            row = result.mappings().first()
        return _row_to_occurrence(row) if row else None

    async def update(self, transaction_id: int, changes: Mapping[str, Any]) -> bool:
        check_changes(changes)
        values = _occurrence_values(changes)
        if not values:
            return await self.get(transaction_id) is not None
        async with _begin(self._engine, "update transaction") as conn:
            result = await conn.execute(
                update(transactions).where(transactions.c.id == transaction_id).values(**values)
            )
            return result.rowcount > 0

    async def delete(self, transaction_id: int) -> bool:
        async with _begin(self._engine, "delete transaction") as conn:
            result = await conn.execute(transactions.delete().where(transactions.c.id == transaction_id))
            return result.rowcount > 0

    async def query_by_series(self, user_id: int, series_id: str) -> list[TransactionOccurrence]:
        stmt = (
            select(transactions)
            .where(and_(transactions.c.user_id == user_id, transactions.c.series_id == series_id))
            .order_by(transactions.c.date, transactions.c.id)
        )
        async with _begin(self._engine, "query series") as conn:
            result = await conn.execute(stmt)
            rows = result.mappings().all()
        return [_row_to_occurrence(row) for row in rows]

    async def count_by_category(self, user_id: int, category_id: int) -> int:
        stmt = select(func.count()).select_from(transactions).where(
            and_(transactions.c.user_id == user_id, transactions.c.category_id == category_id)
        )
        async with _begin(self._engine, "count category transactions") as conn:
            result = await conn.execute(stmt)
            return int(result.scalar_one())


class SqlPatternStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_exact(self, user_id: int, key: str) -> Optional[SuggestionPattern]:
        async with _begin(self._engine, "read suggestion pattern") as conn:
            row = await self._select_one(conn, user_id, key)
        return _row_to_pattern(row) if row else None

    async def range_query(
        self, user_id: int, start: str, end: str, limit: int
    ) -> list[SuggestionPattern]:
        column = suggestion_patterns.c.normalized_description
        stmt = (
            select(suggestion_patterns)
            .where(and_(suggestion_patterns.c.user_id == user_id, column >= start, column < end))
            .order_by(column)
            .limit(limit)
        )
        async with _begin(self._engine, "query suggestion patterns") as conn:
            result = await conn.execute(stmt)
            rows = result.mappings().all()
        return [_row_to_pattern(row) for row in rows]

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
        async with _begin(self._engine, "upsert suggestion pattern") as conn:
            insert_fn = pg_insert if conn.dialect.name == "postgresql" else sqlite_insert
            stmt = insert_fn(suggestion_patterns).values(
                user_id=user_id,
                normalized_description=key,
                category_id=category_id,
                account_id=account_id,
                credit_card_id=credit_card_id,
                payment_method=payment_method,
                count=1,
                last_used_at=used_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "normalized_description"],
                set_={
                    "category_id": stmt.excluded.category_id,
                    "account_id": stmt.excluded.account_id,
                    "credit_card_id": stmt.excluded.credit_card_id,
                    "payment_method": stmt.excluded.payment_method,
                    "count": suggestion_patterns.c.count + 1,
                    "last_used_at": stmt.excluded.last_used_at,
                },
            )
            await conn.execute(stmt)
            row = await self._select_one(conn, user_id, key)
        return _row_to_pattern(row)

    async def _select_one(self, conn: AsyncConnection, user_id: int, key: str):
        result = await conn.execute(
            select(suggestion_patterns).where(
                and_(
                    suggestion_patterns.c.user_id == user_id,
                    suggestion_patterns.c.normalized_description == key,
                )
            )
        )
        return result.mappings().first()
