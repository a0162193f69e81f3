from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from finance_core.date_math import add_months, as_date, shift_cycle
from finance_core.logging_setup import get_logger
from finance_core.recurrence import validate_draft
from finance_core.records import (
    ANTICIPATION_DISCOUNT_PREFIX,
    STATUS_COMPLETED,
    AnticipatedFrom,
    TransactionDraft,
    TransactionOccurrence,
    coerce_amount,
    status_for,
    utc_now,
)
from finance_core.stores import StoreError, TransactionStore

_logger = get_logger("finance_core.series_mutator")


@dataclass(frozen=True)
class SeriesMoveResult:
    success: bool
    updated: int = 0
    total: int = 0


@dataclass(frozen=True)
class AnticipationResult:
    success: bool
    discount_transaction_id: Optional[int] = None


async def move_series_month(
    store: TransactionStore,
    user_id: int,
    series_id: str,
    months_to_move: int,
    now: datetime | None = None,
) -> SeriesMoveResult:
    """Shift every occurrence of a series by ``months_to_move`` calendar months.

    Not transactional: a failure part-way leaves the earlier records moved and
    reports ``success=False`` so the caller can retry. Re-running a move that
    already applied shifts the series again.
    """
    if months_to_move == 0:
        raise ValueError("months_to_move must be non-zero.")
    stamp = now or utc_now()
    try:
        occurrences = await store.query_by_series(user_id, series_id)
    except StoreError as exc:
        _logger.warning("series:move_read_failed series_id=%s error=%s", series_id, exc)
        return SeriesMoveResult(success=False)
    if not occurrences:
        return SeriesMoveResult(success=False)

    updated = 0
    for occurrence in occurrences:
        period = shift_cycle(occurrence.month, occurrence.year, months_to_move)
        changes = {
            "date": add_months(occurrence.date, months_to_move),
            "month": period.month,
            "year": period.year,
            "updated_at": stamp,
        }
        try:
            applied = await store.update(occurrence.id, changes)
        except StoreError as exc:
            _logger.warning(
                "series:move_failed series_id=%s transaction_id=%s error=%s",
                series_id,
                occurrence.id,
                exc,
            )
            return SeriesMoveResult(success=False, updated=updated, total=len(occurrences))
        if not applied:
            _logger.warning(
                "series:move_missing series_id=%s transaction_id=%s", series_id, occurrence.id
            )
            return SeriesMoveResult(success=False, updated=updated, total=len(occurrences))
        updated += 1

    return SeriesMoveResult(success=True, updated=updated, total=len(occurrences))


async def anticipate_installment(
    store: TransactionStore,
    transaction_id: int,
    target_month: int,
    target_year: int,
    discount: Decimal | None = None,
    now: datetime | None = None,
) -> AnticipationResult:
    """Pull one occurrence into the ``(target_month, target_year)`` statement.

    The original statement period is kept in ``anticipated_from``. A positive
    ``discount`` is recorded on the occurrence and as a separate income entry
    linked through ``related_transaction_id``. That second write is
    best-effort: if it fails the anticipation still stands.
    """
    if not 1 <= target_month <= 12:
        raise ValueError("target_month must be between 1 and 12.")
    discount_amount = coerce_amount(discount) if discount is not None else Decimal("0")
    if discount_amount < 0:
        raise ValueError("discount must not be negative.")
    stamp = now or utc_now()

    try:
        occurrence = await store.get(transaction_id)
    except StoreError as exc:
        _logger.warning("anticipate:read_failed transaction_id=%s error=%s", transaction_id, exc)
        return AnticipationResult(success=False)
    if occurrence is None:
        return AnticipationResult(success=False)

    changes = {
        "month": target_month,
        "year": target_year,
        "anticipated_from": AnticipatedFrom(
            month=occurrence.month, year=occurrence.year, captured_at=stamp
        ),
        "updated_at": stamp,
    }
    if discount_amount > 0:
        changes["anticipation_discount"] = discount_amount
    try:
        applied = await store.update(transaction_id, changes)
    except StoreError as exc:
        _logger.warning("anticipate:update_failed transaction_id=%s error=%s", transaction_id, exc)
        return AnticipationResult(success=False)
    if not applied:
        return AnticipationResult(success=False)

    if discount_amount <= 0:
        return AnticipationResult(success=True)

    discount_record = TransactionOccurrence(
        user_id=occurrence.user_id,
        type="income",
        amount=discount_amount,
        date=stamp.date(),
        month=target_month,
        year=target_year,
        status=STATUS_COMPLETED,
        description=f"{ANTICIPATION_DISCOUNT_PREFIX}{occurrence.description}",
        category_id=occurrence.category_id,
        account_id=occurrence.account_id,
        credit_card_id=occurrence.credit_card_id,
        related_transaction_id=transaction_id,
        created_at=stamp,
        updated_at=stamp,
    )
    try:
        discount_id = await store.create(discount_record)
    except StoreError as exc:
        _logger.warning(
            "anticipate:discount_failed transaction_id=%s discount=%s error=%s",
            transaction_id,
            discount_amount,
            exc,
        )
        return AnticipationResult(success=True)
    return AnticipationResult(success=True, discount_transaction_id=discount_id)


async def edit_occurrence(
    store: TransactionStore,
    transaction_id: int,
    draft: TransactionDraft,
    today: date | None = None,
    now: datetime | None = None,
) -> bool:
    """Rewrite a single occurrence from ``draft``; series fields are left alone."""
    validate_draft(draft)
    reference = as_date(today or date.today())
    occurrence_date = as_date(draft.date)
    transaction_type = draft.type.strip().lower()
    changes = {
        "type": transaction_type,
        "amount": coerce_amount(draft.amount),
        "date": occurrence_date,
        "month": occurrence_date.month,
        "year": occurrence_date.year,
        "status": status_for(occurrence_date, reference),
        "description": draft.description.strip(),
        "category_id": draft.category_id if transaction_type != "transfer" else None,
        "account_id": draft.account_id,
        "to_account_id": draft.to_account_id if transaction_type == "transfer" else None,
        "credit_card_id": draft.credit_card_id,
        "updated_at": now or utc_now(),
    }
    return await store.update(transaction_id, changes)


async def delete_occurrence(store: TransactionStore, transaction_id: int) -> bool:
    return await store.delete(transaction_id)


async def delete_series(
    store: TransactionStore,
    user_id: int,
    series_id: str,
    from_installment: int | None = None,
) -> int:
    """Delete a series, or its tail starting at ``from_installment``.

    Per-record failures are logged and skipped; returns how many were deleted.
    """
    occurrences = await store.query_by_series(user_id, series_id)
    deleted = 0
    for occurrence in occurrences:
        if from_installment is not None and (occurrence.installment_current or 0) < from_installment:
            continue
        try:
            removed = await store.delete(occurrence.id)
        except StoreError as exc:
            _logger.warning(
                "series:delete_failed series_id=%s transaction_id=%s error=%s",
                series_id,
                occurrence.id,
                exc,
            )
            continue
        if removed:
            deleted += 1
    return deleted
