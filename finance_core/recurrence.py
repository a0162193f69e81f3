from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional

from finance_core.date_math import advance, as_date, normalize_interval
from finance_core.logging_setup import get_logger
from finance_core.records import (
    RecurrenceMode,
    TransactionDraft,
    TransactionOccurrence,
    TransactionType,
    coerce_amount,
    status_for,
    utc_now,
)
from finance_core.stores import TransactionStore

CENT = Decimal("0.01")

ProgressCallback = Callable[[int, int], None]

_logger = get_logger("finance_core.recurrence")


@dataclass(frozen=True)
class OccurrenceFailure:
    index: int
    error: str


@dataclass(frozen=True)
class GenerationResult:
    requested: int
    series_id: Optional[str] = None
    created_ids: List[int] = field(default_factory=list)
    failures: List[OccurrenceFailure] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created_ids)

    @property
    def complete(self) -> bool:
        return self.created_count == self.requested


def validate_draft(draft: TransactionDraft) -> TransactionDraft:
    transaction_type = TransactionType.validate(draft.type)
    amount = coerce_amount(draft.amount)
    if amount <= 0:
        raise ValueError("Amount must be greater than zero.")
    if draft.recurrence.occurrences < 1:
        raise ValueError("Occurrences must be at least 1.")
    normalize_interval(draft.recurrence.kind)
    RecurrenceMode.validate(draft.recurrence.mode)

    if transaction_type != "transfer" and draft.category_id is None:
        raise ValueError("Category required for expenses and income.")
    if draft.account_id is None and draft.credit_card_id is None:
        raise ValueError("An account or a credit card is required.")
    if draft.credit_card_id is not None and transaction_type != "expense":
        raise ValueError("Only expenses can be charged to a credit card.")
    if transaction_type == "transfer":
        if draft.account_id is None or draft.to_account_id is None:
            raise ValueError("Transfers require a source and a destination account.")
        if draft.account_id == draft.to_account_id:
            raise ValueError("Transfer source and destination must differ.")
    return draft


def new_series_id() -> str:
    return f"series_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def split_amount(total: Decimal, count: int) -> List[Decimal]:
    """Split ``total`` into ``count`` cent amounts; the last one absorbs rounding."""
    if count < 1:
        raise ValueError("count must be at least 1.")
    share = (total / count).quantize(CENT, rounding=ROUND_HALF_UP)
    return [share] * (count - 1) + [total - share * (count - 1)]


def build_occurrences(
    user_id: int,
    draft: TransactionDraft,
    today: date | None = None,
    series_id: str | None = None,
    now: datetime | None = None,
) -> List[TransactionOccurrence]:
    """Expand a validated draft into its dated, unsaved occurrences."""
    reference = as_date(today or date.today())
    stamp = now or utc_now()
    spec = draft.recurrence
    kind = normalize_interval(spec.kind)
    mode = RecurrenceMode.validate(spec.mode)
    count = spec.effective_occurrences
    total = coerce_amount(draft.amount)
    transaction_type = TransactionType.validate(draft.type)

    if count > 1:
        series_id = series_id or new_series_id()
        if mode == "installment":
            amounts = split_amount(total, count)
        else:
            amounts = [total] * count
    else:
        series_id = None
        amounts = [total]

    occurrences: List[TransactionOccurrence] = []
    for index, amount in enumerate(amounts):
        occurrence_date = advance(draft.date, kind, index)
        occurrences.append(
            TransactionOccurrence(
                user_id=user_id,
                type=transaction_type,
                amount=amount,
                date=occurrence_date,
                month=occurrence_date.month,
                year=occurrence_date.year,
                status=status_for(occurrence_date, reference),
                description=draft.description.strip(),
                category_id=draft.category_id if transaction_type != "transfer" else None,
                account_id=draft.account_id,
                to_account_id=draft.to_account_id if transaction_type == "transfer" else None,
                credit_card_id=draft.credit_card_id,
                recurrence=kind,
                recurrence_mode=mode if count > 1 else None,
                series_id=series_id,
                installment_current=index + 1 if count > 1 else None,
                installment_total=count if count > 1 else None,
                created_at=stamp,
                updated_at=stamp,
            )
        )
    return occurrences


async def generate_series(
    store: TransactionStore,
    user_id: int,
    draft: TransactionDraft,
    today: date | None = None,
    on_progress: ProgressCallback | None = None,
) -> GenerationResult:
    """Validate ``draft`` and persist each of its occurrences.

    Occurrences are written one at a time. A failed write, whatever the store
    raised, is logged and the loop moves on, so the result may report fewer
    created records than requested.
    """
    validate_draft(draft)
    occurrences = build_occurrences(user_id, draft, today=today)
    total = len(occurrences)
    result = GenerationResult(requested=total, series_id=occurrences[0].series_id)

    for index, occurrence in enumerate(occurrences):
        if on_progress is not None and total > 1:
            on_progress(index + 1, total)
        try:
            created_id = await store.create(occurrence)
        except Exception as exc:
            _logger.warning(
                "series:create_failed series_id=%s installment=%d/%d error=%s",
                occurrence.series_id,
                index + 1,
                total,
                exc,
            )
            result.failures.append(OccurrenceFailure(index=index, error=str(exc)))
            continue
        result.created_ids.append(created_id)

    if not result.complete:
        _logger.warning(
            "series:partial series_id=%s created=%d requested=%d",
            result.series_id,
            result.created_count,
            result.requested,
        )
    return result
