"""Credit-card statement classification for persisted occurrences.

Nothing here is stored: whether an occurrence is scheduled, current or
anticipated is recomputed from its date, statement period, status and
``anticipated_from`` every time it is asked, so the answer cannot drift from
the persisted fields.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from finance_core.date_math import BillingCycle, as_date, resolve_billing_cycle
from finance_core.records import STATUS_PENDING, Card, TransactionOccurrence

STATE_SCHEDULED = "scheduled"
STATE_CURRENT = "current"
STATE_ANTICIPATED = "anticipated"


def anticipation_target(card: Card, today: date | None = None) -> BillingCycle:
    """Return the next statement that an installment can be pulled into."""
    return resolve_billing_cycle(as_date(today or date.today()), card.closing_day)


def is_future_installment(
    occurrence: TransactionOccurrence,
    card: Optional[Card],
    today: date | None = None,
) -> bool:
    """True when ``occurrence`` sits in a statement after the next open one.

    Occurrences without a card, or already anticipated, are never future.
    """
    if card is None or occurrence.credit_card_id is None or occurrence.anticipated_from is not None:
        return False
    if occurrence.credit_card_id != card.id:
        return False
    current = as_date(today or date.today())
    period = BillingCycle(
        year=occurrence.year or current.year,
        month=occurrence.month or current.month,
    )
    return period > resolve_billing_cycle(current, card.closing_day)


def classify_occurrence(
    occurrence: TransactionOccurrence,
    card: Optional[Card],
    today: date | None = None,
) -> str:
    current = as_date(today or date.today())
    if occurrence.anticipated_from is not None:
        return STATE_ANTICIPATED
    if occurrence.status != STATUS_PENDING:
        return STATE_CURRENT
    if occurrence.credit_card_id is not None:
        if is_future_installment(occurrence, card, current):
            return STATE_SCHEDULED
        return STATE_CURRENT
    return STATE_SCHEDULED if occurrence.date > current else STATE_CURRENT
