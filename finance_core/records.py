from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from finance_core.date_math import normalize_interval

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"

ANTICIPATION_DISCOUNT_PREFIX = "Desconto antecipação - "


class TransactionType:
    values = {"expense", "income", "transfer"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class RecurrenceMode:
    values = {"installment", "fixed"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid recurrence mode.")
        return normalized


class PaymentMethod:
    values = {"account", "creditCard"}

    @classmethod
    def validate(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if value not in cls.values:
            raise ValueError("Invalid payment method.")
        return value


@dataclass(frozen=True)
class RecurrenceSpec:
    kind: str = "none"
    mode: str = "fixed"
    occurrences: int = 1

    @property
    def effective_occurrences(self) -> int:
        if normalize_interval(self.kind) == "none":
            return 1
        return self.occurrences


@dataclass(frozen=True)
class TransactionDraft:
    type: str
    amount: Decimal
    date: date
    description: str = ""
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    recurrence: RecurrenceSpec = RecurrenceSpec()

    @property
    def payment_method(self) -> str:
        return "creditCard" if self.credit_card_id is not None else "account"


@dataclass(frozen=True)
class Card:
    id: int
    closing_day: int


@dataclass(frozen=True)
class Account:
    id: int


@dataclass(frozen=True)
class AnticipatedFrom:
    month: int
    year: int
    captured_at: datetime


@dataclass(frozen=True)
class TransactionOccurrence:
    user_id: int
    type: str
    amount: Decimal
    date: date
    month: int
    year: int
    status: str
    description: str = ""
    id: Optional[int] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    recurrence: str = "none"
    recurrence_mode: Optional[str] = None
    series_id: Optional[str] = None
    installment_current: Optional[int] = None
    installment_total: Optional[int] = None
    anticipated_from: Optional[AnticipatedFrom] = None
    anticipation_discount: Optional[Decimal] = None
    related_transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SuggestionPattern:
    normalized_description: str
    category_id: Optional[int]
    count: int = 0
    account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    payment_method: Optional[str] = None
    last_used_at: Optional[datetime] = None


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form the stores persist."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def status_for(occurrence_date: date, today: date) -> str:
    """Pending when the occurrence is strictly after today, else completed."""
    return STATUS_PENDING if occurrence_date > today else STATUS_COMPLETED


def is_anticipation_discount(occurrence: TransactionOccurrence) -> bool:
    return occurrence.related_transaction_id is not None or occurrence.description.startswith(
        ANTICIPATION_DISCOUNT_PREFIX
    )


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
