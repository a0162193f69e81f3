from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta

WEEKLY_DAYS = 7
BIWEEKLY_DAYS = 14
SUPPORTED_INTERVALS = {"none", "weekly", "biweekly", "monthly", "yearly"}


@dataclass(frozen=True, order=True)
class BillingCycle:
    year: int
    month: int


def as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def advance(base_date: date, interval_kind: str, step_count: int) -> date:
    base = as_date(base_date)
    if step_count == 0:
        return base
    kind = normalize_interval(interval_kind)
    if kind == "weekly":
        return base + timedelta(days=WEEKLY_DAYS * step_count)
    if kind == "biweekly":
        return base + timedelta(days=BIWEEKLY_DAYS * step_count)
    if kind == "monthly":
        return roll_months(base, step_count)
    if kind == "yearly":
        return roll_months(base, 12 * step_count)
    return base


def roll_months(value: date, months: int) -> date:
    """Shift ``value`` by whole calendar months.

    A day past the end of the target month rolls over into the next one, so
    Jan 31 + 1 month is Mar 3 (Mar 2 in leap years) and Feb 29 + 1 year is Mar 1.
    """
    total_month = value.month - 1 + months
    first = date(value.year + total_month // 12, total_month % 12 + 1, 1)
    return first + timedelta(days=value.day - 1)


def add_months(value: date, months: int) -> date:
    """Shift ``value`` by whole calendar months, clamping to the month end."""
    total_month = value.month - 1 + months
    year = value.year + total_month // 12
    month = total_month % 12 + 1
    return date(year, month, clamp_day(year, month, value.day))


def clamp_day(year: int, month: int, day: int) -> int:
    return min(day, monthrange(year, month)[1])


def shift_cycle(month: int, year: int, months: int) -> BillingCycle:
    total_month = month - 1 + months
    return BillingCycle(year=year + total_month // 12, month=total_month % 12 + 1)


def resolve_billing_cycle(today: date, closing_day: int) -> BillingCycle:
    """Return the next statement a purchase made on ``today`` can land in.

    Purchases after the closing day fall into the following month's bill.
    """
    if not 1 <= closing_day <= 31:
        raise ValueError("closing_day must be between 1 and 31.")
    current = as_date(today)
    if current.day > closing_day:
        return shift_cycle(current.month, current.year, 1)
    return BillingCycle(year=current.year, month=current.month)


def normalize_interval(value: str) -> str:
    normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
    if normalized == "byweekly":
        normalized = "biweekly"
    if normalized not in SUPPORTED_INTERVALS:
        raise ValueError("Only none, weekly, biweekly, monthly, or yearly recurrences are supported.")
    return normalized
