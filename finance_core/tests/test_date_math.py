import unittest
from datetime import date, datetime

from finance_core.date_math import (
    BillingCycle,
    add_months,
    advance,
    resolve_billing_cycle,
    shift_cycle,
)


class AdvanceTests(unittest.TestCase):
    def test_step_zero_returns_base_date(self) -> None:
        base = date(2025, 1, 31)
        for kind in ("weekly", "biweekly", "monthly", "yearly", "none"):
            self.assertEqual(advance(base, kind, 0), base)

    def test_weekly_and_biweekly_add_days(self) -> None:
        base = date(2025, 1, 15)

        self.assertEqual(advance(base, "weekly", 2), date(2025, 1, 29))
        self.assertEqual(advance(base, "biweekly", 2), date(2025, 2, 12))
        self.assertEqual(advance(base, "bi-weekly", 1), date(2025, 1, 29))

    def test_monthly_rolls_past_short_months(self) -> None:
        base = date(2025, 1, 31)

        self.assertEqual(advance(base, "monthly", 1), date(2025, 3, 3))
        self.assertEqual(advance(base, "monthly", 2), date(2025, 3, 31))
        self.assertEqual(advance(base, "monthly", 3), date(2025, 5, 1))
        self.assertEqual(advance(date(2024, 1, 31), "monthly", 1), date(2024, 3, 2))

    def test_monthly_crosses_year_in_both_directions(self) -> None:
        self.assertEqual(advance(date(2025, 11, 15), "monthly", 3), date(2026, 2, 15))
        self.assertEqual(advance(date(2025, 1, 15), "monthly", -1), date(2024, 12, 15))

    def test_yearly_rolls_leap_day_into_march(self) -> None:
        self.assertEqual(advance(date(2024, 2, 29), "yearly", 1), date(2025, 3, 1))
        self.assertEqual(advance(date(2024, 2, 29), "yearly", 4), date(2028, 2, 29))

    def test_datetime_input_is_reduced_to_date(self) -> None:
        self.assertEqual(
            advance(datetime(2025, 1, 15, 12, 30), "weekly", 1),
            date(2025, 1, 22),
        )

    def test_unknown_interval_raises(self) -> None:
        with self.assertRaises(ValueError):
            advance(date(2025, 1, 1), "daily", 1)


class MonthHelpersTests(unittest.TestCase):
    def test_add_months_keeps_day_when_it_fits(self) -> None:
        self.assertEqual(add_months(date(2025, 3, 15), 1), date(2025, 4, 15))

    def test_add_months_clamps_to_month_end(self) -> None:
        self.assertEqual(add_months(date(2025, 1, 31), 1), date(2025, 2, 28))
        self.assertEqual(add_months(date(2024, 2, 29), 12), date(2025, 2, 28))

    def test_shift_cycle_wraps_years(self) -> None:
        self.assertEqual(shift_cycle(12, 2025, 1), BillingCycle(year=2026, month=1))
        self.assertEqual(shift_cycle(1, 2025, -1), BillingCycle(year=2024, month=12))
        self.assertEqual(shift_cycle(6, 2025, 0), BillingCycle(year=2025, month=6))


class ResolveBillingCycleTests(unittest.TestCase):
    def test_after_closing_day_moves_to_next_month(self) -> None:
        self.assertEqual(
            resolve_billing_cycle(date(2025, 3, 15), 10),
            BillingCycle(year=2025, month=4),
        )

    def test_on_or_before_closing_day_stays_in_current_month(self) -> None:
        self.assertEqual(
            resolve_billing_cycle(date(2025, 3, 10), 10),
            BillingCycle(year=2025, month=3),
        )
        self.assertEqual(
            resolve_billing_cycle(date(2025, 3, 2), 10),
            BillingCycle(year=2025, month=3),
        )

    def test_december_rolls_into_january(self) -> None:
        self.assertEqual(
            resolve_billing_cycle(date(2025, 12, 20), 5),
            BillingCycle(year=2026, month=1),
        )

    def test_cycles_order_by_year_then_month(self) -> None:
        self.assertLess(BillingCycle(year=2025, month=12), BillingCycle(year=2026, month=1))

    def test_invalid_closing_day_raises(self) -> None:
        with self.assertRaises(ValueError):
            resolve_billing_cycle(date(2025, 3, 15), 0)
        with self.assertRaises(ValueError):
            resolve_billing_cycle(date(2025, 3, 15), 32)


if __name__ == "__main__":
    unittest.main()
