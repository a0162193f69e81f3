import asyncio
import unittest
from datetime import date, datetime
from decimal import Decimal

from finance_core.records import RecurrenceSpec, SuggestionPattern, TransactionDraft
from finance_core.stores import InMemoryPatternStore, StoreError
from finance_core.suggestions import (
    SuggestionStore,
    normalize_description,
    remember_draft,
)

NOW = datetime(2025, 3, 15, 9, 30)


class BrokenPatternStore(InMemoryPatternStore):
    async def get_exact(self, user_id, key):
        raise StoreError("read rejected")

    async def upsert_merge(self, user_id, key, **kwargs):
        raise StoreError("write rejected")


class PausingPatternStore(InMemoryPatternStore):
    """Holds prefix reads until released, after their rows have been read."""

    def __init__(self) -> None:
        super().__init__()
        self.reading = asyncio.Event()
        self.release = asyncio.Event()

    async def range_query(self, user_id, start, end, limit):
        rows = await super().range_query(user_id, start, end, limit)
        self.reading.set()
        await self.release.wait()
        return rows


class NormalizeDescriptionTests(unittest.TestCase):
    def test_collapses_case_punctuation_and_spaces(self) -> None:
        self.assertEqual(normalize_description("Mercado  Pago!!"), "mercado pago")
        self.assertEqual(normalize_description("  UBER*TRIP  "), "uber trip")

    def test_strips_accents(self) -> None:
        self.assertEqual(normalize_description("Café Açaí"), "cafe acai")
        self.assertEqual(normalize_description("Padaria São João"), "padaria sao joao")

    def test_is_idempotent(self) -> None:
        for value in ("Mercado  Pago!!", "Café Açaí", "x-y_z 123"):
            once = normalize_description(value)
            self.assertEqual(normalize_description(once), once)

    def test_empty_input(self) -> None:
        self.assertEqual(normalize_description(""), "")
        self.assertEqual(normalize_description(None), "")
        self.assertEqual(normalize_description("   "), "")
        self.assertEqual(normalize_description("!!!"), "")


class LearnAndLookupTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.patterns = InMemoryPatternStore()
        self.suggestions = SuggestionStore(self.patterns)

    async def test_lookup_after_learn_reads_from_cache(self) -> None:
        learned = await self.suggestions.learn(
            1, "Mercado Pago", 7, account_id=2, payment_method="account", now=NOW
        )

        suggestion = await self.suggestions.lookup(1, "mercado pago")

        self.assertTrue(learned)
        self.assertEqual(self.patterns.reads, 0)
        self.assertEqual(suggestion.category_id, 7)
        self.assertEqual(suggestion.count, 1)
        self.assertEqual(suggestion.account_id, 2)
        self.assertEqual(suggestion.payment_method, "account")

    async def test_repeated_learn_increments_count_and_keeps_latest_fields(self) -> None:
        await self.suggestions.learn(1, "Mercado Pago", 7, account_id=2, payment_method="account", now=NOW)
        await self.suggestions.learn(1, "mercado pago!", 8, credit_card_id=3, payment_method="creditCard", now=NOW)

        suggestion = await self.suggestions.lookup(1, "mercado pago")

        self.assertEqual(suggestion.count, 2)
        self.assertEqual(suggestion.category_id, 8)
        self.assertIsNone(suggestion.account_id)
        self.assertEqual(suggestion.credit_card_id, 3)

    async def test_cached_miss_is_replaced_by_learn(self) -> None:
        self.assertIsNone(await self.suggestions.lookup(1, "padaria"))
        reads = self.patterns.reads

        await self.suggestions.learn(1, "Padaria", 5, account_id=2, now=NOW)
        suggestion = await self.suggestions.lookup(1, "padaria")

        self.assertEqual(suggestion.category_id, 5)
        self.assertEqual(self.patterns.reads, reads)

    async def test_cached_miss_is_not_read_again(self) -> None:
        await self.suggestions.lookup(1, "padaria")
        reads = self.patterns.reads

        await self.suggestions.lookup(1, "padaria")

        self.assertEqual(self.patterns.reads, reads)

    async def test_prefix_lookup_picks_highest_count(self) -> None:
        self.patterns.patterns[(1, "mercado livre")] = SuggestionPattern("mercado livre", 4, count=2)
        self.patterns.patterns[(1, "mercado pago")] = SuggestionPattern("mercado pago", 7, count=5)
        self.patterns.patterns[(1, "mercearia")] = SuggestionPattern("mercearia", 9, count=50)
        self.patterns.patterns[(2, "mercado extra")] = SuggestionPattern("mercado extra", 6, count=99)

        suggestion = await self.suggestions.lookup(1, "mercado")

        self.assertEqual(suggestion.category_id, 7)
        self.assertEqual(suggestion.normalized_description, "mercado pago")

    async def test_prefix_ties_keep_first_key(self) -> None:
        self.patterns.patterns[(1, "uber eats")] = SuggestionPattern("uber eats", 3, count=2)
        self.patterns.patterns[(1, "uber trip")] = SuggestionPattern("uber trip", 4, count=2)

        suggestion = await self.suggestions.lookup(1, "uber")

        self.assertEqual(suggestion.category_id, 3)

    async def test_prefix_page_is_bounded(self) -> None:
        suggestions = SuggestionStore(self.patterns, prefix_limit=2)
        self.patterns.patterns[(1, "loja a")] = SuggestionPattern("loja a", 1, count=1)
        self.patterns.patterns[(1, "loja b")] = SuggestionPattern("loja b", 2, count=1)
        self.patterns.patterns[(1, "loja c")] = SuggestionPattern("loja c", 3, count=10)

        suggestion = await suggestions.lookup(1, "loja")

        self.assertEqual(suggestion.category_id, 1)

    async def test_patterns_below_one_use_are_ignored(self) -> None:
        self.patterns.patterns[(1, "farmacia")] = SuggestionPattern("farmacia", 7, count=0)
        self.patterns.patterns[(1, "farmacia popular")] = SuggestionPattern("farmacia popular", 8, count=0)

        self.assertIsNone(await self.suggestions.lookup(1, "farmacia"))
        self.assertIsNone(await self.suggestions.lookup(1, "farm"))

    async def test_short_keys_are_neither_learned_nor_looked_up(self) -> None:
        self.assertFalse(await self.suggestions.learn(1, "Ab", 7, now=NOW))
        self.assertFalse(await self.suggestions.learn(1, "!!!", 7, now=NOW))
        self.assertIsNone(await self.suggestions.lookup(1, "ab"))
        self.assertEqual(self.patterns.patterns, {})
        self.assertEqual(self.patterns.reads, 0)

    async def test_learn_requires_category(self) -> None:
        self.assertFalse(await self.suggestions.learn(1, "Mercado Pago", None, now=NOW))
        self.assertEqual(self.patterns.patterns, {})

    async def test_learn_rejects_unknown_payment_method(self) -> None:
        with self.assertRaises(ValueError):
            await self.suggestions.learn(1, "Mercado Pago", 7, payment_method="cash", now=NOW)

    async def test_users_do_not_share_patterns(self) -> None:
        await self.suggestions.learn(1, "Mercado Pago", 7, now=NOW)

        self.assertIsNone(await self.suggestions.lookup(2, "mercado pago"))

    async def test_cache_evicts_least_recently_used(self) -> None:
        suggestions = SuggestionStore(self.patterns, cache_size=2)
        await suggestions.learn(1, "aaa", 1, now=NOW)
        await suggestions.learn(1, "bbb", 2, now=NOW)
        await suggestions.lookup(1, "aaa")
        await suggestions.learn(1, "ccc", 3, now=NOW)

        await suggestions.lookup(1, "aaa")
        self.assertEqual(self.patterns.reads, 0)
        await suggestions.lookup(1, "bbb")
        self.assertEqual(self.patterns.reads, 1)

    async def test_lookup_description_normalizes_input(self) -> None:
        await self.suggestions.learn(1, "Mercado Pago", 7, now=NOW)

        suggestion = await self.suggestions.lookup_description(1, "  MERCADO pago!! ")

        self.assertEqual(suggestion.category_id, 7)


class ConcurrentLearnTests(unittest.IsolatedAsyncioTestCase):
    async def test_learn_during_lookup_is_not_masked_by_stale_miss(self) -> None:
        patterns = PausingPatternStore()
        suggestions = SuggestionStore(patterns)

        pending = asyncio.create_task(suggestions.lookup(1, "mercado pago"))
        await patterns.reading.wait()
        await suggestions.learn(1, "Mercado Pago", 7, now=NOW)
        patterns.release.set()
        in_flight = await pending

        later = await suggestions.lookup(1, "mercado pago")

        self.assertEqual(in_flight.category_id, 7)
        self.assertIsNotNone(later)
        self.assertEqual(later.category_id, 7)
        self.assertEqual(later.count, 1)


class StoreFailureTests(unittest.IsolatedAsyncioTestCase):
    async def test_failures_are_logged_not_raised(self) -> None:
        suggestions = SuggestionStore(BrokenPatternStore())

        with self.assertLogs("finance_core.suggestions", level="WARNING"):
            self.assertFalse(await suggestions.learn(1, "Mercado Pago", 7, now=NOW))
        with self.assertLogs("finance_core.suggestions", level="WARNING"):
            self.assertIsNone(await suggestions.lookup(1, "mercado pago"))


class RememberDraftTests(unittest.IsolatedAsyncioTestCase):
    def draft(self, **overrides) -> TransactionDraft:
        values = dict(
            type="expense",
            amount=Decimal("50"),
            date=date(2025, 3, 15),
            description="Mercado Pago",
            category_id=7,
            credit_card_id=3,
            recurrence=RecurrenceSpec(),
        )
        values.update(overrides)
        return TransactionDraft(**values)

    async def test_learns_card_payment_method(self) -> None:
        patterns = InMemoryPatternStore()
        suggestions = SuggestionStore(patterns)

        await remember_draft(suggestions, 1, self.draft())

        pattern = patterns.patterns[(1, "mercado pago")]
        self.assertEqual(pattern.payment_method, "creditCard")
        self.assertEqual(pattern.credit_card_id, 3)

    async def test_skips_transfers(self) -> None:
        patterns = InMemoryPatternStore()

        await remember_draft(
            SuggestionStore(patterns),
            1,
            self.draft(type="transfer", category_id=None, credit_card_id=None, account_id=1, to_account_id=2),
        )

        self.assertEqual(patterns.patterns, {})

    async def test_never_raises(self) -> None:
        class ExplodingSuggestions(SuggestionStore):
            async def learn(self, *args, **kwargs):
                raise RuntimeError("boom")

        with self.assertLogs("finance_core.suggestions", level="ERROR"):
            await remember_draft(ExplodingSuggestions(InMemoryPatternStore()), 1, self.draft())


if __name__ == "__main__":
    unittest.main()
