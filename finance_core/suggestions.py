"""Description-driven category and payment-method suggestions.

Learns from the user's saved transactions without any model: every save
bumps a usage counter on a pattern keyed by the normalized description, and
lookups return the pattern with the strongest signal.

Lookup order for a normalized description:
1. In-process cache, including cached "no match" results.
2. Exact key in the pattern store.
3. Prefix range over the user's keys (``"merc"`` finds ``"mercado pago"``),
   picking the highest count among a bounded, key-ordered page.

Patterns with a count below 1 are ignored everywhere. ``learn`` writes
through to the cache so a lookup straight after it sees the new count. A
lookup that was already reading the store when a learn finished does not
cache its result.
"""

from __future__ import annotations

import re
import unicodedata
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from finance_core.logging_setup import get_logger
from finance_core.records import PaymentMethod, SuggestionPattern, TransactionDraft, utc_now
from finance_core.stores import PatternStore, StoreError

MIN_PATTERN_LENGTH = 3
DEFAULT_PREFIX_LIMIT = 25
DEFAULT_CACHE_SIZE = 1024
PREFIX_END_SENTINEL = "\uf8ff"

_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

_logger = get_logger("finance_core.suggestions")


def normalize_description(value: str | None) -> str:
    """Lower-case, strip accents, collapse punctuation and whitespace."""
    if not value:
        return ""
    cleaned = value.strip().lower()
    if not cleaned:
        return ""
    cleaned = _COMBINING_MARKS.sub("", unicodedata.normalize("NFD", cleaned))
    cleaned = _NON_ALNUM.sub(" ", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


@dataclass(frozen=True)
class Suggestion:
    category_id: int
    count: int
    account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    payment_method: Optional[str] = None
    normalized_description: Optional[str] = None


def _usable(pattern: Optional[SuggestionPattern]) -> bool:
    return pattern is not None and pattern.category_id is not None and (pattern.count or 0) >= 1


def _strongest(candidates: list[SuggestionPattern]) -> Optional[SuggestionPattern]:
    """Highest count wins; ties keep the first candidate in key order."""
    best: Optional[SuggestionPattern] = None
    for candidate in candidates:
        if not _usable(candidate):
            continue
        if best is None or candidate.count > best.count:
            best = candidate
    return best


def _to_suggestion(pattern: SuggestionPattern) -> Suggestion:
    return Suggestion(
        category_id=pattern.category_id,
        count=pattern.count,
        account_id=pattern.account_id,
        credit_card_id=pattern.credit_card_id,
        payment_method=pattern.payment_method,
        normalized_description=pattern.normalized_description,
    )


class SuggestionStore:
    def __init__(
        self,
        patterns: PatternStore,
        prefix_limit: int = DEFAULT_PREFIX_LIMIT,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self._patterns = patterns
        self._prefix_limit = prefix_limit
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[int, str], Optional[SuggestionPattern]] = OrderedDict()
        self._learn_count = 0

    async def learn(
        self,
        user_id: int,
        description: str,
        category_id: Optional[int],
        account_id: Optional[int] = None,
        credit_card_id: Optional[int] = None,
        payment_method: Optional[str] = None,
        now: datetime | None = None,
    ) -> bool:
        """Record one use of ``description``; returns whether anything was written."""
        normalized = normalize_description(description)
        if category_id is None or len(normalized) < MIN_PATTERN_LENGTH:
            return False
        payment_method = PaymentMethod.validate(payment_method)

        try:
            merged = await self._patterns.upsert_merge(
                user_id,
                normalized,
                category_id=category_id,
                account_id=account_id,
                credit_card_id=credit_card_id,
                payment_method=payment_method,
                used_at=now or utc_now(),
            )
        except StoreError as exc:
            self._learn_count += 1
            # Drop the cached entry so a stale "no match" cannot outlive the attempt.
            self._cache.pop((user_id, normalized), None)
            _logger.warning("suggestions:learn_failed user_id=%s key=%r error=%s", user_id, normalized, exc)
            return False

        self._learn_count += 1
        self._remember(user_id, normalized, merged)
        return True

    async def lookup(self, user_id: int, normalized_description: str) -> Optional[Suggestion]:
        normalized = normalized_description or ""
        if len(normalized) < MIN_PATTERN_LENGTH:
            return None

        cache_key = (user_id, normalized)
        if cache_key in self._cache:
            self._cache.move_to_end(cache_key)
            cached = self._cache[cache_key]
            return _to_suggestion(cached) if _usable(cached) else None

        learns_seen = self._learn_count
        try:
            pattern = await self._patterns.get_exact(user_id, normalized)
            if pattern is None:
                candidates = await self._patterns.range_query(
                    user_id,
                    normalized,
                    normalized + PREFIX_END_SENTINEL,
                    self._prefix_limit,
                )
                pattern = _strongest(candidates)
        except StoreError as exc:
            _logger.warning("suggestions:lookup_failed user_id=%s key=%r error=%s", user_id, normalized, exc)
            return None

        if self._learn_count == learns_seen:
            self._remember(user_id, normalized, pattern)
        elif cache_key in self._cache:
            # A learn finished while the store was being read; its entry is newer.
            pattern = self._cache[cache_key]
        return _to_suggestion(pattern) if _usable(pattern) else None

    async def lookup_description(self, user_id: int, description: str) -> Optional[Suggestion]:
        return await self.lookup(user_id, normalize_description(description))

    def clear_cache(self) -> None:
        self._cache.clear()

    def _remember(self, user_id: int, normalized: str, pattern: Optional[SuggestionPattern]) -> None:
        cache_key = (user_id, normalized)
        self._cache[cache_key] = pattern
        self._cache.move_to_end(cache_key)
        while self._cache_size > 0 and len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)


async def remember_draft(suggestions: SuggestionStore, user_id: int, draft: TransactionDraft) -> None:
    """Learn from a saved draft without ever failing the caller."""
    if draft.type.strip().lower() == "transfer" or draft.category_id is None:
        return
    try:
        await suggestions.learn(
            user_id,
            draft.description,
            draft.category_id,
            account_id=draft.account_id,
            credit_card_id=draft.credit_card_id,
            payment_method=draft.payment_method,
        )
    except Exception:
        _logger.exception("suggestions:remember_failed user_id=%s", user_id)
