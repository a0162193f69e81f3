from __future__ import annotations

from dataclasses import dataclass

from finance_core.stores import TransactionStore


class CategoryInUseError(ValueError):
    """Raised when a category still has transactions pointing at it."""


@dataclass(frozen=True)
class CategoryUsage:
    category_id: int
    transaction_count: int

    @property
    def deletable(self) -> bool:
        return self.transaction_count == 0


async def category_usage(store: TransactionStore, user_id: int, category_id: int) -> CategoryUsage:
    count = await store.count_by_category(user_id, category_id)
    return CategoryUsage(category_id=category_id, transaction_count=count)


async def ensure_category_deletable(store: TransactionStore, user_id: int, category_id: int) -> CategoryUsage:
    usage = await category_usage(store, user_id, category_id)
    if not usage.deletable:
        raise CategoryInUseError(
            f"Category is in use by {usage.transaction_count} transaction(s)."
        )
    return usage
