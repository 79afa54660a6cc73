"""Sales statistics over the committed order history.

Computed on demand from the ledger; nothing is cached between calls, so
two calls with no order in between return equal results.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Protocol


class StatisticsSource(Protocol):
    def order_totals(self) -> tuple[int, int]:
        """Return ``(number of orders, sum of totals in cents)``."""
        raise NotImplementedError()

    def line_items_with_category(self) -> Iterable[tuple[str | None, int]]:
        """Yield ``(category name or None, quantity)`` for every line item."""
        raise NotImplementedError()


@dataclass(frozen=True)
class CategorySales:
    name: str
    total_sold: int


@dataclass(frozen=True)
class Statistics:
    total_orders: int
    average_order_cents: float
    most_sold_category: CategorySales | None
    least_sold_category: CategorySales | None


def sold_by_category(rows: Iterable[tuple[str | None, int]]) -> dict[str, int]:
    """Sum quantities per category name, skipping rows without a category."""
    totals: dict[str, int] = {}
    for name, qty in rows:
        if name is None:
            continue
        totals[name] = totals.get(name, 0) + qty
    return totals


def pick_extremes(totals: dict[str, int]) -> tuple[CategorySales | None, CategorySales | None]:
    """Return the most and least sold categories.

    Ties go to the name that sorts first, for both ends, independently of
    dict order. Both are None when no category has a sale.
    """
    if not totals:
        return None, None
    most = min(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    least = min(totals.items(), key=lambda kv: (kv[1], kv[0]))
    return CategorySales(*most), CategorySales(*least)


def average_cents(count: int, total_cents: int) -> float:
    if count <= 0:
        return 0.0
    avg = total_cents / count
    if not math.isfinite(avg):
        return 0.0
    return round(avg, 2)


class SalesStatistics:
    def __init__(self, source: StatisticsSource):
        self.source = source

    def compute(self) -> Statistics:
        count, total = self.source.order_totals()
        most, least = pick_extremes(sold_by_category(self.source.line_items_with_category()))
        return Statistics(
            total_orders=count,
            average_order_cents=average_cents(count, total),
            most_sold_category=most,
            least_sold_category=least,
        )
