"""Tests for sales statistics: aggregation, extremes and empty history."""

import itertools
import math

import pytest
from sqlalchemy import delete

from bookstore.orders.domain import OrderService
from bookstore.orders.models import Book
from bookstore.orders.repository import OrderRepository
from bookstore.orders.statistics import (
    CategorySales,
    SalesStatistics,
    average_cents,
    pick_extremes,
    sold_by_category,
)


class StubSource:
    def __init__(self, count, total, rows):
        self.count, self.total, self.rows = count, total, rows

    def order_totals(self):
        return self.count, self.total

    def line_items_with_category(self):
        return list(self.rows)


def test_empty_history_defaults():
    stats = SalesStatistics(StubSource(0, 0, [])).compute()
    assert stats.total_orders == 0
    assert stats.average_order_cents == 0
    assert stats.most_sold_category is None
    assert stats.least_sold_category is None


def test_average_is_always_finite():
    assert average_cents(0, 0) == 0.0
    assert average_cents(3, 1000) == 333.33
    assert math.isfinite(average_cents(1, 10**30))


def test_rows_without_category_are_skipped():
    rows = [("Fiction", 2), (None, 50), ("Poetry", 1), ("Fiction", 3)]
    assert sold_by_category(rows) == {"Fiction": 5, "Poetry": 1}


def test_extremes():
    most, least = pick_extremes({"Fiction": 5, "Poetry": 1, "History": 3})
    assert most == CategorySales("Fiction", 5)
    assert least == CategorySales("Poetry", 1)


@pytest.mark.parametrize("order", list(itertools.permutations(["Poetry", "Fiction", "Drama"])))
def test_tie_break_is_lexicographic_regardless_of_order(order):
    """Equal totals resolve to the name that sorts first, for both ends."""
    totals = {name: 10 for name in order}
    most, least = pick_extremes(totals)
    assert most.name == "Drama"
    assert least.name == "Drama"


def test_two_way_tie_from_history():
    """Fiction 10, Poetry 10: both winner and loser are Fiction."""
    rows = [("Poetry", 4), ("Fiction", 10), ("Poetry", 6)]
    stats = SalesStatistics(StubSource(3, 3000, rows)).compute()
    assert stats.most_sold_category == CategorySales("Fiction", 10)
    assert stats.least_sold_category == CategorySales("Fiction", 10)
    assert stats.average_order_cents == 1000


def test_statistics_over_store(session_factory, seed):
    fiction, poetry = seed.category("Fiction"), seed.category("Poetry")
    novel = seed.book("Novel", 1000, 50, fiction)
    verse = seed.book("Verse", 500, 50, poetry)
    gone = seed.book("Gone", 100, 50, fiction)
    buyer = seed.buyer("buyer1")
    repo = OrderRepository(session_factory)
    service = OrderService(repo.catalog, repo)

    service.place_order(buyer.id, [{"book_id": novel.id, "quantity": 4}, {"book_id": verse.id, "quantity": 1}])
    service.place_order(buyer.id, [{"book_id": verse.id, "quantity": 2}, {"book_id": gone.id, "quantity": 7}])

    # sold history of a deleted book no longer counts toward any category
    with session_factory() as s, s.begin():
        s.execute(delete(Book).where(Book.id == gone.id))

    stats = SalesStatistics(repo)
    first = stats.compute()
    assert first.total_orders == 2
    assert first.average_order_cents == (4500 + 1700) / 2
    assert first.most_sold_category == CategorySales("Fiction", 4)
    assert first.least_sold_category == CategorySales("Poetry", 3)

    assert stats.compute() == first


def test_statistics_empty_store(session_factory):
    stats = SalesStatistics(OrderRepository(session_factory)).compute()
    assert (stats.total_orders, stats.average_order_cents) == (0, 0.0)
    assert stats.most_sold_category is None and stats.least_sold_category is None
