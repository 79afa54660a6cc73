"""Unit tests for the OrderService domain orchestration.

These tests validate intake, planning and the commit hand-off with
stubbed ports: happy path, malformed requests, missing books, short
stock, repeated books and re-planning after a commit-time conflict.
"""

from datetime import datetime, timezone

import pytest

from bookstore.orders.domain import (
    BookNotFound,
    BookSnapshot,
    InsufficientStock,
    InvalidRequest,
    LineItem,
    OrderItem,
    OrderRequest,
    OrderService,
    PlacedOrder,
    StockConflict,
    intake,
)


class StubCatalog:
    """Catalog stub serving a fixed dict of books and counting lookups."""

    def __init__(self, *books):
        self.books = {b.id: b for b in books}
        self.lookups = 0

    def get_book(self, book_id):
        self.lookups += 1
        return self.books.get(book_id)


class RecordingLedger:
    """Ledger stub that records plans and commits them in memory."""

    def __init__(self):
        self.plans = []

    def append_order_atomic(self, plan):
        self.plans.append(plan)
        return PlacedOrder(
            id=f"order-{len(self.plans)}",
            buyer_id=plan.buyer_id,
            total_cents=plan.total_cents,
            created_at=datetime.now(timezone.utc),
            line_items=tuple(LineItem(it.book_id, it.quantity, it.price_cents) for it in plan.items),
        )


class ConflictingLedger(RecordingLedger):
    """Fails the first ``conflicts`` commits with StockConflict."""

    def __init__(self, conflicts):
        super().__init__()
        self.conflicts = conflicts

    def append_order_atomic(self, plan):
        if self.conflicts > 0:
            self.conflicts -= 1
            raise StockConflict(plan.items[0].book_id)
        return super().append_order_atomic(plan)


BOOK_A = BookSnapshot(id="A", title="Book A", price_cents=1000, stock=5, category_id="fiction")
BOOK_B = BookSnapshot(id="B", title="Book B", price_cents=2000, stock=2, category_id="fiction")


def test_place_order_ok():
    """Happy path: total is the sum of price x quantity and the plan is committed."""
    ledger = RecordingLedger()
    service = OrderService(StubCatalog(BOOK_A, BOOK_B), ledger)
    out = service.place_order("buyer1", [{"book_id": "A", "quantity": 3}, {"book_id": "B", "quantity": 2}])

    assert out.total_cents == 7000
    assert [(li.book_id, li.quantity, li.price_cents) for li in out.line_items] == [
        ("A", 3, 1000),
        ("B", 2, 2000),
    ]
    plan = ledger.plans[0]
    assert [it.remaining_stock for it in plan.items] == [2, 0]
    assert plan.decrements() == [("A", 3), ("B", 2)]


@pytest.mark.parametrize(
    "buyer_id, items",
    [
        (None, [{"book_id": "A", "quantity": 1}]),
        ("", [{"book_id": "A", "quantity": 1}]),
        ("   ", [{"book_id": "A", "quantity": 1}]),
        ("buyer1", []),
        ("buyer1", None),
        ("buyer1", {"book_id": "A", "quantity": 1}),
        ("buyer1", "A"),
        ("buyer1", [{"quantity": 1}]),
        ("buyer1", [{"book_id": "", "quantity": 1}]),
        ("buyer1", [{"book_id": "A", "quantity": 0}]),
        ("buyer1", [{"book_id": "A", "quantity": -2}]),
        ("buyer1", [{"book_id": "A"}]),
        ("buyer1", [{"book_id": "A", "quantity": 1.5}]),
        ("buyer1", [{"book_id": "A", "quantity": "2"}]),
        ("buyer1", [{"book_id": "A", "quantity": True}]),
    ],
)
def test_invalid_request_rejected_before_store_access(buyer_id, items):
    """Malformed requests raise InvalidRequest and never touch the catalog."""
    catalog = StubCatalog(BOOK_A)
    ledger = RecordingLedger()
    service = OrderService(catalog, ledger)
    with pytest.raises(InvalidRequest) as e:
        service.place_order(buyer_id, items)
    assert e.value.code == "INVALID_REQUEST"
    assert e.value.errors
    assert catalog.lookups == 0
    assert ledger.plans == []


def test_intake_normalizes_identifiers():
    req = intake(" buyer1 ", [{"book_id": " A ", "quantity": 2}])
    assert req == OrderRequest(buyer_id="buyer1", items=(OrderItem("A", 2),))


def test_book_not_found_names_reference():
    """Domain error: an unknown book aborts planning with its id."""
    ledger = RecordingLedger()
    service = OrderService(StubCatalog(BOOK_A), ledger)
    with pytest.raises(BookNotFound) as e:
        service.place_order("buyer1", [{"book_id": "A", "quantity": 1}, {"book_id": "missing", "quantity": 1}])
    assert e.value.book_id == "missing"
    assert e.value.as_dict()["detail"] == "BOOK_NOT_FOUND"
    assert ledger.plans == []


def test_insufficient_stock_names_book_and_stock():
    """Domain error: asking for more than the observed stock raises INSUFFICIENT_STOCK."""
    ledger = RecordingLedger()
    service = OrderService(StubCatalog(BOOK_A, BOOK_B), ledger)
    with pytest.raises(InsufficientStock) as e:
        service.place_order("buyer1", [{"book_id": "A", "quantity": 1}, {"book_id": "B", "quantity": 3}])
    assert (e.value.book_id, e.value.stock, e.value.requested) == ("B", 2, 3)
    assert "Book B" in str(e.value)
    assert ledger.plans == []


def test_repeated_book_is_checked_against_running_total():
    """Two lines for the same book may not exceed its stock together."""
    service = OrderService(StubCatalog(BOOK_B), RecordingLedger())
    with pytest.raises(InsufficientStock) as e:
        service.place_order("buyer1", [{"book_id": "B", "quantity": 1}, {"book_id": "B", "quantity": 2}])
    assert e.value.requested == 3


def test_repeated_book_is_decremented_once_with_summed_quantity():
    catalog = StubCatalog(BOOK_A)
    ledger = RecordingLedger()
    service = OrderService(catalog, ledger)
    service.place_order("buyer1", [{"book_id": "A", "quantity": 1}, {"book_id": "A", "quantity": 3}])

    plan = ledger.plans[0]
    assert plan.decrements() == [("A", 4)]
    assert [it.remaining_stock for it in plan.items] == [4, 1]
    assert plan.total_cents == 4000
    # resolved once per order
    assert catalog.lookups == 1


def test_stock_conflict_without_retries_is_raised():
    service = OrderService(StubCatalog(BOOK_A), ConflictingLedger(conflicts=1))
    with pytest.raises(StockConflict) as e:
        service.place_order("buyer1", [{"book_id": "A", "quantity": 1}])
    assert e.value.book_id == "A"


def test_stock_conflict_replans_with_backoff():
    """A conflict triggers a fresh plan; the backoff doubles per attempt."""
    sleeps = []
    catalog = StubCatalog(BOOK_A)
    ledger = ConflictingLedger(conflicts=2)
    service = OrderService(catalog, ledger, conflict_retries=2, backoff_base=0.1, max_sleep=0.15, sleep=sleeps.append)

    out = service.place_order("buyer1", [{"book_id": "A", "quantity": 1}])

    assert out.id == "order-1"
    assert sleeps == [0.1, 0.15]
    assert catalog.lookups == 3


def test_stock_conflict_gives_up_after_retries():
    service = OrderService(StubCatalog(BOOK_A), ConflictingLedger(conflicts=5), conflict_retries=2)
    with pytest.raises(StockConflict):
        service.place_order("buyer1", [{"book_id": "A", "quantity": 1}])
