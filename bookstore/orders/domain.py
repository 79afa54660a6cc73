"""Domain types, ports and service for placing orders.

This module contains the DTOs that flow through order processing, the
error taxonomy surfaced to callers, protocol definitions (ports) for the
catalog and the order ledger, and ``OrderService`` which runs the three
stages of a purchase:

1. intake: shape validation of the raw request, no store access;
2. planning: resolve every book, check stock and price the order;
3. commit: hand the plan to the ledger, which persists header, line
   items and conditional stock decrements as one atomic unit.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from .schemas import PlaceOrderDTO

logger = logging.getLogger(__name__)


# ---- Errors ----
class OrderError(ValueError):
    """Base class for every error the order core reports to callers.

    Attributes:
        code: Stable upper-case identifier, used as the API ``detail``.
    """

    code = "ORDER_ERROR"

    def attributes(self) -> dict[str, Any]:
        return {}

    def as_dict(self) -> dict[str, Any]:
        return {"detail": self.code, "message": str(self), **self.attributes()}


class InvalidRequest(OrderError):
    code = "INVALID_REQUEST"

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []

    def attributes(self):
        return {"errors": self.errors}


class BookNotFound(OrderError):
    code = "BOOK_NOT_FOUND"

    def __init__(self, book_id: str):
        super().__init__(f"Book with id {book_id} not found")
        self.book_id = book_id

    def attributes(self):
        return {"book_id": self.book_id}


class InsufficientStock(OrderError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, book_id: str, title: str, stock: int, requested: int):
        super().__init__(f"Not enough stock for book: {title} (stock: {stock}, requested: {requested})")
        self.book_id = book_id
        self.title = title
        self.stock = stock
        self.requested = requested

    def attributes(self):
        return {"book_id": self.book_id, "title": self.title, "stock": self.stock, "requested": self.requested}


class StockConflict(OrderError):
    """A concurrent order took the stock this plan relied on."""

    code = "STOCK_CONFLICT"

    def __init__(self, book_id: str):
        super().__init__(f"Stock for book {book_id} changed before the order could be committed")
        self.book_id = book_id

    def attributes(self):
        return {"book_id": self.book_id}


class StoreUnavailable(OrderError):
    code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str):
        super().__init__(f"Store unavailable during {operation}")
        self.operation = operation

    def attributes(self):
        return {"operation": self.operation}


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """A requested book and quantity, as accepted by intake."""

    book_id: str
    quantity: int


@dataclass(frozen=True)
class OrderRequest:
    buyer_id: str
    items: tuple[OrderItem, ...]


@dataclass(frozen=True)
class BookSnapshot:
    """What the catalog reported for a book at a point in time."""

    id: str
    title: str
    price_cents: int
    stock: int
    category_id: str | None = None


@dataclass(frozen=True)
class PlannedItem:
    """A priced line of a plan.

    Attributes:
        book_id: Book being bought.
        quantity: Units requested on this line.
        price_cents: Unit price observed while planning; this is the price
            recorded on the line item.
        remaining_stock: Stock expected after this line (and every earlier
            line for the same book) is decremented.
    """

    book_id: str
    quantity: int
    price_cents: int
    remaining_stock: int

    @property
    def subtotal_cents(self) -> int:
        return self.price_cents * self.quantity


@dataclass(frozen=True)
class Plan:
    """A validated, priced order that has not been persisted yet."""

    buyer_id: str
    items: tuple[PlannedItem, ...]
    total_cents: int

    def decrements(self) -> list[tuple[str, int]]:
        """Summed quantity per distinct book, ordered by book id.

        A book listed on several lines is decremented once by the total so
        an order never races against itself. The fixed ordering keeps row
        locks acquired in the same order by every committer.
        """
        totals: dict[str, int] = {}
        for it in self.items:
            totals[it.book_id] = totals.get(it.book_id, 0) + it.quantity
        return sorted(totals.items())


@dataclass(frozen=True)
class LineItem:
    book_id: str | None
    quantity: int
    price_cents: int
    title: str | None = None


@dataclass(frozen=True)
class PlacedOrder:
    id: str
    buyer_id: str
    total_cents: int
    created_at: datetime
    line_items: tuple[LineItem, ...] = field(default_factory=tuple)


# ---- Ports ----
class CatalogPort(Protocol):
    """Read access to books, as needed by planning."""

    def get_book(self, book_id: str) -> BookSnapshot | None:
        """Return the current state of ``book_id`` or None if it does not exist."""
        raise NotImplementedError()


class LedgerPort(Protocol):
    """Durable storage of committed orders."""

    def append_order_atomic(self, plan: Plan) -> PlacedOrder:
        """Persist header, line items and stock decrements of ``plan`` together.

        Raises:
            StockConflict: If any conditional decrement is rejected; nothing
                is persisted in that case.
            StoreUnavailable: On infrastructure failure; nothing is persisted.
        """
        raise NotImplementedError()


# ---- Intake ----
def intake(buyer_id: Any, items: Any) -> OrderRequest:
    """Validate the shape of a purchase request.

    Args:
        buyer_id: Identifier of the (already authenticated) buyer.
        items: Sequence of ``{"book_id": ..., "quantity": ...}`` mappings.

    Returns:
        An ``OrderRequest`` with normalized values.

    Raises:
        InvalidRequest: If the buyer id is missing, the item list is empty
            or not a list, or any item lacks a book id or has a
            non-positive quantity.
    """
    try:
        dto = PlaceOrderDTO.model_validate({"buyer_id": buyer_id, "items": items})
    except ValidationError as e:
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"]}
            for err in e.errors(include_url=False, include_context=False, include_input=False)
        ]
        raise InvalidRequest("Invalid order request", errors=errors) from None
    return OrderRequest(
        buyer_id=dto.buyer_id,
        items=tuple(OrderItem(book_id=i.book_id, quantity=i.quantity) for i in dto.items),
    )


# ---- Domain service ----
class OrderService:
    """Domain service responsible for placing orders.

    Holds no state between calls beyond its collaborators, so one instance
    can serve concurrent requests.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        ledger: LedgerPort,
        conflict_retries: int = 0,
        backoff_base: float = 0.0,
        max_sleep: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the service with required dependencies.

        Args:
            catalog: CatalogPort used to read books while planning.
            ledger: LedgerPort used to commit plans.
            conflict_retries: How many times to re-plan after a StockConflict.
            backoff_base: First backoff delay in seconds, doubled per retry.
            max_sleep: Upper bound for a single backoff delay.
            sleep: Sleep function, replaceable in tests.
        """
        self.catalog = catalog
        self.ledger = ledger
        self.conflict_retries = conflict_retries
        self.backoff_base = backoff_base
        self.max_sleep = max_sleep
        self._sleep = sleep

    def plan(self, request: OrderRequest) -> Plan:
        """Resolve and price every item of ``request``.

        Stock is only observed here. Lines for the same book are checked
        against their running total, so a repeated book cannot pass planning
        with more units than the catalog holds.

        Raises:
            BookNotFound: For the first item whose book does not exist.
            InsufficientStock: For the first item whose running quantity
                exceeds the observed stock.
        """
        books: dict[str, BookSnapshot] = {}
        requested: dict[str, int] = {}
        planned: list[PlannedItem] = []

        for item in request.items:
            book = books.get(item.book_id)
            if book is None:
                book = self.catalog.get_book(item.book_id)
                if book is None:
                    raise BookNotFound(item.book_id)
                books[item.book_id] = book

            running = requested.get(item.book_id, 0) + item.quantity
            if running > book.stock:
                raise InsufficientStock(book.id, book.title, book.stock, running)
            requested[item.book_id] = running

            planned.append(
                PlannedItem(
                    book_id=book.id,
                    quantity=item.quantity,
                    price_cents=book.price_cents,
                    remaining_stock=book.stock - running,
                )
            )

        total = sum(p.subtotal_cents for p in planned)
        return Plan(buyer_id=request.buyer_id, items=tuple(planned), total_cents=total)

    def commit(self, plan: Plan) -> PlacedOrder:
        return self.ledger.append_order_atomic(plan)

    def place_order(self, buyer_id: Any, items: Any) -> PlacedOrder:
        """Validate, plan and commit an order.

        A ``StockConflict`` at commit time means another order consumed
        stock after planning; the whole order is re-planned from fresh
        catalog reads up to ``conflict_retries`` times, so a retry ends
        either committed or with an ``InsufficientStock`` from planning.

        Returns:
            The committed order.

        Raises:
            InvalidRequest, BookNotFound, InsufficientStock, StockConflict,
            StoreUnavailable: See the individual stages.
        """
        request = intake(buyer_id, items)

        attempt = 0
        while True:
            try:
                plan = self.plan(request)
                order = self.commit(plan)
            except StockConflict as e:
                if attempt >= self.conflict_retries:
                    logger.info(
                        "order rejected",
                        extra={"code": e.code, "buyer_id": request.buyer_id, "book_id": e.book_id},
                    )
                    raise
                attempt += 1
                logger.warning(
                    "stock conflict, re-planning order",
                    extra={"attempt": attempt, "buyer_id": request.buyer_id, "book_id": e.book_id},
                )
                delay = self.backoff_base * (2 ** (attempt - 1))
                if delay > 0:
                    self._sleep(min(delay, self.max_sleep))
                continue
            except (BookNotFound, InsufficientStock) as e:
                logger.info(
                    "order rejected",
                    extra={"code": e.code, "buyer_id": request.buyer_id, "book_id": e.book_id},
                )
                raise

            logger.info(
                "order placed",
                extra={
                    "order_id": order.id,
                    "buyer_id": order.buyer_id,
                    "total_cents": order.total_cents,
                    "item_count": len(order.line_items),
                },
            )
            return order
