"""SQLAlchemy repositories for the catalog view and the order ledger.

``SqlCatalog`` is the read side planning uses. ``OrderRepository`` owns
the ledger: it commits plans atomically, serves order reads and feeds the
statistics. Both receive a ``sessionmaker`` from the application factory.

Driver and connection failures are reported as ``StoreUnavailable``; the
original SQLAlchemy exception is chained.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeout
from sqlalchemy.orm import selectinload, sessionmaker

from ..db import get_session
from .domain import (
    BookSnapshot,
    InvalidRequest,
    LineItem,
    PlacedOrder,
    Plan,
    StockConflict,
    StoreUnavailable,
)
from .models import Book, Buyer, Category, LineItemModel, OrderModel

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(operation: str, **context):
    """Translate connection and driver failures into ``StoreUnavailable``.

    Only errors a retry can cure are translated. Integrity, data and
    programming errors propagate unchanged: the first so callers can map
    them to a business error, the others because they would fail again.
    """
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeout) as e:
        logger.exception("store failure", extra={"operation": operation, **context})
        raise StoreUnavailable(operation) from e


def _to_placed(o: OrderModel, titles: dict[str, str] | None = None) -> PlacedOrder:
    titles = titles or {}
    return PlacedOrder(
        id=o.id,
        buyer_id=o.buyer_id,
        total_cents=o.total_cents,
        created_at=o.created_at,
        line_items=tuple(
            LineItem(
                book_id=li.book_id,
                quantity=li.quantity,
                price_cents=li.price_cents,
                title=titles.get(li.book_id) if li.book_id else None,
            )
            for li in o.line_items
        ),
    )


class SqlCatalog:
    """Catalog reads backed by the ``books`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_book(self, book_id: str) -> BookSnapshot | None:
        with store_errors("get_book", book_id=book_id), get_session(self.session_factory) as s:
            b = s.get(Book, book_id)
            if b is None:
                return None
            return BookSnapshot(
                id=b.id,
                title=b.title,
                price_cents=b.price_cents,
                stock=b.stock,
                category_id=b.category_id,
            )

    def decrement_stock(self, session, book_id: str, amount: int) -> bool:
        """Conditionally take ``amount`` units of ``book_id`` inside ``session``.

        The check and the write are one statement evaluated against the
        live row, so concurrent decrements are serialized by the database
        and stock can never go negative.

        Returns:
            bool: True if the row was updated, False if the live stock does
                not cover ``amount`` (or the book no longer exists).
        """
        result = session.execute(
            update(Book)
            .where(Book.id == book_id, Book.stock >= amount)
            .values(stock=Book.stock - amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class OrderRepository:
    """Repository that persists and reads orders.

    The repository returns domain DTOs (``PlacedOrder``) so callers are
    not coupled to ORM types.
    """

    def __init__(self, session_factory: sessionmaker, catalog: SqlCatalog | None = None):
        self.session_factory = session_factory
        self.catalog = catalog or SqlCatalog(session_factory)

    def append_order_atomic(self, plan: Plan) -> PlacedOrder:
        """Persist ``plan`` as one transaction.

        Stock decrements run first, one conditional update per distinct
        book with the summed quantity; then the header and the line items
        with the planned prices are inserted. Any failure rolls back the
        whole transaction.

        Args:
            plan: A plan produced by ``OrderService.plan``.

        Returns:
            PlacedOrder: The committed order.

        Raises:
            StockConflict: If the live stock of any book no longer covers
                the plan.
            InvalidRequest: If the store rejects the header (unknown buyer).
            StoreUnavailable: On driver or connection failure.
        """
        with store_errors("append_order_atomic", buyer_id=plan.buyer_id), get_session(self.session_factory) as s:
            try:
                with s.begin():
                    for book_id, qty in plan.decrements():
                        if not self.catalog.decrement_stock(s, book_id, qty):
                            raise StockConflict(book_id)

                    order = OrderModel(buyer_id=plan.buyer_id, total_cents=plan.total_cents)
                    order.line_items = [
                        LineItemModel(
                            book_id=it.book_id,
                            position=pos,
                            quantity=it.quantity,
                            price_cents=it.price_cents,
                        )
                        for pos, it in enumerate(plan.items)
                    ]
                    s.add(order)
                    s.flush()
            except IntegrityError as e:
                logger.warning(
                    "order rejected by store constraints",
                    extra={"buyer_id": plan.buyer_id, "error": str(e.orig)},
                )
                raise InvalidRequest(f"Order rejected: unknown buyer {plan.buyer_id}") from e
            return _to_placed(order)

    def get_order(self, order_id: str) -> PlacedOrder | None:
        with store_errors("get_order", order_id=order_id), get_session(self.session_factory) as s:
            o = s.execute(
                select(OrderModel)
                .where(OrderModel.id == order_id)
                .options(selectinload(OrderModel.line_items).selectinload(LineItemModel.book))
            ).scalar_one_or_none()
            if o is None:
                return None
            titles = {li.book_id: li.book.title for li in o.line_items if li.book is not None}
            return _to_placed(o, titles)

    def list_orders(self, page: int, page_size: int) -> tuple[int, int, list[dict]]:
        """Return one page of orders, newest first.

        ``page`` is clamped to the valid range; an empty ledger has one
        empty page.

        Returns:
            tuple: ``(count, page, rows)`` where each row is a dict with
                ``id, buyer_id, buyer_username, total_cents, created_at,
                item_count``.
        """
        with store_errors("list_orders"), get_session(self.session_factory) as s:
            count = s.scalar(select(func.count(OrderModel.id))) or 0
            last_page = max(1, -(-count // page_size))
            page = min(max(1, page), last_page)

            item_count = (
                select(func.count(LineItemModel.id))
                .where(LineItemModel.order_id == OrderModel.id)
                .correlate(OrderModel)
                .scalar_subquery()
            )
            rows = s.execute(
                select(
                    OrderModel.id,
                    OrderModel.buyer_id,
                    Buyer.username.label("buyer_username"),
                    OrderModel.total_cents,
                    OrderModel.created_at,
                    item_count.label("item_count"),
                )
                .join(Buyer, OrderModel.buyer_id == Buyer.id)
                .order_by(OrderModel.created_at.desc(), OrderModel.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            return count, page, [dict(r._mapping) for r in rows]

    # ---- statistics source ----
    def order_totals(self) -> tuple[int, int]:
        """Return ``(number of orders, sum of their totals in cents)``."""
        with store_errors("order_totals"), get_session(self.session_factory) as s:
            count, total = s.execute(
                select(func.count(OrderModel.id), func.coalesce(func.sum(OrderModel.total_cents), 0))
            ).one()
            return int(count), int(total)

    def line_items_with_category(self) -> list[tuple[str | None, int]]:
        """Every committed line item as ``(category name or None, quantity)``.

        Items whose book was deleted, or whose book has no category, carry
        None as category.
        """
        with store_errors("line_items_with_category"), get_session(self.session_factory) as s:
            rows = s.execute(
                select(Category.name, LineItemModel.quantity)
                .select_from(LineItemModel)
                .outerjoin(Book, LineItemModel.book_id == Book.id)
                .outerjoin(Category, Book.category_id == Category.id)
            ).all()
            return [(name, qty) for name, qty in rows]
