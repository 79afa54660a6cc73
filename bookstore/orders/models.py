"""SQLAlchemy models for the catalog and the order ledger.

Catalog tables (categories, books, buyers) are owned by other parts of the
system; the order core only reads them, except for the conditional stock
decrement on ``books.stock``. Orders and line items are append-only.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import mapped_column, relationship

from ..db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(Base):
    __tablename__ = "categories"

    id = mapped_column(String(36), primary_key=True, default=_new_id)
    name = mapped_column(String(100), unique=True, nullable=False)


class Book(Base):
    """A catalog entry. ``stock`` never goes below zero."""

    __tablename__ = "books"

    id = mapped_column(String(36), primary_key=True, default=_new_id)
    title = mapped_column(String(255), unique=True, nullable=False)
    author = mapped_column(String(255), nullable=False, default="")
    price_cents = mapped_column(BigInteger, nullable=False)
    stock = mapped_column(Integer, nullable=False, default=0)
    category_id = mapped_column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_books_price_non_negative"),
        CheckConstraint("stock >= 0", name="ck_books_stock_non_negative"),
    )


class Buyer(Base):
    __tablename__ = "buyers"

    id = mapped_column(String(36), primary_key=True, default=_new_id)
    username = mapped_column(String(150), unique=True, nullable=False)
    password_hash = mapped_column(String(255), nullable=False, default="")


class OrderModel(Base):
    """Order header. ``total_cents`` is fixed at commit time."""

    __tablename__ = "orders"

    id = mapped_column(String(36), primary_key=True, default=_new_id)
    buyer_id = mapped_column(String(36), ForeignKey("buyers.id"), nullable=False, index=True)
    total_cents = mapped_column(BigInteger, nullable=False)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    line_items = relationship(
        "LineItemModel",
        back_populates="order",
        order_by="LineItemModel.position",
        cascade="all, delete-orphan",
    )


class LineItemModel(Base):
    """One book and quantity within an order, priced at sale time.

    ``book_id`` is cleared, not cascaded, when the book is deleted so sale
    history survives catalog changes.
    """

    __tablename__ = "line_items"

    id = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    book_id = mapped_column(String(36), ForeignKey("books.id", ondelete="SET NULL"), nullable=True, index=True)
    position = mapped_column(Integer, nullable=False, default=0)
    quantity = mapped_column(Integer, nullable=False)
    price_cents = mapped_column(BigInteger, nullable=False)

    order = relationship("OrderModel", back_populates="line_items")
    book = relationship("Book")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_line_items_quantity_positive"),
        CheckConstraint("price_cents >= 0", name="ck_line_items_price_non_negative"),
    )


class IdempotencyKey(Base):
    """Persisted outcome of an order request sent with an Idempotency-Key.

    Attributes:
        key: Client-provided idempotency key.
        request_hash: Canonical SHA-256 hex digest of the request body.
        order_id: Order created by the request, if any.
        response_status: Final HTTP status, 0 while the request is in flight.
        response_body: Final JSON body.
    """

    __tablename__ = "idempotency_keys"

    key = mapped_column(String(200), primary_key=True)
    request_hash = mapped_column(String(64), nullable=False)
    order_id = mapped_column(String(36), nullable=True)
    response_status = mapped_column(Integer, nullable=False, default=0)
    response_body = mapped_column(JSON, nullable=False, default=dict)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
