"""Pydantic schemas for orders.

This module exposes the request schema used by order intake and the
response schemas rendered by the orders API.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderItemIn(BaseModel):
    """Input schema for a single requested line.

    Attributes:
        book_id: Reference to a catalog book. Surrounding whitespace is
            stripped; an empty reference is rejected.
        quantity: Positive integer number of units. Booleans, floats and
            numeric strings are rejected.
    """

    book_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0, strict=True)

    @field_validator("book_id", mode="before")
    @classmethod
    def strip_book_id(cls, v):
        return v.strip() if isinstance(v, str) else v


class PlaceOrderDTO(BaseModel):
    """Schema for placing an order.

    Attributes:
        buyer_id: Identifier of the buyer placing the order.
        items: Non-empty list of `OrderItemIn` items, in request order.
    """

    buyer_id: str = Field(min_length=1, max_length=64)
    items: list[OrderItemIn] = Field(min_length=1)

    @field_validator("buyer_id", mode="before")
    @classmethod
    def strip_buyer_id(cls, v):
        return v.strip() if isinstance(v, str) else v


class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    book_id: str | None
    quantity: int
    price_cents: int
    title: str | None = None


class OrderOut(BaseModel):
    """Representation of a committed order."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: str
    total_cents: int
    created_at: datetime
    line_items: list[LineItemOut]


class OrderSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: str
    buyer_username: str
    total_cents: int
    created_at: datetime
    item_count: int


class OrderPageOut(BaseModel):
    count: int
    page: int
    page_size: int
    results: list[OrderSummaryOut]


class CategorySalesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    total_sold: int


class StatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    average_order_cents: float
    most_sold_category: CategorySalesOut | None = None
    least_sold_category: CategorySalesOut | None = None
