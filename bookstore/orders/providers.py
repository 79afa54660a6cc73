"""Service provider helpers for wiring the order core with its stores.

These functions are FastAPI dependencies. They read the session factory
built once by ``create_app`` from ``request.app.state`` and wrap it in
the repositories; tests swap them through ``app.dependency_overrides``.
"""

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from .. import settings
from .domain import OrderService
from .idempotency import IdempotencyStore
from .repository import OrderRepository, SqlCatalog
from .statistics import SalesStatistics


def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory


def build_order_service(session_factory: sessionmaker) -> OrderService:
    """Return an OrderService bound to ``session_factory``.

    Retry and backoff for commit-time stock conflicts come from
    ``settings.ORDER_CONFLICT_RETRIES`` and the backoff settings.
    """
    catalog = SqlCatalog(session_factory)
    return OrderService(
        catalog=catalog,
        ledger=OrderRepository(session_factory, catalog=catalog),
        conflict_retries=settings.ORDER_CONFLICT_RETRIES,
        backoff_base=settings.ORDER_RETRY_BACKOFF_BASE,
        max_sleep=settings.ORDER_RETRY_MAX_SLEEP,
    )


def get_order_service(request: Request) -> OrderService:
    return build_order_service(get_session_factory(request))


def get_order_repository(request: Request) -> OrderRepository:
    return OrderRepository(get_session_factory(request))


def get_sales_statistics(request: Request) -> SalesStatistics:
    return SalesStatistics(OrderRepository(get_session_factory(request)))


def get_idempotency_store(request: Request) -> IdempotencyStore:
    return IdempotencyStore(get_session_factory(request))
