"""HTTP views for the orders module.

Views are kept intentionally small: they hand the raw body to the domain
service (which runs intake validation), map domain errors to status
codes, and shape the response with the Pydantic output schemas.

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoint ensures idempotent processing. The first request creates a record
and, upon completion, stores the response. Retries with the same payload
replay the stored response and status with ``Idempotent-Replay: true``.
Reusing the key with a different payload returns HTTP 409. Store outages
and unexpected errors are not stored, so a retry after a 503 or a 500 runs
the order again. A record left in flight by a crashed worker is taken over
once it is older than ``IDEMPOTENCY_STALE_SECS``.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.responses import JSONResponse

from .. import settings
from .domain import InvalidRequest, OrderError, OrderService, StoreUnavailable
from .idempotency import IdempotencyStore
from .providers import get_idempotency_store, get_order_repository, get_order_service, get_sales_statistics
from .repository import OrderRepository
from .schemas import OrderOut, OrderPageOut, OrderSummaryOut, StatisticsOut
from .statistics import SalesStatistics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

ERROR_STATUS = {
    "INVALID_REQUEST": 400,
    "BOOK_NOT_FOUND": 404,
    "IDEMPOTENCY_CONFLICT": 409,
    "IDEMPOTENCY_IN_PROGRESS": 409,
    "STOCK_CONFLICT": 409,
    "INSUFFICIENT_STOCK": 422,
    "STORE_UNAVAILABLE": 503,
}


def error_response(e: OrderError) -> JSONResponse:
    return JSONResponse(e.as_dict(), status_code=ERROR_STATUS.get(e.code, 400))


@router.get("/ping")
def ping():
    """Health-check endpoint for the orders module."""
    return {"ok": True}


@router.post("/", status_code=201)
def create_order(
    payload: Annotated[Any, Body()] = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
    service: OrderService = Depends(get_order_service),
    idem: IdempotencyStore = Depends(get_idempotency_store),
):
    """Place an order.

    Returns:
        - 201 with the committed order.
        - 200/4xx replay of the stored response for a retried key.
        - 400 ``INVALID_REQUEST`` for a malformed body.
        - 404 ``BOOK_NOT_FOUND`` / 422 ``INSUFFICIENT_STOCK`` from planning.
        - 409 ``STOCK_CONFLICT`` when concurrent orders kept winning the
          stock after every re-plan; 409 ``IDEMPOTENCY_CONFLICT`` for a
          reused key.
        - 503 ``STORE_UNAVAILABLE`` when the database is unreachable.
    """
    if idempotency_key:
        try:
            existing, stored = idem.get_or_create(idempotency_key, payload)
        except OrderError as e:
            return error_response(e)
        if existing:
            resp = JSONResponse(stored["body"], status_code=stored["status"])
            resp.headers["Idempotent-Replay"] = "true"
            return resp

    try:
        if not isinstance(payload, dict):
            raise InvalidRequest("Request body must be a JSON object")
        order = service.place_order(payload.get("buyer_id"), payload.get("items"))
    except StoreUnavailable as e:
        if idempotency_key:
            _release(idem, idempotency_key)
        return error_response(e)
    except OrderError as e:
        if idempotency_key:
            _record(idem, idempotency_key, ERROR_STATUS.get(e.code, 400), e.as_dict())
        return error_response(e)
    except Exception:
        if idempotency_key:
            _release(idem, idempotency_key)
        raise

    body = OrderOut.model_validate(order).model_dump(mode="json")
    if idempotency_key:
        _record(idem, idempotency_key, 201, body, order_id=order.id)
    return JSONResponse(body, status_code=201)


def _release(idem: IdempotencyStore, key: str) -> None:
    # an unreleased record is taken over once it goes stale
    try:
        idem.discard(key)
    except StoreUnavailable:
        logger.warning("idempotency record not released", extra={"key": key})


def _record(idem: IdempotencyStore, key: str, status_code: int, body: dict, order_id: str | None = None) -> None:
    # the outcome is already decided; failing to store it must not change the response
    try:
        idem.finalize(key, status_code, body, order_id=order_id)
    except StoreUnavailable:
        logger.warning("idempotency outcome not stored", extra={"key": key, "order_id": order_id})


@router.get("/", response_model=OrderPageOut)
def list_orders(
    page: int = Query(1),
    page_size: int | None = Query(None),
    repo: OrderRepository = Depends(get_order_repository),
):
    size = page_size or settings.ORDERS_PAGE_SIZE
    size = max(1, min(size, settings.ORDERS_MAX_PAGE_SIZE))
    count, page, rows = repo.list_orders(page, size)
    return OrderPageOut(
        count=count,
        page=page,
        page_size=size,
        results=[OrderSummaryOut.model_validate(r) for r in rows],
    )


@router.get("/statistics", response_model=StatisticsOut)
def get_statistics(stats: SalesStatistics = Depends(get_sales_statistics)):
    return StatisticsOut.model_validate(stats.compute())


@router.get("/{order_id}", response_model=OrderOut)
def retrieve_order(order_id: str, repo: OrderRepository = Depends(get_order_repository)):
    order = repo.get_order(order_id)
    if order is None:
        return JSONResponse({"detail": "NOT_FOUND"}, status_code=404)
    return OrderOut.model_validate(order)
