"""Bookstore order service built with FastAPI.

``create_app`` builds the engine once, stores it and its session factory
on ``app.state`` and mounts the routers. Run it with
``uvicorn --factory bookstore.main:create_app`` or ``bookstore-serve``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from .db import init_db, make_engine, make_session_factory, wait_for_db
from .gateway.logging_filters import configure_logging
from .gateway.middleware import api_size_limit_middleware, request_id_middleware
from .monitoring.api import router as monitoring_router
from .orders.domain import OrderError
from .orders.views import error_response, router as orders_router

logger = logging.getLogger(__name__)


async def _order_error_handler(_request: Request, exc: OrderError):
    return error_response(exc)


async def _validation_error_handler(_request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        {"detail": "INVALID_REQUEST", "message": "Malformed request", "errors": errors},
        status_code=400,
    )


async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse({"detail": "INTERNAL_ERROR"}, status_code=500)


def create_app(database_url: str | None = None, engine: Engine | None = None, create_schema: bool = True) -> FastAPI:
    """Build the application.

    Args:
        database_url: SQLAlchemy URL; defaults to ``settings.DATABASE_URL``.
        engine: Prebuilt engine, takes precedence over ``database_url``.
        create_schema: Create missing tables on startup.
    """
    configure_logging()
    engine = engine or make_engine(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        wait_for_db(engine)
        if create_schema:
            init_db(engine)
        yield
        engine.dispose()

    app = FastAPI(title="Bookstore Orders", lifespan=lifespan)
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    app.middleware("http")(api_size_limit_middleware)
    app.middleware("http")(request_id_middleware)

    app.add_exception_handler(OrderError, _order_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(monitoring_router)
    app.include_router(orders_router)
    return app
