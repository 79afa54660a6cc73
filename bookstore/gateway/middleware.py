"""HTTP middleware that assigns a request identifier and limits body size.

Every incoming request receives a request identifier. The identifier is
read from the incoming ``X-Request-ID`` header when provided by the client,
or generated server-side (UUIDv4) otherwise. It is stored on
``request.state.request_id`` and in a context variable so code running
downstream, including log filters, can access it without passing the
value explicitly. The response carries the same id in ``X-Request-ID``.
"""

import contextvars
import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from .. import settings

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

REQUEST_HEADER = "X-Request-ID"
RESPONSE_HEADER = "X-Request-ID"

logger = logging.getLogger("bookstore.access")


async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get(REQUEST_HEADER) or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers[RESPONSE_HEADER] = rid
        return response
    finally:
        logger.info(
            "request handled",
            extra={"path": request.url.path, "method": request.method, "status": status_code},
        )
        REQUEST_ID_CTX.reset(token)


async def api_size_limit_middleware(request: Request, call_next):
    """Reject ``/api/`` requests whose declared body exceeds ``API_MAX_BYTES``."""
    if request.url.path.startswith("/api/"):
        clen = request.headers.get("content-length")
        if clen and clen.isdigit() and int(clen) > settings.API_MAX_BYTES:
            return JSONResponse({"detail": "PAYLOAD_TOO_LARGE"}, status_code=413)
    return await call_next(request)
