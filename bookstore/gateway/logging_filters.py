"""Logging setup for the service.

Records are rendered as JSON by python-json-logger. ``RequestIdFilter``
injects the current request id from the ContextVar set by the gateway
middleware, so log lines can be correlated per request without touching
individual log statements.
"""

import logging
from logging import Filter, LogRecord

from pythonjsonlogger import jsonlogger

from .. import settings
from .middleware import REQUEST_ID_CTX

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    Outside a request the value is a hyphen ("-") so formatters can always
    reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        return True


def configure_logging(name: str = "bookstore") -> logging.Logger:
    """Attach the JSON handler to the ``name`` logger once and set its level."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        h.addFilter(RequestIdFilter())
        logger.addHandler(h)
    logger.setLevel(settings.LOG_LEVEL)
    return logger
