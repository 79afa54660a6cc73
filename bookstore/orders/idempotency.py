"""Idempotency records for order creation.

This module stores and retrieves idempotency keys so a client can safely
retry ``POST /api/orders/``. It supports creating a record on the first
request, detecting reuse of a key with a different payload, storing the
final response so retries can short-circuit, and discarding a record when
the outcome was transient and the request should run again.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .. import settings
from ..db import get_session
from .domain import OrderError
from .models import IdempotencyKey
from .repository import store_errors

logger = logging.getLogger(__name__)


class IdempotencyConflict(OrderError):
    """The key was already used with a different payload."""

    code = "IDEMPOTENCY_CONFLICT"

    def __init__(self, key: str):
        super().__init__(f"Idempotency key {key!r} was used with a different payload")
        self.key = key

    def attributes(self):
        return {"key": self.key}


class IdempotencyInProgress(OrderError):
    """A request with the same key has not finished yet."""

    code = "IDEMPOTENCY_IN_PROGRESS"

    def __init__(self, key: str):
        super().__init__(f"A request with idempotency key {key!r} is still being processed")
        self.key = key

    def attributes(self):
        return {"key": self.key}


def request_hash(payload) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.

    Args:
        payload: A JSON-serializable value.

    Returns:
        str: Hex-encoded SHA-256 digest of the normalized payload.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class IdempotencyStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_or_create(self, key: str, payload) -> tuple[bool, dict | None]:
        """Get-or-create an idempotency record for the given key and payload.

        Behavior:
            - New key: create an in-flight record and return ``(False, None)``.
            - Known key, same payload, finished: return
              ``(True, {"status": ..., "body": ...})`` for replay.
            - Known key, same payload, still in flight: raise
              ``IdempotencyInProgress``, unless the record is older than
              ``settings.IDEMPOTENCY_STALE_SECS``; a stale record is taken
              over and ``(False, None)`` is returned.
            - Known key, different payload: raise ``IdempotencyConflict``.

        The insert is attempted first; the primary key makes concurrent
        first requests race on the database, and only one of them wins.
        Taking over a stale record is a conditional update, so only one
        retry wins that race as well.
        """
        h = request_hash(payload)
        with store_errors("idempotency_get_or_create", key=key), get_session(self.session_factory) as s:
            try:
                with s.begin():
                    s.add(IdempotencyKey(key=key, request_hash=h, response_status=0, response_body={}))
                return False, None
            except IntegrityError:
                pass

            with s.begin():
                rec = s.get(IdempotencyKey, key)
            if rec is None:
                # discarded between our insert attempt and this read
                return self.get_or_create(key, payload)
            if rec.request_hash != h:
                raise IdempotencyConflict(key)
            if not rec.response_status:
                if self._take_over(s, key):
                    logger.warning("taking over stale idempotency record", extra={"key": key})
                    return False, None
                raise IdempotencyInProgress(key)
            return True, {"status": rec.response_status, "body": rec.response_body}

    def _take_over(self, s, key: str) -> bool:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.IDEMPOTENCY_STALE_SECS)
        with s.begin():
            result = s.execute(
                update(IdempotencyKey)
                .where(
                    IdempotencyKey.key == key,
                    IdempotencyKey.response_status == 0,
                    IdempotencyKey.created_at < cutoff,
                )
                .values(created_at=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    def finalize(self, key: str, status_code: int, body: dict, order_id: str | None = None) -> None:
        """Persist the final response for an idempotent request.

        Args:
            key: The idempotency key being completed.
            status_code: HTTP status code to store for the response.
            body: JSON-serializable response body to persist.
            order_id: Optional order identifier to link to the record.
        """
        with store_errors("idempotency_finalize", key=key), get_session(self.session_factory) as s:
            with s.begin():
                rec = s.get(IdempotencyKey, key)
                if rec is None:
                    logger.warning("idempotency record vanished before finalize", extra={"key": key})
                    return
                rec.response_status = status_code
                rec.response_body = body
                if order_id is not None:
                    rec.order_id = order_id

    def discard(self, key: str) -> None:
        """Remove an in-flight record so the next retry runs again."""
        with store_errors("idempotency_discard", key=key), get_session(self.session_factory) as s:
            with s.begin():
                rec = s.get(IdempotencyKey, key)
                if rec is not None and not rec.response_status:
                    s.delete(rec)
