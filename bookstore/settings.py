"""Runtime configuration read from the environment.

Values are plain module-level constants. Code reads them as
``settings.NAME`` at call time (not ``from settings import NAME``) so
tests can override a value with ``monkeypatch.setattr``.
"""

import os

DB_HOST = os.getenv("DB_HOST", "bookstore-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "bookstore")
DB_USER = os.getenv("DB_USER", "bookstore_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "bookstore-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# Startup waits this long for the database to accept connections
DB_CONNECT_TIMEOUT_SECS = float(os.getenv("DB_CONNECT_TIMEOUT_SECS", "30"))
# SQLite only: how long a writer waits on a locked database file
DB_BUSY_TIMEOUT_SECS = float(os.getenv("DB_BUSY_TIMEOUT_SECS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

# Re-plan attempts after a commit-time stock conflict
ORDER_CONFLICT_RETRIES = int(os.getenv("ORDER_CONFLICT_RETRIES", "2"))
ORDER_RETRY_BACKOFF_BASE = float(os.getenv("ORDER_RETRY_BACKOFF_BASE", "0.05"))
ORDER_RETRY_MAX_SLEEP = float(os.getenv("ORDER_RETRY_MAX_SLEEP", "0.5"))

ORDERS_PAGE_SIZE = int(os.getenv("ORDERS_PAGE_SIZE", "20"))
ORDERS_MAX_PAGE_SIZE = int(os.getenv("ORDERS_MAX_PAGE_SIZE", "100"))

# An in-flight idempotency record older than this is taken over by a retry
IDEMPOTENCY_STALE_SECS = float(os.getenv("IDEMPOTENCY_STALE_SECS", "300"))
