"""Database engine setup and transient-failure retry.

Connectivity problems (DNS hiccups, resets, refused connections) are retried a
bounded number of times with linear backoff. When retries run out the caller
gets a :class:`DatabaseTemporaryError`, which the API turns into a retryable
HTTP 503. Logical errors (constraint violations, bad SQL) are never retried.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, ProgrammingError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MARKERS = (
    "eai_again",
    "econnreset",
    "etimedout",
    "econnrefused",
    "enotfound",
    "ehostunreach",
    "epipe",
    "getaddrinfo",
    "could not translate host name",
    "temporary failure in name resolution",
    "name or service not known",
    "connection refused",
    "connection reset",
    "server closed the connection",
    "could not connect",
    "timeout expired",
    "timed out",
    "broken pipe",
    "database is locked",
)


class DatabaseTemporaryError(Exception):
    """The database stayed unreachable after all retry attempts."""

    status_code = 503

    def __init__(self, message: str, original: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.original = original


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.5     # seconds; attempt N waits base_delay * N
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * attempt, self.max_delay)

    @classmethod
    def from_config(cls, db_cfg: Dict[str, Any]) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(db_cfg.get("max_attempts", 5))),
            base_delay=float(db_cfg.get("base_delay", 0.5)),
            max_delay=float(db_cfg.get("max_delay", 8.0)),
        )


def is_retryable_error(exc: BaseException) -> bool:
    """True for transient connectivity failures, False for logical errors."""
    if isinstance(exc, (IntegrityError, ProgrammingError, DataError)):
        return False
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (PoolTimeoutError, ConnectionError, TimeoutError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def execute_with_retry(
    operation: Callable[[], T],
    name: str = "database operation",
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying transient failures with linear backoff."""
    policy = policy or RetryPolicy()
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if not is_retryable_error(e):
                raise
            last_error = e
            logger.warning("[db retry] %s failed (attempt %d/%d): %s", name, attempt, policy.max_attempts, e)
            if attempt < policy.max_attempts:
                sleep(policy.delay(attempt))

    logger.error("[db] %s failed after %d attempts: %s", name, policy.max_attempts, last_error)
    raise DatabaseTemporaryError(
        f"Database temporarily unavailable after {policy.max_attempts} attempts", last_error
    )


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    """Create the single engine (and pool) shared by all requests."""
    parsed = make_url(url)
    kwargs: Dict[str, Any] = {"echo": echo}

    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True, pool_recycle=1800, pool_timeout=15)

    return create_engine(url, **kwargs)


def check_health(engine: Optional[Engine]) -> Dict[str, str]:
    timestamp = datetime.now(timezone.utc).isoformat()
    if engine is None:
        return {"status": "unavailable", "message": "Database not configured", "timestamp": timestamp}
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("[db health] check failed: %s", e)
        return {"status": "unhealthy", "message": "Database connection failed", "timestamp": timestamp}
    return {"status": "healthy", "message": "Database connected", "timestamp": timestamp}
