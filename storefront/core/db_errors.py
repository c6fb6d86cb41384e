"""Shared helpers for database error handling and transient-failure retries."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings

T = TypeVar("T")

MYSQL_LOCK_NOWAIT = 3572
MYSQL_RETRIABLE_ERROR_CODES = {1205, 1213, MYSQL_LOCK_NOWAIT}
MYSQL_RETRIABLE_SQLSTATES = {"40001"}


def _extract_error_code(exc: DBAPIError | OperationalError) -> tuple[int | None, str | None]:
    orig = getattr(exc, "orig", None)
    if not orig:
        return None, None
    code = None
    sqlstate = getattr(orig, "sqlstate", None)
    if getattr(orig, "args", None):
        try:
            code = int(orig.args[0])
        except (TypeError, ValueError):
            code = None
    return code, sqlstate


def _message(exc: Exception) -> str:
    return str(getattr(exc, "orig", exc)).lower()


def raise_on_lock_conflict(exc: OperationalError) -> None:
    """Translate lock-nowait conflicts into user-friendly HTTP errors."""

    code, _ = _extract_error_code(exc)
    message = _message(exc)
    if code == MYSQL_LOCK_NOWAIT or "could not obtain lock" in message or "could not acquire" in message:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Resource is locked by another request. Please retry shortly.",
        ) from exc
    raise exc


def _is_retriable(exc: DBAPIError | OperationalError) -> bool:
    code, sqlstate = _extract_error_code(exc)
    if code == MYSQL_LOCK_NOWAIT and settings.DB_NOWAIT_LOCKS:
        return False  # NOWAIT conflicts surface immediately as 409
    if code in MYSQL_RETRIABLE_ERROR_CODES:
        return True
    if sqlstate in MYSQL_RETRIABLE_SQLSTATES:
        return True
    message = _message(exc)
    return "deadlock" in message or "lock wait timeout" in message


async def with_db_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    label: str = "db_operation",
    attempts: int | None = None,
    base_delay: float | None = None,
    jitter: float | None = None,
) -> T:
    """Run the async unit of work, retrying deadlocks and lock-wait timeouts.

    The session is rolled back between attempts so every retry starts from a
    clean transaction. Non-retriable errors propagate untouched.
    """

    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    base_delay = base_delay if base_delay is not None else settings.DB_RETRY_BASE_DELAY
    jitter = jitter if jitter is not None else settings.DB_RETRY_JITTER
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except (OperationalError, DBAPIError) as exc:
            if not _is_retriable(exc):
                raise
            last_error = exc
            await session.rollback()
            sleep_for = base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)
            logger.bind(
                label=label,
                attempt=attempt,
                max_attempts=attempts,
                sleep=sleep_for,
                error=str(exc),
            ).warning("db_retry_transient_failure")
            await asyncio.sleep(sleep_for)
    if last_error is not None:
        raise last_error
    raise RuntimeError("Operation failed without raising an exception")
