"""
Bounded retry for transient storage contention.

Wraps service coroutines that open and commit their own unit of work. On a
transient failure the session is rolled back, so nothing from the failed
attempt survives, and the whole operation runs again after a backoff.
"""

import asyncio
import functools
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from ordercore.config import settings
from ordercore.core.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


def is_transient(exc: Exception) -> bool:
    """Lock timeouts, serialization failures, dropped connections."""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, IntegrityError):
        # Two writers creating the same financial-year counter row
        message = str(exc.orig)
        return "document_sequences" in message or "uq_document_type_fy" in message
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


def retry_on_contention(func):
    """
    Retry a service method a bounded number of times on transient errors.

    The decorated method must belong to an object with a ``db`` session
    attribute. Once attempts are exhausted a ``StorageUnavailableError`` is
    raised; state is exactly what it was before the first attempt.
    """

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        attempts = max(1, settings.DB_RETRY_ATTEMPTS)
        delay = settings.DB_RETRY_BACKOFF_SECONDS

        for attempt in range(1, attempts + 1):
            try:
                return await func(self, *args, **kwargs)
            except (OperationalError, DBAPIError) as e:
                if not is_transient(e):
                    raise
                await self.db.rollback()
                if attempt == attempts:
                    logger.error(
                        f"{func.__qualname__} failed after {attempts} attempts: {e}"
                    )
                    raise StorageUnavailableError(
                        "Storage temporarily unavailable, retry the operation",
                        details={"operation": func.__name__, "attempts": attempts},
                    ) from e
                logger.warning(
                    f"{func.__qualname__} transient storage error "
                    f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
                delay *= 2

    return wrapper
