"""Atomic units of work over a pooled async session."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_service.config import settings
from otp_service.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def _is_retryable(exc: SQLAlchemyError) -> bool:
    """Return ``True`` if re-running the whole unit may succeed."""
    if isinstance(exc, IntegrityError):
        return True
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        return sqlstate in _RETRYABLE_SQLSTATES
    return False


async def run_atomic(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: int | None = None,
) -> T:
    """Run *work* inside one transaction and return its result.

    The session (and its pooled connection) is released on every exit
    path. Any exception rolls the whole unit back. Integrity conflicts and
    serialization failures re-run *work* from scratch on a fresh session;
    other storage failures surface as :class:`StorageError`. Domain errors
    raised by *work* propagate unchanged.
    """
    attempts = attempts or settings.transaction_retries
    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await work(session)
        except SQLAlchemyError as exc:
            if _is_retryable(exc) and attempt < attempts:
                logger.warning(
                    "Atomic unit conflicted (attempt %d/%d), retrying: %s",
                    attempt,
                    attempts,
                    exc.__class__.__name__,
                )
                continue
            logger.exception("Atomic unit failed after %d attempt(s)", attempt)
            raise StorageError("storage failure") from exc
    raise StorageError("no attempts made")
