"""Time sources.

Decisions are taken against the store's clock rather than the host's, so
several service instances with skewed clocks still agree on windows,
expiries and lockouts.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession


class Clock(Protocol):
    """Supplies the single "now" used by one atomic unit."""

    async def now(self, session: AsyncSession) -> datetime: ...


class DatabaseClock:
    """Read the current UTC time from the database server."""

    async def now(self, session: AsyncSession) -> datetime:
        dialect = session.bind.dialect.name
        if dialect == "sqlite":
            raw = await session.scalar(
                select(func.strftime("%Y-%m-%d %H:%M:%f", "now"))
            )
            return datetime.fromisoformat(raw).replace(tzinfo=UTC)
        if dialect in ("mysql", "mariadb"):
            value = await session.scalar(select(func.utc_timestamp(6)))
        else:
            value = await session.scalar(select(func.now()))
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class ManualClock:
    """A clock that only moves when told to (simulations and tests)."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, 8, 0, tzinfo=UTC)

    async def now(self, session: AsyncSession | None = None) -> datetime:
        return self._now

    @property
    def current(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward by *seconds* and return the new time."""
        self._now += timedelta(seconds=seconds)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment
