"""Rolling-window rate limiter over append-only request logs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from otp_service.config import settings
from otp_service.errors import RateLimited
from otp_service.models.rate_limit import IpRateLimit, UserRateLimit
from otp_service.services.otp_state import seconds_until

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    """Outcome of a successful window check."""

    key: str
    count: int
    limit: int

    @property
    def remaining(self) -> int:
        """Quota left once this request is recorded."""
        return self.limit - self.count - 1


class RateLimiter:
    """Sliding-window limiter for one scope (user or IP).

    The window is recomputed from raw timestamps on every call, so there is
    no decay job and no refill burst at bucket edges. Old rows only cost
    space; the window query ignores them.
    """

    def __init__(
        self,
        model: type[UserRateLimit] | type[IpRateLimit],
        key_column: str,
        limit: int,
        window_seconds: int | None = None,
        scope: str = "user",
    ) -> None:
        self._model = model
        self._key_column = getattr(model, key_column)
        self._key_name = key_column
        self.limit = limit
        self.window = timedelta(seconds=window_seconds or settings.rate_limit_window_seconds)
        self.scope = scope

    async def check(self, session: AsyncSession, key: str, now: datetime) -> Admission:
        """Count the window for *key*; raise :class:`RateLimited` when full.

        Nothing is written. Rows inside the window are locked so a
        concurrent unit for the same key counts after this one commits.
        """
        since = now - self.window
        window = (
            select(self._model.request_timestamp)
            .where(self._key_column == key, self._model.request_timestamp >= since)
            .order_by(self._model.request_timestamp.asc())
            .with_for_update()
        )
        timestamps = list((await session.scalars(window)).all())
        count = len(timestamps)
        if count >= self.limit:
            cooldown = seconds_until(timestamps[0] + self.window, now)
            logger.warning(
                "Rate limit hit for %s %s (%d/%d), cooldown %ds",
                self.scope,
                key,
                count,
                self.limit,
                cooldown,
            )
            raise RateLimited(cooldown, scope=self.scope)
        return Admission(key=key, count=count, limit=self.limit)

    async def record(self, session: AsyncSession, key: str, now: datetime) -> None:
        """Append one request for *key* at *now*."""
        session.add(self._model(**{self._key_name: key, "request_timestamp": now}))
        await session.flush()

    async def admit(self, session: AsyncSession, key: str, now: datetime) -> int:
        """Check and record in one step; return the remaining quota."""
        admission = await self.check(session, key, now)
        await self.record(session, key, now)
        return admission.remaining


def user_limiter() -> RateLimiter:
    return RateLimiter(UserRateLimit, "user_id", settings.user_rate_limit, scope="user")


def ip_limiter() -> RateLimiter:
    return RateLimiter(IpRateLimit, "ip_address", settings.ip_rate_limit, scope="ip")
