"""Housekeeping — reclaims space from rows no decision reads any more."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_service.config import settings
from otp_service.database.clock import Clock, DatabaseClock
from otp_service.database.engine import async_session_factory
from otp_service.database.transaction import run_atomic
from otp_service.models.idempotency import IdempotencyRecord
from otp_service.models.otp import OtpRecord
from otp_service.models.rate_limit import IpRateLimit, UserRateLimit

logger = logging.getLogger(__name__)

# Used codes stay around this long for auditing before they are purged
USED_OTP_RETENTION = timedelta(days=1)


@dataclass(frozen=True)
class PurgeReport:
    otps: int
    user_rate_limits: int
    ip_rate_limits: int
    idempotency_keys: int


async def purge_expired(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock | None = None,
) -> PurgeReport:
    """Delete expired OTPs, stale window entries and expired ledger keys.

    Safe to run at any time: every query the engines issue already filters
    these rows out, so purging only reclaims storage.
    """
    clock = clock or DatabaseClock()

    async def work(session: AsyncSession) -> PurgeReport:
        now = await clock.now(session)
        window_start = now - timedelta(seconds=settings.rate_limit_window_seconds)

        otps = await session.execute(
            delete(OtpRecord).where(
                or_(
                    OtpRecord.expires_at < now,
                    OtpRecord.is_used.is_(True)
                    & (OtpRecord.created_at < now - USED_OTP_RETENTION),
                )
            )
        )
        users = await session.execute(
            delete(UserRateLimit).where(UserRateLimit.request_timestamp < window_start)
        )
        ips = await session.execute(
            delete(IpRateLimit).where(IpRateLimit.request_timestamp < window_start)
        )
        keys = await session.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at < now)
        )
        return PurgeReport(
            otps=otps.rowcount,
            user_rate_limits=users.rowcount,
            ip_rate_limits=ips.rowcount,
            idempotency_keys=keys.rowcount,
        )

    report = await run_atomic(session_factory or async_session_factory, work)
    logger.info(
        "Purged %d OTP(s), %d user / %d IP rate-limit entries, %d idempotency key(s)",
        report.otps,
        report.user_rate_limits,
        report.ip_rate_limits,
        report.idempotency_keys,
    )
    return report
