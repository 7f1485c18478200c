"""Verification engine — exactly-once OTP consumption with lockout."""

from __future__ import annotations

import hmac
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_service.config import settings
from otp_service.database.clock import Clock, DatabaseClock
from otp_service.database.engine import async_session_factory
from otp_service.database.repository import OtpRepository
from otp_service.database.transaction import run_atomic
from otp_service.errors import (
    CodeUsed,
    InvalidCode,
    OtpExpired,
    OtpNotFound,
    OtpServiceError,
    TooManyAttempts,
)
from otp_service.services.otp_state import OtpState, derive_state, lock_elapsed, seconds_until

logger = logging.getLogger(__name__)


class VerificationEngine:
    """Checks submitted codes against the latest OTP for a pair.

    The record is read under an exclusive lock, so concurrent verifies of
    the same OTP run one after another and see each other's writes. The
    winning match is additionally guarded by a compare-and-set on
    ``is_used``.

    Failures that mutate the record (expiry reclaim, attempt counting,
    lockout) are raised only after the unit has committed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
        max_attempts: int | None = None,
        lockout_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self._clock = clock or DatabaseClock()
        self._max_attempts = max_attempts or settings.otp_max_attempts
        self._lockout_seconds = lockout_seconds or settings.otp_lockout_seconds

    async def verify(self, user_id: str, purpose: str, code: str) -> None:
        """Consume the OTP for ``(user_id, purpose)`` if *code* matches.

        Returns ``None`` on success; every other outcome raises an
        :class:`~otp_service.errors.OtpServiceError` subclass.
        """
        failure = await run_atomic(
            self._session_factory, lambda session: self._evaluate(session, user_id, purpose, code)
        )
        if failure is not None:
            raise failure
        logger.info("OTP verified for %s:%s", user_id, purpose)

    async def _evaluate(
        self, session: AsyncSession, user_id: str, purpose: str, code: str
    ) -> OtpServiceError | None:
        now = await self._clock.now(session)
        repo = OtpRepository(session)

        record = await repo.find_latest_for_update(user_id, purpose)
        if record is None:
            return OtpNotFound()

        state = derive_state(record, now)

        if state is OtpState.USED:
            return CodeUsed()

        if state is OtpState.EXPIRED:
            await repo.retire(record)
            logger.info("OTP %s for %s:%s expired, retired", record.id, user_id, purpose)
            return OtpExpired()

        if state is OtpState.LOCKED:
            return TooManyAttempts(seconds_until(record.locked_until, now))

        if lock_elapsed(record, now):
            await repo.unlock(record)
            logger.info("Lock on OTP %s elapsed, attempts reset", record.id)

        if hmac.compare_digest(record.code.encode(), code.encode()):
            if not await repo.mark_used_if_unused(record):
                return CodeUsed()
            return None

        attempts = await repo.record_failed_attempt(
            record, now, self._max_attempts, self._lockout_seconds
        )
        if record.is_locked:
            logger.warning(
                "OTP %s for %s:%s locked for %ds after %d failed attempts",
                record.id,
                user_id,
                purpose,
                self._lockout_seconds,
                attempts,
            )
            return TooManyAttempts(self._lockout_seconds)
        logger.info("Invalid code for %s:%s (attempt %d)", user_id, purpose, attempts)
        return InvalidCode(self._max_attempts - attempts)
