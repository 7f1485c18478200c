"""Issuance engine — idempotent, rate-limited OTP creation."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_service.config import settings
from otp_service.database.clock import Clock, DatabaseClock
from otp_service.database.engine import async_session_factory
from otp_service.database.repository import OtpRepository
from otp_service.database.transaction import run_atomic
from otp_service.models.otp import OTP_CODE_LENGTH
from otp_service.services.delivery import CodeDelivery, LogDelivery
from otp_service.services.idempotency import IdempotencyLedger
from otp_service.services.rate_limiter import RateLimiter, ip_limiter, user_limiter

logger = logging.getLogger(__name__)


def generate_code(length: int = OTP_CODE_LENGTH) -> str:
    """Uniform random numeric code, zero-padded to *length* digits."""
    return str(secrets.randbelow(10**length)).zfill(length)


@dataclass(frozen=True)
class IssueResult:
    """Caller-visible outcome of :meth:`IssuanceEngine.issue`.

    ``replayed`` is ``True`` when the payload came from the idempotency
    ledger rather than from a new OTP.
    """

    otp_id: str
    ttl: int
    remaining_requests: int
    replayed: bool = False

    def to_payload(self) -> dict:
        return {
            "otp_id": self.otp_id,
            "ttl": self.ttl,
            "remaining_requests": self.remaining_requests,
        }

    @classmethod
    def from_payload(cls, payload: dict, *, replayed: bool) -> IssueResult:
        return cls(
            otp_id=payload["otp_id"],
            ttl=payload["ttl"],
            remaining_requests=payload["remaining_requests"],
            replayed=replayed,
        )


@dataclass(frozen=True)
class _Issued:
    result: IssueResult
    code: str | None = None


class IssuanceEngine:
    """Issues OTPs behind idempotency and rolling rate limits.

    One call runs as one atomic unit: ledger lookup, user and IP window
    checks, recording both entries, retiring any pending OTP, inserting the
    new one and recording the ledger entry. The code is handed to the
    delivery collaborator only after that unit commits.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
        delivery: CodeDelivery | None = None,
        user_rate_limiter: RateLimiter | None = None,
        ip_rate_limiter: RateLimiter | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self._clock = clock or DatabaseClock()
        self._delivery = delivery or LogDelivery()
        self._user_limiter = user_rate_limiter or user_limiter()
        self._ip_limiter = ip_rate_limiter or ip_limiter()
        self._ttl = ttl_seconds or settings.otp_ttl_seconds

    async def issue(
        self, user_id: str, purpose: str, idempotency_key: str, client_ip: str
    ) -> IssueResult:
        """Issue a new OTP for ``(user_id, purpose)`` or replay a prior one.

        Raises :class:`~otp_service.errors.RateLimited` when either window
        is full, :class:`~otp_service.errors.IdempotencyConflict` when the
        key belongs to another pair.
        """

        async def work(session: AsyncSession) -> _Issued:
            now = await self._clock.now(session)
            ledger = IdempotencyLedger(session)

            prior = await ledger.lookup(idempotency_key, now, user_id, purpose)
            if prior is not None:
                return _Issued(IssueResult.from_payload(prior, replayed=True))

            user_admission = await self._user_limiter.check(session, user_id, now)
            await self._ip_limiter.check(session, client_ip, now)
            await self._user_limiter.record(session, user_id, now)
            await self._ip_limiter.record(session, client_ip, now)

            repo = OtpRepository(session)
            retired = await repo.invalidate_unused(user_id, purpose)
            if retired:
                logger.info("Superseded OTP(s) %s for %s:%s", retired, user_id, purpose)

            code = generate_code()
            record = await repo.create(user_id, purpose, code, now, self._ttl)
            result = IssueResult(
                otp_id=str(record.id),
                ttl=self._ttl,
                remaining_requests=user_admission.remaining,
            )
            await ledger.record(idempotency_key, user_id, purpose, result.to_payload(), now)
            return _Issued(result, code)

        issued = await run_atomic(self._session_factory, work)

        if issued.result.replayed:
            logger.info(
                "Replayed issuance for %s:%s (key %s, otp %s)",
                user_id,
                purpose,
                idempotency_key,
                issued.result.otp_id,
            )
            return issued.result

        logger.info(
            "Issued OTP %s for %s:%s from %s (%d request(s) left)",
            issued.result.otp_id,
            user_id,
            purpose,
            client_ip,
            issued.result.remaining_requests,
        )
        try:
            await self._delivery.deliver(user_id, purpose, issued.code)
        except Exception:
            logger.exception("Delivery of OTP %s failed", issued.result.otp_id)
        return issued.result
