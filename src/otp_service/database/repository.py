"""OTP repository — data access layer for OTP records."""

from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from otp_service.models.otp import OtpRecord


class OtpRepository:
    """Encapsulates all queries and state transitions on ``otps``.

    Every method runs on the caller's session; atomicity is the caller's
    unit of work. Reads that feed a decision take ``FOR UPDATE`` so a
    concurrent unit on the same rows waits for this one to finish.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_latest_for_update(self, user_id: str, purpose: str) -> OtpRecord | None:
        """Lock and return the record verification should act on.

        The unused record wins if there is one; otherwise the last inserted
        record is returned so a retired code reports as used rather than
        missing. Insert order, not ``created_at``: overlapping units can
        read their clocks out of commit order.
        """
        stmt = (
            select(OtpRecord)
            .where(OtpRecord.user_id == user_id, OtpRecord.purpose == purpose)
            .order_by(OtpRecord.is_used.asc(), OtpRecord.id.desc())
            .limit(1)
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def invalidate_unused(self, user_id: str, purpose: str) -> list[int]:
        """Retire every unused record for the pair, locked or not.

        Returns the ids that were retired.
        """
        stmt = (
            select(OtpRecord.id)
            .where(
                OtpRecord.user_id == user_id,
                OtpRecord.purpose == purpose,
                OtpRecord.is_used.is_(False),
            )
            .with_for_update()
        )
        ids = list((await self._session.scalars(stmt)).all())
        if ids:
            await self._session.execute(
                update(OtpRecord)
                .where(OtpRecord.id.in_(ids))
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
        return ids

    async def create(
        self, user_id: str, purpose: str, code: str, now: datetime, ttl_seconds: int
    ) -> OtpRecord:
        """Insert a fresh active record and return it with its id assigned."""
        record = OtpRecord(
            user_id=user_id,
            purpose=purpose,
            code=code,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            is_used=False,
            is_locked=False,
            locked_until=None,
            attempt_count=0,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def mark_used_if_unused(self, record: OtpRecord) -> bool:
        """Compare-and-set ``is_used`` from false to true.

        Returns ``True`` only for the single caller whose update matched.
        """
        result = await self._session.execute(
            update(OtpRecord)
            .where(OtpRecord.id == record.id, OtpRecord.is_used.is_(False))
            .values(is_used=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        set_committed_value(record, "is_used", True)
        return True

    async def retire(self, record: OtpRecord) -> None:
        """Mark a record used unconditionally (expired reclaim)."""
        record.is_used = True
        await self._session.flush()

    async def unlock(self, record: OtpRecord) -> None:
        """Clear an elapsed lock and reset the attempt counter."""
        record.is_locked = False
        record.locked_until = None
        record.attempt_count = 0
        await self._session.flush()

    async def record_failed_attempt(
        self, record: OtpRecord, now: datetime, max_attempts: int, lockout_seconds: int
    ) -> int:
        """Count a wrong code, locking the record once *max_attempts* is hit.

        Returns the new attempt count.
        """
        record.attempt_count += 1
        if record.attempt_count >= max_attempts:
            record.is_locked = True
            record.locked_until = now + timedelta(seconds=lockout_seconds)
        await self._session.flush()
        return record.attempt_count
