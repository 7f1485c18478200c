"""Idempotency ledger — replays stored issuance responses by key."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from otp_service.config import settings
from otp_service.errors import IdempotencyConflict
from otp_service.models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


def serialize_response(response: dict) -> str:
    """Canonical JSON for a stored response; equal dicts give equal text."""
    return json.dumps(response, sort_keys=True, separators=(",", ":"))


class IdempotencyLedger:
    """Maps caller-supplied keys to the response of the first issuance.

    Operates on the caller's session so lookup, issuance and recording
    commit or roll back together.
    """

    def __init__(self, session: AsyncSession, ttl_seconds: int | None = None) -> None:
        self._session = session
        self._ttl = timedelta(seconds=ttl_seconds or settings.idempotency_ttl_seconds)

    async def _get(self, key: str) -> IdempotencyRecord | None:
        stmt = (
            select(IdempotencyRecord)
            .where(IdempotencyRecord.idempotency_key == key)
            .with_for_update()
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def lookup(
        self,
        key: str,
        now: datetime,
        user_id: str | None = None,
        purpose: str | None = None,
    ) -> dict | None:
        """Return the stored response for *key* if it has not expired.

        When *user_id* / *purpose* are given they must match the pair the
        key was first used for; a key is never replayed across pairs.
        """
        record = await self._get(key)
        if record is None or record.expires_at <= now:
            return None
        if (user_id is not None and record.user_id != user_id) or (
            purpose is not None and record.purpose != purpose
        ):
            logger.warning(
                "Idempotency key %s reused for %s:%s (recorded for %s:%s)",
                key,
                user_id,
                purpose,
                record.user_id,
                record.purpose,
            )
            raise IdempotencyConflict(key)
        return json.loads(record.response_data)

    async def record(
        self, key: str, user_id: str, purpose: str, response: dict, now: datetime
    ) -> None:
        """Store *response* under *key*.

        Re-recording an identical payload is a no-op. A live key holding a
        different payload raises :class:`IdempotencyConflict`. An expired
        row under the same key is replaced.
        """
        payload = serialize_response(response)
        existing = await self._get(key)
        if existing is not None:
            if existing.expires_at > now:
                if existing.response_data == payload:
                    return
                raise IdempotencyConflict(key)
            await self._session.delete(existing)
            await self._session.flush()

        self._session.add(
            IdempotencyRecord(
                idempotency_key=key,
                user_id=user_id,
                purpose=purpose,
                response_data=payload,
                created_at=now,
                expires_at=now + self._ttl,
            )
        )
        await self._session.flush()
