"""Engines running on the store's own clock (the production default)."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from otp_service.database.clock import DatabaseClock
from otp_service.errors import CodeUsed, InvalidCode
from otp_service.services.issuance import IssuanceEngine
from otp_service.services.verification import VerificationEngine


@pytest.mark.asyncio
async def test_now_is_aware_utc(session_factory):
    async with session_factory() as session:
        now = await DatabaseClock().now(session)

    assert now.tzinfo is UTC
    assert abs(now - datetime.now(UTC)) < timedelta(minutes=1)


@pytest.mark.asyncio
async def test_full_flow_on_database_clock(session_factory, delivery):
    issuer = IssuanceEngine(session_factory, delivery=delivery)
    verifier = VerificationEngine(session_factory)

    first = await issuer.issue("U1", "login", "key-1", "1.1.1.1")
    assert not first.replayed
    assert first.remaining_requests == 2

    replay = await issuer.issue("U1", "login", "key-1", "1.1.1.1")
    assert replay.replayed
    assert replay.to_payload() == first.to_payload()
    assert len(delivery.sent) == 1

    code = delivery.last_code("U1")
    wrong = "000000" if code != "000000" else "111111"
    with pytest.raises(InvalidCode) as exc_info:
        await verifier.verify("U1", "login", wrong)
    assert exc_info.value.attempts_remaining == 2

    outcomes = await asyncio.gather(
        *(verifier.verify("U1", "login", code) for _ in range(5)),
        return_exceptions=True,
    )
    assert outcomes.count(None) == 1
    assert sum(isinstance(o, CodeUsed) for o in outcomes) == 4
