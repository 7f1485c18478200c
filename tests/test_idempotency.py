"""Tests for the IdempotencyLedger."""

from datetime import timedelta

import pytest

from otp_service.errors import IdempotencyConflict
from otp_service.services.idempotency import IdempotencyLedger

from conftest import START

RESPONSE = {"otp_id": "1", "ttl": 300, "remaining_requests": 2}


async def _record(session_factory, key, response, now, user_id="U1", purpose="login"):
    async with session_factory() as session:
        async with session.begin():
            await IdempotencyLedger(session).record(key, user_id, purpose, response, now)


async def _lookup(session_factory, key, now, user_id=None, purpose=None):
    async with session_factory() as session:
        async with session.begin():
            return await IdempotencyLedger(session).lookup(key, now, user_id, purpose)


@pytest.mark.asyncio
async def test_lookup_unknown_key(session_factory):
    assert await _lookup(session_factory, "missing", START) is None


@pytest.mark.asyncio
async def test_lookup_returns_stored_response_until_expiry(session_factory):
    await _record(session_factory, "k1", RESPONSE, START)

    assert await _lookup(session_factory, "k1", START + timedelta(seconds=599)) == RESPONSE
    assert await _lookup(session_factory, "k1", START + timedelta(seconds=600)) is None


@pytest.mark.asyncio
async def test_same_payload_is_a_pure_replay(session_factory):
    await _record(session_factory, "k1", RESPONSE, START)
    await _record(session_factory, "k1", dict(RESPONSE), START + timedelta(seconds=30))

    assert await _lookup(session_factory, "k1", START + timedelta(seconds=60)) == RESPONSE


@pytest.mark.asyncio
async def test_different_payload_conflicts(session_factory):
    await _record(session_factory, "k1", RESPONSE, START)
    with pytest.raises(IdempotencyConflict):
        await _record(
            session_factory, "k1", {**RESPONSE, "otp_id": "2"}, START + timedelta(seconds=30)
        )

    assert await _lookup(session_factory, "k1", START + timedelta(seconds=60)) == RESPONSE


@pytest.mark.asyncio
async def test_expired_key_can_be_reused(session_factory):
    await _record(session_factory, "k1", RESPONSE, START)
    fresh = {**RESPONSE, "otp_id": "7"}
    await _record(session_factory, "k1", fresh, START + timedelta(seconds=700))

    assert await _lookup(session_factory, "k1", START + timedelta(seconds=701)) == fresh


@pytest.mark.asyncio
async def test_key_is_scoped_to_its_user_and_purpose(session_factory):
    await _record(session_factory, "k1", RESPONSE, START)

    assert await _lookup(session_factory, "k1", START, "U1", "login") == RESPONSE
    with pytest.raises(IdempotencyConflict):
        await _lookup(session_factory, "k1", START, "U2", "login")
    with pytest.raises(IdempotencyConflict):
        await _lookup(session_factory, "k1", START, "U1", "reset_password")
