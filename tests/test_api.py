"""Tests for the OTP HTTP API."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from otp_service.api.router import get_issuance_engine, get_verification_engine
from otp_service.config import settings
from otp_service.errors import StorageError
from otp_service.main import app


@pytest_asyncio.fixture
async def client(issuer, verifier):
    app.dependency_overrides[get_issuance_engine] = lambda: issuer
    app.dependency_overrides[get_verification_engine] = lambda: verifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _request(client, user_id="U1", key="key-1", ip="1.1.1.1"):
    return await client.post(
        "/otp/request",
        json={"user_id": user_id, "purpose": "login"},
        headers={"Idempotency-Key": key, "X-Forwarded-For": f"{ip}, 10.0.0.1"},
    )


async def _verify(client, code, user_id="U1"):
    return await client.post(
        "/otp/verify", json={"user_id": user_id, "purpose": "login", "code": code}
    )


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_request_then_replay(client):
    first = await _request(client)
    assert first.status_code == 201
    body = first.json()
    assert body["ttl"] == 300
    assert body["remaining_requests"] == 2
    assert "code" not in body

    replay = await _request(client)
    assert replay.status_code == 200
    assert replay.content == first.content


@pytest.mark.asyncio
async def test_request_requires_fields_and_key(client):
    resp = await client.post("/otp/request", json={"user_id": "U1", "purpose": "login"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "missing_required_fields"}

    resp = await client.post(
        "/otp/request", json={"user_id": "U1"}, headers={"Idempotency-Key": "k"}
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_rate_limit_response(client):
    for n in range(3):
        assert (await _request(client, key=f"key-{n}")).status_code == 201

    resp = await _request(client, key="key-3")
    assert resp.status_code == 429
    assert resp.json() == {"error": "rate_limit_exceeded", "remaining_cooldown_seconds": 900}


@pytest.mark.asyncio
async def test_forwarded_header_is_ignored_by_default(client):
    # Rotating X-Forwarded-For from one peer must not dodge the IP limit.
    for n in range(8):
        resp = await _request(client, user_id=f"U{n}", key=f"k{n}", ip=f"9.9.9.{n}")
        assert resp.status_code == 201
    resp = await _request(client, user_id="U8", key="k8", ip="9.9.9.8")
    assert resp.status_code == 429
    assert resp.json()["error"] == "rate_limit_exceeded"


@pytest.mark.asyncio
async def test_forwarded_ip_is_rate_limited_per_first_hop(client, monkeypatch):
    monkeypatch.setattr(settings, "trust_forwarded_for", True)
    for n in range(8):
        assert (await _request(client, user_id=f"U{n}", key=f"k{n}", ip="5.5.5.5")).status_code == 201
    assert (await _request(client, user_id="U8", key="k8", ip="5.5.5.5")).status_code == 429
    assert (await _request(client, user_id="U8", key="k9", ip="6.6.6.6")).status_code == 201


@pytest.mark.asyncio
async def test_idempotency_conflict_response(client):
    await _request(client, user_id="U1", key="shared")
    resp = await _request(client, user_id="U2", key="shared")
    assert resp.status_code == 409
    assert resp.json() == {"error": "idempotency_conflict"}


@pytest.mark.asyncio
async def test_verify_flow(client, delivery):
    resp = await _verify(client, "123456")
    assert resp.status_code == 404
    assert resp.json() == {"error": "otp_not_found"}

    await _request(client)
    code = delivery.last_code("U1")
    wrong = "000000" if code != "000000" else "111111"

    resp = await _verify(client, wrong)
    assert resp.status_code == 401
    assert resp.json() == {"error": "invalid_code", "attempts_remaining": 2}

    resp = await _verify(client, code)
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "verification_successful"}

    resp = await _verify(client, code)
    assert resp.status_code == 410
    assert resp.json() == {"error": "code_used"}


@pytest.mark.asyncio
async def test_verify_lockout_and_expiry(client, delivery, clock):
    await _request(client)
    code = delivery.last_code("U1")
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(2):
        await _verify(client, wrong)
    resp = await _verify(client, wrong)
    assert resp.status_code == 429
    assert resp.json() == {"error": "too_many_attempts", "retry_after_seconds": 600}

    clock.advance(601)
    resp = await _verify(client, code)
    assert resp.status_code == 410
    assert resp.json() == {"error": "otp_expired"}


@pytest.mark.asyncio
async def test_storage_failure_is_generic_500(client, issuer, monkeypatch):
    async def broken(*args, **kwargs):
        raise StorageError("storage failure")

    monkeypatch.setattr(issuer, "issue", broken)
    resp = await _request(client)
    assert resp.status_code == 500
    assert resp.json() == {"error": "internal_server_error"}
