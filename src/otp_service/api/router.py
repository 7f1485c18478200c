"""OTP HTTP API — thin transport over the issuance and verification engines.

Endpoints
---------
POST /otp/request   → issue (or replay) an OTP; needs ``Idempotency-Key``
POST /otp/verify    → consume an OTP with the delivered code
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from otp_service.config import settings
from otp_service.errors import (
    CodeUsed,
    IdempotencyConflict,
    InvalidCode,
    OtpExpired,
    OtpNotFound,
    OtpServiceError,
    RateLimited,
    StorageError,
    TooManyAttempts,
)
from otp_service.services.issuance import IssuanceEngine
from otp_service.services.verification import VerificationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])

# ── Shared instances (created once, reused across requests) ──
_issuance_engine = IssuanceEngine()
_verification_engine = VerificationEngine()


def get_issuance_engine() -> IssuanceEngine:
    return _issuance_engine


def get_verification_engine() -> VerificationEngine:
    return _verification_engine


_STATUS_CODES: dict[type[OtpServiceError], int] = {
    RateLimited: 429,
    IdempotencyConflict: 409,
    OtpNotFound: 404,
    OtpExpired: 410,
    CodeUsed: 410,
    InvalidCode: 401,
    TooManyAttempts: 429,
    StorageError: 500,
}


def error_response(exc: OtpServiceError) -> JSONResponse:
    """Render a domain error as its JSON body and status code."""
    status = _STATUS_CODES.get(type(exc), 500)
    if status == 500:
        return JSONResponse(status_code=500, content={"error": "internal_server_error"})
    return JSONResponse(status_code=status, content=exc.to_payload())


def _missing_fields() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "missing_required_fields"})


def client_ip(request: Request) -> str:
    """Resolve the caller's IP: socket peer, or the first forwarded hop when
    ``trust_forwarded_for`` is set; loopback if neither is known.
    """
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


# ── Request / response models ────────────────────────────

class OTPRequestBody(BaseModel):
    user_id: str = ""
    purpose: str = Field(default="", max_length=100)


class OTPRequestResponse(BaseModel):
    otp_id: str
    ttl: int
    remaining_requests: int


class OTPVerifyBody(BaseModel):
    user_id: str = ""
    purpose: str = ""
    code: str = ""


class OTPVerifyResponse(BaseModel):
    success: bool
    message: str


# ── Endpoints ────────────────────────────────────────────

@router.post("/request", response_model=OTPRequestResponse, status_code=201)
async def request_otp(
    body: OTPRequestBody,
    request: Request,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    engine: IssuanceEngine = Depends(get_issuance_engine),
):
    """Issue an OTP; a repeated ``Idempotency-Key`` replays the first answer."""
    if not body.user_id or not body.purpose or not idempotency_key:
        return _missing_fields()

    try:
        result = await engine.issue(
            body.user_id, body.purpose, idempotency_key, client_ip(request)
        )
    except OtpServiceError as exc:
        return error_response(exc)

    return JSONResponse(
        status_code=200 if result.replayed else 201, content=result.to_payload()
    )


@router.post("/verify", response_model=OTPVerifyResponse)
async def verify_otp(
    body: OTPVerifyBody,
    engine: VerificationEngine = Depends(get_verification_engine),
):
    """Verify a code; the first correct submission wins."""
    if not body.user_id or not body.purpose or not body.code:
        return _missing_fields()

    try:
        await engine.verify(body.user_id, body.purpose, body.code)
    except OtpServiceError as exc:
        return error_response(exc)

    return OTPVerifyResponse(success=True, message="verification_successful")
