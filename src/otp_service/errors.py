"""Exceptions raised by the issuance and verification engines.

Every failure a caller can observe derives from :class:`OtpServiceError`.
Domain failures carry the numbers a client needs to schedule a retry;
:class:`StorageError` covers everything the store itself could not do.
"""

from __future__ import annotations


class OtpServiceError(Exception):
    """Base class for every error surfaced by the OTP engines."""

    code = "otp_error"

    def to_payload(self) -> dict:
        """Return the wire representation of this error."""
        return {"error": self.code}


# ── Admission ────────────────────────────────────────────


class RateLimited(OtpServiceError):
    """Too many issuance requests for a user or an IP inside the window."""

    code = "rate_limit_exceeded"

    def __init__(self, remaining_cooldown_seconds: int, scope: str = "user") -> None:
        super().__init__(
            f"{scope} rate limit exceeded, retry in {remaining_cooldown_seconds}s"
        )
        self.remaining_cooldown_seconds = remaining_cooldown_seconds
        self.scope = scope

    def to_payload(self) -> dict:
        return {
            "error": self.code,
            "remaining_cooldown_seconds": self.remaining_cooldown_seconds,
        }


# ── OTP state ────────────────────────────────────────────


class OtpNotFound(OtpServiceError):
    code = "otp_not_found"


class OtpExpired(OtpServiceError):
    code = "otp_expired"


class CodeUsed(OtpServiceError):
    code = "code_used"


class InvalidCode(OtpServiceError):
    """Wrong code supplied; the OTP stays active."""

    code = "invalid_code"

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(f"invalid code, {attempts_remaining} attempt(s) remaining")
        self.attempts_remaining = attempts_remaining

    def to_payload(self) -> dict:
        return {"error": self.code, "attempts_remaining": self.attempts_remaining}


class TooManyAttempts(OtpServiceError):
    """The OTP is locked after repeated wrong codes."""

    code = "too_many_attempts"

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"too many attempts, retry in {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds

    def to_payload(self) -> dict:
        return {"error": self.code, "retry_after_seconds": self.retry_after_seconds}


# ── Conflicts ────────────────────────────────────────────


class IdempotencyConflict(OtpServiceError):
    """An idempotency key was reused for a different request."""

    code = "idempotency_conflict"

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(f"idempotency key {idempotency_key!r} already used")
        self.idempotency_key = idempotency_key


# ── Infrastructure ───────────────────────────────────────


class StorageError(OtpServiceError):
    """The store failed; the atomic unit was rolled back."""

    code = "internal_server_error"
