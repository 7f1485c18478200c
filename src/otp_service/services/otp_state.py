"""OTP lifecycle states, derived from the stored flags."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from otp_service.models.otp import OtpRecord


class OtpState(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"
    EXPIRED = "expired"
    USED = "used"


def derive_state(record: OtpRecord, now: datetime) -> OtpState:
    """Return the lifecycle state of *record* as seen at *now*.

    Precedence is used, then expired, then locked. A record whose lock has
    elapsed is ``ACTIVE``; see :func:`lock_elapsed` for whether the stale
    lock flags still need clearing.
    """
    if record.is_used:
        return OtpState.USED
    if record.expires_at < now:
        return OtpState.EXPIRED
    if record.is_locked and record.locked_until is not None and record.locked_until > now:
        return OtpState.LOCKED
    return OtpState.ACTIVE


def lock_elapsed(record: OtpRecord, now: datetime) -> bool:
    """``True`` if the record still carries a lock whose time has passed."""
    return record.is_locked and (record.locked_until is None or record.locked_until <= now)


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds from *now* to *moment*, rounded up, never negative."""
    return max(0, math.ceil((moment - now).total_seconds()))
