"""Delivery hand-off — passes generated codes to the outside world."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class CodeDelivery(Protocol):
    """Receives every freshly issued code once its OTP is committed."""

    async def deliver(self, user_id: str, purpose: str, code: str) -> None: ...


class LogDelivery:
    """Hands the code off through the log.

    In a real system this would dispatch an SMS; here the code is logged
    so the delivery collaborator (or an operator) can pick it up.
    """

    async def deliver(self, user_id: str, purpose: str, code: str) -> None:
        logger.info("OTP for %s:%s = %s", user_id, purpose, code)
