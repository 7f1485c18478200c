"""Cleanup script — purges expired OTPs, stale rate-limit rows and ledger keys."""

import asyncio

from otp_service.database.engine import engine, init_db
from otp_service.services.maintenance import purge_expired


async def cleanup() -> None:
    """Run one housekeeping pass against the configured database."""
    await init_db()
    report = await purge_expired()
    await engine.dispose()
    print(
        f"🧹 Purged {report.otps} OTP(s), "
        f"{report.user_rate_limits + report.ip_rate_limits} rate-limit entries, "
        f"{report.idempotency_keys} idempotency key(s)."
    )


if __name__ == "__main__":
    asyncio.run(cleanup())
