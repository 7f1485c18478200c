"""Scenario simulator — replays a morning of OTP traffic against a manual clock."""

import asyncio
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy.ext.asyncio import async_sessionmaker

from otp_service.database.clock import ManualClock
from otp_service.database.engine import build_engine, init_db
from otp_service.errors import OtpServiceError
from otp_service.services.issuance import IssuanceEngine
from otp_service.services.verification import VerificationEngine

GREEN = "\033[92m"
RED = "\033[91m"
CYAN = "\033[96m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

START = datetime(2025, 1, 1, 8, 0, 0, tzinfo=UTC)

# (clock time, user, ip, action, code)
SCENARIO = [
    ("08:00:00", "U1", "1.1.1.1", "request", None),
    ("08:03:00", "U1", "1.1.1.1", "request", None),
    ("08:04:00", "U1", None, "verify", "000000"),
    ("08:04:20", "U1", None, "verify", "000000"),
    ("08:04:40", "U1", None, "verify_concurrent", "CORRECT"),
    ("08:05:10", "U1", "1.1.1.1", "request", None),
    ("08:07:00", "U2", "1.1.1.1", "request", None),
    ("08:12:00", "U1", "1.1.1.1", "request", None),
]


class CapturingDelivery:
    """Keeps the last delivered code per user so the simulator can 'read the SMS'."""

    def __init__(self) -> None:
        self.codes: dict[tuple[str, str], str] = {}

    async def deliver(self, user_id: str, purpose: str, code: str) -> None:
        self.codes[(user_id, purpose)] = code
        print(f"   {DIM}[delivered {code} to {user_id}]{RESET}")


def _at(clock_time: str) -> datetime:
    hours, minutes, seconds = (int(part) for part in clock_time.split(":"))
    return START.replace(hour=hours, minute=minutes, second=seconds)


async def _attempt(coro) -> str:
    try:
        result = await coro
    except OtpServiceError as exc:
        return f"{RED}{exc.to_payload()}{RESET}"
    if result is None:
        return f"{GREEN}verification_successful{RESET}"
    return f"{GREEN}{result.to_payload()}{' (replay)' if result.replayed else ''}{RESET}"


async def main() -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print("  🔐  OTP Service — Scenario Simulator")
    print(f"{'=' * 52}{RESET}\n")

    with tempfile.TemporaryDirectory() as tmp:
        engine = build_engine(f"sqlite+aiosqlite:///{Path(tmp) / 'simulator.db'}")
        await init_db(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)

        clock = ManualClock(START)
        delivery = CapturingDelivery()
        issuer = IssuanceEngine(session_factory, clock=clock, delivery=delivery)
        verifier = VerificationEngine(session_factory, clock=clock)

        for index, (clock_time, user, ip, action, code) in enumerate(SCENARIO, start=1):
            clock.set(_at(clock_time))
            print(f"{CYAN}{index}. {clock_time}{RESET} {user} → {action}")

            if action == "request":
                outcome = await _attempt(
                    issuer.issue(user, "login", f"sim-{user}-{clock_time}", ip)
                )
                print(f"   {outcome}")
                continue

            if code == "CORRECT":
                code = delivery.codes.get((user, "login"), "000000")

            if action == "verify_concurrent":
                outcomes = await asyncio.gather(
                    _attempt(verifier.verify(user, "login", code)),
                    _attempt(verifier.verify(user, "login", code)),
                )
                for outcome in outcomes:
                    print(f"   {outcome}")
            else:
                print(f"   {await _attempt(verifier.verify(user, 'login', code))}")

        await engine.dispose()

    print(f"\n{DIM}Done.{RESET}")


if __name__ == "__main__":
    asyncio.run(main())
