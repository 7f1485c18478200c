"""Shared fixtures: a file-backed SQLite database per test and a manual clock."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from otp_service.database.clock import ManualClock
from otp_service.database.engine import build_engine, init_db
from otp_service.services.issuance import IssuanceEngine
from otp_service.services.verification import VerificationEngine

START = datetime(2025, 1, 1, 8, 0, 0, tzinfo=UTC)


class RecordingDelivery:
    """Captures delivered codes instead of sending them anywhere."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def deliver(self, user_id: str, purpose: str, code: str) -> None:
        self.sent.append((user_id, purpose, code))

    def last_code(self, user_id: str, purpose: str = "login") -> str:
        for sent_user, sent_purpose, code in reversed(self.sent):
            if (sent_user, sent_purpose) == (user_id, purpose):
                return code
        raise LookupError(f"no code delivered to {user_id}:{purpose}")


# ── Database ─────────────────────────────────────────────
# File-backed (not :memory:) so that concurrent units use separate
# connections and contend on real SQLite locks.


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'otp.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def issuer(session_factory, clock, delivery):
    return IssuanceEngine(session_factory, clock=clock, delivery=delivery)


@pytest.fixture
def verifier(session_factory, clock):
    return VerificationEngine(session_factory, clock=clock)
