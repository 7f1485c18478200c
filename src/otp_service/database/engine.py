"""Database engine and async session factory."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from otp_service.config import settings
from otp_service.models import idempotency as _idempotency  # noqa: F401
from otp_service.models import otp as _otp  # noqa: F401
from otp_service.models import rate_limit as _rate_limit  # noqa: F401
from otp_service.models.base import Base


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine with a bounded pool.

    SQLite has no row locks, so every transaction is opened with
    ``BEGIN IMMEDIATE``: the first writer holds the database until it
    commits and contenders wait out ``database_busy_timeout`` instead of
    failing on lock upgrade.
    """
    if make_url(url).get_backend_name() != "sqlite":
        return create_async_engine(
            url,
            echo=echo,
            pool_size=settings.database_pool_size,
            max_overflow=0,
            pool_pre_ping=True,
        )

    engine = create_async_engine(
        url,
        echo=echo,
        connect_args={"timeout": settings.database_busy_timeout},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = build_engine(settings.database_url, echo=settings.debug)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables that don't yet exist."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
