"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI

from otp_service.api.router import router as otp_router
from otp_service.config import settings
from otp_service.database.engine import engine, init_db

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    await init_db()
    logger.info("Database initialised")
    yield
    logger.info("Shutting down %s …", settings.app_name)
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="One-time passcode issuance and verification",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(otp_router)


@app.get("/health")
async def health_check():
    """Simple liveness check."""
    return {"status": "healthy", "timestamp": datetime.now(UTC).isoformat()}


def run() -> None:
    """Serve the app with uvicorn (``otp-service`` console script)."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000, log_level="debug" if settings.debug else "info")
