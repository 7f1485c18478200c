"""OTP Service — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./otp_service.db"
    database_pool_size: int = 10
    database_busy_timeout: float = 30.0
    transaction_retries: int = 3

    # ── OTP lifecycle ─────────────────────────────────────
    otp_ttl_seconds: int = 300
    otp_max_attempts: int = 3
    otp_lockout_seconds: int = 600

    # ── Admission control ─────────────────────────────────
    rate_limit_window_seconds: int = 900
    user_rate_limit: int = 3
    ip_rate_limit: int = 8
    idempotency_ttl_seconds: int = 600
    trust_forwarded_for: bool = False

    # ── App ───────────────────────────────────────────────
    app_name: str = "OTP Service"
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
