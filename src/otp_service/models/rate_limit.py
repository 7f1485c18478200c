"""Append-only request logs backing the rolling rate-limit windows."""

from datetime import datetime

from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from otp_service.models.base import Base, UTCDateTime


class UserRateLimit(Base):
    """One row per admitted issuance request, keyed by user."""

    __tablename__ = "user_rate_limits"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    request_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (Index("ix_user_rate_limits_user_ts", "user_id", "request_timestamp"),)


class IpRateLimit(Base):
    """One row per admitted issuance request, keyed by client IP."""

    __tablename__ = "ip_rate_limits"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    # 45 chars fits any IPv6 textual form
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    request_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (Index("ix_ip_rate_limits_ip_ts", "ip_address", "request_timestamp"),)
