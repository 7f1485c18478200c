"""SQLAlchemy OTP record model."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from otp_service.models.base import Base, UTCDateTime

OTP_CODE_LENGTH = 6


class OtpRecord(Base):
    """One issued passcode for a ``(user_id, purpose)`` pair.

    Rows are never deleted by the engines: superseded, expired and consumed
    codes are retired by setting ``is_used``. Lock state is carried by
    ``is_locked`` / ``locked_until`` and resolves itself once the lock
    elapses.
    """

    __tablename__ = "otps"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(OTP_CODE_LENGTH), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_otps_user_purpose", "user_id", "purpose"),
        Index("ix_otps_expires_at", "expires_at"),
        Index("ix_otps_cleanup", "is_used", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OtpRecord id={self.id} user={self.user_id!r} purpose={self.purpose!r} "
            f"used={self.is_used} locked={self.is_locked} attempts={self.attempt_count}>"
        )


# At most one unused OTP per (user_id, purpose).
Index(
    "uq_otps_active_user_purpose",
    OtpRecord.user_id,
    OtpRecord.purpose,
    unique=True,
    postgresql_where=OtpRecord.is_used.is_(False),
    sqlite_where=OtpRecord.is_used.is_(False),
)
