"""SQLAlchemy idempotency ledger model."""

from datetime import datetime

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from otp_service.models.base import Base, UTCDateTime


class IdempotencyRecord(Base):
    """Stored issuance response for a caller-supplied idempotency key."""

    __tablename__ = "idempotency_keys"

    idempotency_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(String(100), nullable=False)
    response_data: Mapped[str] = mapped_column(
        Text, nullable=False, doc="JSON-serialized issuance response, replayed verbatim"
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (Index("ix_idempotency_keys_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<IdempotencyRecord key={self.idempotency_key!r} user={self.user_id!r}>"
