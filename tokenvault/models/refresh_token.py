"""Persisted refresh token records."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenvault.models.base import BaseModel

REFRESH_STATUS_ACTIVE = "active"
REFRESH_STATUS_REVOKED = "revoked"


class RefreshToken(BaseModel):
    """One row per issued refresh token.

    Usable for reissuance only while ``status`` is active and the current
    time is before ``expires_at``.
    """

    __tablename__ = "refresh_tokens"

    jti: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=REFRESH_STATUS_ACTIVE
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # jti of the record that replaced this one under rotation-on-use
    replaced_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<RefreshToken {self.jti} ({self.status}, subject={self.subject})>"
