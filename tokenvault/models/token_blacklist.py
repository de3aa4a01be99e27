"""Blacklisted access tokens, kept only until the token would have expired."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenvault.core.database import Base


class TokenBlacklist(Base):
    """A revoked access token identified by its JTI claim.

    Entries are created on logout and cleaned up after expiry.
    """

    __tablename__ = "token_blacklist"

    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
