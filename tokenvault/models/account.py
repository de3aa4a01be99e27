"""Account model backing the identity resolver."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenvault.models.base import BaseModel


class Account(BaseModel):
    """A user account that tokens can be issued for.

    ``identifier`` is the stable value carried in the ``sub`` claim.
    """

    __tablename__ = "accounts"

    identifier: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Tracking
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.identifier}>"
