"""Asymmetric key pairs used to sign and encrypt tokens."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tokenvault.models.base import BaseModel


class KeyPair(BaseModel):
    """An RSA key pair identified by its ``kid``.

    ``expires_at`` ends the pair's active window for issuance only. The pair
    stays available for verification until every token it produced has
    expired, after which the maintenance sweep deletes it.
    """

    __tablename__ = "key_pairs"

    kid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    # SPKI PEM
    public_key: Mapped[str] = mapped_column(Text, nullable=False)
    # PKCS8 PEM, encrypted when a key passphrase is configured
    private_key: Mapped[str] = mapped_column(Text, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<KeyPair {self.kid} (expires_at={self.expires_at})>"
