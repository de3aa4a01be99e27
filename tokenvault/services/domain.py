"""Domain types shared by the token services."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from tokenvault.services.errors import RejectionReason

# Value of the "type" claim, so a refresh token can never pass as an access token
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class KeyMaterial:
    """A loaded key pair. The private half stays inside the token services."""

    kid: str
    private_key: RSAPrivateKey = field(repr=False)
    public_key: RSAPublicKey = field(repr=False)
    created_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        """Whether the pair may still be used for new issuance."""
        return now < self.expires_at


@dataclass(frozen=True)
class Subject:
    """The identity a token is issued for."""

    identifier: str
    display_name: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class RefreshTokenRecord:
    jti: str
    subject: str
    created_at: datetime
    expires_at: datetime
    status: str
    revoked_at: datetime | None = None
    replaced_by: str | None = None

    def is_usable(self, now: datetime) -> bool:
        return self.status == "active" and now < self.expires_at


@dataclass(frozen=True)
class TokenPair:
    """Tokens handed back to the caller. ``refresh_token`` is None when not reissued."""

    access_token: str
    refresh_token: str | None
    expires_in: int
    token_type: str = "bearer"


@dataclass(frozen=True)
class Valid:
    """Successful verification."""

    subject: Subject
    claims: dict[str, Any]


@dataclass(frozen=True)
class Rejected:
    """Failed verification. ``claim`` names the claim that failed, when there is one."""

    reason: RejectionReason
    detail: str
    claim: str | None = None


VerificationOutcome = Valid | Rejected
