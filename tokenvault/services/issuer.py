"""Access and refresh token issuance."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from tokenvault.core.config import Settings
from tokenvault.services.domain import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    Clock,
    KeyMaterial,
    RefreshTokenRecord,
    Subject,
    utc_now,
)
from tokenvault.services.envelope import seal, sign_claims
from tokenvault.services.revocation import RevocationStore

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Builds sign-then-encrypt tokens.

    Access tokens are stateless and never persisted. Each refresh token
    writes exactly one RefreshToken row, and that write is the last step:
    if it fails no token is returned.
    """

    def __init__(self, revocations: RevocationStore, settings: Settings, clock: Clock = utc_now):
        self.revocations = revocations
        self.settings = settings
        self.clock = clock

    def _claims(
        self,
        subject: Subject,
        key: KeyMaterial,
        token_type: str,
        lifetime: timedelta,
    ) -> dict[str, Any]:
        issued_at = int(self.clock().timestamp())
        return {
            "sub": subject.identifier,
            "iss": self.settings.token_issuer,
            "aud": self.settings.token_audience,
            "iat": issued_at,
            "exp": issued_at + int(lifetime.total_seconds()),
            "jti": uuid.uuid4().hex,
            "kid": key.kid,
            "type": token_type,
        }

    def issue_access(self, subject: Subject, key: KeyMaterial) -> str:
        """Create a short-lived access token signed and encrypted with ``key``."""
        claims = self._claims(subject, key, TOKEN_TYPE_ACCESS, self.settings.access_token_lifetime)
        token = seal(sign_claims(claims, key), key)
        logger.debug(f"Issued access token {claims['jti']} for {subject.identifier} (kid={key.kid})")
        return token

    async def issue_refresh(
        self, subject: Subject, key: KeyMaterial
    ) -> tuple[str, RefreshTokenRecord]:
        """Create a refresh token and persist its record."""
        claims = self._claims(
            subject, key, TOKEN_TYPE_REFRESH, self.settings.refresh_token_lifetime
        )
        token = seal(sign_claims(claims, key), key)
        record = await self.revocations.record_refresh(
            jti=claims["jti"],
            subject=subject.identifier,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=UTC),
        )
        logger.debug(f"Issued refresh token {record.jti} for {subject.identifier} (kid={key.kid})")
        return token, record
