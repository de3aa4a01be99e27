"""Refresh token exchange and revocation."""

import logging
from datetime import UTC, datetime

from tokenvault.core.config import Settings
from tokenvault.services.accounts import SubjectResolver
from tokenvault.services.domain import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    Clock,
    TokenPair,
    utc_now,
)
from tokenvault.services.errors import (
    SubjectNotFoundError,
    TokenRejectedError,
    TokenRevokedError,
)
from tokenvault.services.issuer import TokenIssuer
from tokenvault.services.keys import KeyPairManager
from tokenvault.services.revocation import RevocationStore
from tokenvault.services.verifier import TokenVerifier

logger = logging.getLogger(__name__)

# Refresh failures never say whether the record was missing, revoked or expired
INVALID_REFRESH_TOKEN = "Invalid refresh token"


class RefreshCoordinator:
    """Exchanges refresh tokens for access tokens and handles logout.

    By default the refresh record is left untouched on use. With
    ``refresh_token_rotation`` enabled each use issues a new refresh token
    and revokes the presented one; presenting a rotated token again also
    revokes its replacement.
    """

    def __init__(
        self,
        keys: KeyPairManager,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        revocations: RevocationStore,
        subjects: SubjectResolver,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.keys = keys
        self.issuer = issuer
        self.verifier = verifier
        self.revocations = revocations
        self.subjects = subjects
        self.settings = settings
        self.clock = clock

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Issue a new access token (and refresh token under rotation)."""
        claims = await self.verifier.decode(refresh_token, TOKEN_TYPE_REFRESH)
        record = await self.revocations.find_refresh(claims["jti"])

        if record is None or record.subject != claims["sub"]:
            logger.info(f"Refresh rejected: no record for {claims['jti']}")
            raise TokenRevokedError(INVALID_REFRESH_TOKEN, claim="jti")

        if not record.is_usable(self.clock()):
            logger.info(f"Refresh rejected: record {record.jti} is {record.status} or expired")
            if record.replaced_by:
                logger.warning(
                    f"Rotated refresh token {record.jti} presented again; "
                    f"revoking its replacement {record.replaced_by}"
                )
                await self.revocations.revoke_refresh(record.replaced_by)
            raise TokenRevokedError(INVALID_REFRESH_TOKEN, claim="jti")

        # Attributes may have changed (or the account may be gone) since login
        subject = await self.subjects.find_subject(record.subject)
        if subject is None:
            await self.revocations.revoke_refresh(record.jti)
            raise SubjectNotFoundError(
                f"Subject {record.subject} does not exist or is inactive", claim="sub"
            )

        # The current active pair, not necessarily the one that signed the refresh token
        key = await self.keys.get_active_pair()

        new_refresh_token = None
        if self.settings.refresh_token_rotation:
            new_refresh_token, new_record = await self.issuer.issue_refresh(subject, key)
            if not await self.revocations.revoke_refresh(record.jti, replaced_by=new_record.jti):
                # Another request rotated or revoked this record first
                await self.revocations.revoke_refresh(new_record.jti)
                raise TokenRevokedError(INVALID_REFRESH_TOKEN, claim="jti")

        access_token = self.issuer.issue_access(subject, key)
        logger.info(f"Refreshed access token for {subject.identifier} (kid={key.kid})")
        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=int(self.settings.access_token_lifetime.total_seconds()),
        )

    async def revoke(self, refresh_token: str, access_token: str | None = None) -> bool:
        """Revoke a refresh token and optionally blacklist the access token presented with it.

        The refresh record is always revoked once the refresh token opens.
        A bad access token, or one for another subject, only skips the
        blacklist write. Revoking an already revoked refresh token is not
        an error. Returns whether the refresh record changed.
        """
        claims = await self.verifier.decode(refresh_token, TOKEN_TYPE_REFRESH, check_time=False)
        changed = await self.revocations.revoke_refresh(claims["jti"])
        logger.info(f"Revoked refresh token {claims['jti']} for {claims['sub']}")

        if access_token:
            await self._blacklist_presented(access_token, claims["sub"])
        return changed

    async def _blacklist_presented(self, access_token: str, subject: str) -> None:
        try:
            access_claims = await self.verifier.decode(
                access_token, TOKEN_TYPE_ACCESS, check_time=False
            )
        except TokenRejectedError as e:
            logger.warning(
                f"Access token presented at logout not blacklisted: "
                f"reason={e.reason.value} detail={e.detail}"
            )
            return

        if access_claims["sub"] != subject:
            logger.warning(
                f"Access token {access_claims['jti']} presented at logout belongs to "
                f"{access_claims['sub']}, not {subject}; not blacklisted"
            )
            return

        expires_at = datetime.fromtimestamp(access_claims["exp"], tz=UTC)
        # Past exp + tolerance the token is rejected anyway
        if expires_at + self.settings.clock_tolerance >= self.clock():
            await self.revocations.blacklist_access(access_claims["jti"], expires_at)
