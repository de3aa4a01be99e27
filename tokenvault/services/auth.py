"""Authentication service: the operations exposed to the HTTP layer."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.core.config import Settings, get_settings
from tokenvault.services.accounts import AccountService
from tokenvault.services.domain import (
    Clock,
    Rejected,
    Subject,
    TokenPair,
    utc_now,
)
from tokenvault.services.errors import SubjectNotFoundError, TokenRejectedError
from tokenvault.services.issuer import TokenIssuer
from tokenvault.services.key_store import KeyStore
from tokenvault.services.keys import KeyPairManager
from tokenvault.services.refresh import RefreshCoordinator
from tokenvault.services.revocation import RevocationStore
from tokenvault.services.verifier import TokenVerifier

logger = logging.getLogger(__name__)


class AuthenticationFailed(TokenRejectedError):
    """Raised by AuthService.authenticate, carrying the internal rejection."""

    def __init__(self, rejection: Rejected):
        super().__init__(rejection.detail, claim=rejection.claim)
        self.reason = rejection.reason
        self.rejection = rejection


class AuthService:
    """Wires the token components over one database session.

    Created per request; the clock is injectable for tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock

        self.accounts = AccountService(session)
        self.keys = KeyPairManager(KeyStore(session), self.settings, clock)
        self.revocations = RevocationStore(session, clock, grace=self.settings.clock_tolerance)
        self.issuer = TokenIssuer(self.revocations, self.settings, clock)
        self.verifier = TokenVerifier(
            self.keys, self.revocations, self.accounts, self.settings, clock
        )
        self.coordinator = RefreshCoordinator(
            self.keys,
            self.issuer,
            self.verifier,
            self.revocations,
            self.accounts,
            self.settings,
            clock,
        )

    async def authorize(self, identifier: str) -> TokenPair:
        """Issue an access and refresh token for a subject whose credentials were already checked."""
        subject = await self.accounts.find_subject(identifier)
        if subject is None:
            raise SubjectNotFoundError(f"Subject {identifier} does not exist or is inactive")
        return await self.issue_tokens(subject)

    async def issue_tokens(self, subject: Subject) -> TokenPair:
        key = await self.keys.get_active_pair()
        access_token = self.issuer.issue_access(subject, key)
        refresh_token, _ = await self.issuer.issue_refresh(subject, key)
        logger.info(f"Authorized {subject.identifier} (kid={key.kid})")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.settings.access_token_lifetime.total_seconds()),
        )

    async def login(self, identifier: str, password: str) -> TokenPair:
        """Check credentials, then authorize."""
        subject = await self.accounts.check_credentials(identifier, password)
        return await self.issue_tokens(subject)

    async def signup(
        self, identifier: str, password: str, display_name: str | None = None
    ) -> TokenPair:
        """Create an account and authorize it."""
        subject = await self.accounts.create_account(identifier, password, display_name)
        return await self.issue_tokens(subject)

    async def authenticate(self, token: str) -> Subject:
        """Return the subject of a valid access token or raise AuthenticationFailed."""
        outcome = await self.verifier.verify(token)
        if isinstance(outcome, Rejected):
            raise AuthenticationFailed(outcome)
        return outcome.subject

    async def refresh(self, refresh_token: str) -> TokenPair:
        try:
            return await self.coordinator.refresh(refresh_token)
        except TokenRejectedError as e:
            logger.info(f"Refresh token rejected: reason={e.reason.value} detail={e.detail}")
            raise

    async def revoke(self, refresh_token: str, access_token: str | None = None) -> bool:
        try:
            return await self.coordinator.revoke(refresh_token, access_token)
        except TokenRejectedError as e:
            logger.info(f"Revocation rejected: reason={e.reason.value} detail={e.detail}")
            raise

    async def public_key_set(self) -> dict[str, Any]:
        return await self.keys.jwks()

    async def run_maintenance(self) -> dict[str, int]:
        """Delete expired blacklist entries, expired refresh records and retired key pairs."""
        blacklist_removed, refresh_removed = await self.revocations.purge_expired()
        keys_removed = await self.keys.prune_retired()
        return {
            "blacklist": blacklist_removed,
            "refresh_tokens": refresh_removed,
            "key_pairs": keys_removed,
        }
