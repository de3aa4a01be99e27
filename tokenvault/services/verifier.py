"""Access token verification.

``verify`` runs a single pass through these stages and stops at the first
failure:

1. read the outer envelope header for ``kid``        -> malformed
2. look the key pair up by ``kid``                   -> unknown_key
3. decrypt the envelope with the private key         -> decryption_failed
4. verify the inner signature and validate claims    -> signature_invalid,
   (issuer, audience, algorithm, token type,            claim_invalid, expired
   [iat - tolerance, exp + tolerance], max age)
5. require ``jti``                                   -> malformed
6. check the blacklist                               -> revoked
7. resolve ``sub`` to a live subject                 -> subject_invalid
8. Valid(subject, claims)

Every rejection is terminal. The specific reason is logged here and returned
as ``Rejected``; the HTTP layer collapses all of them into one generic
401. Infrastructure errors (storage, key loading) propagate unchanged.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from tokenvault.core.config import Settings
from tokenvault.services.accounts import SubjectResolver
from tokenvault.services.domain import (
    TOKEN_TYPE_ACCESS,
    Clock,
    Rejected,
    Valid,
    VerificationOutcome,
    utc_now,
)
from tokenvault.services.envelope import open_sealed, read_header, verify_signed
from tokenvault.services.errors import (
    ClaimInvalidError,
    MalformedTokenError,
    SubjectNotFoundError,
    TokenExpiredError,
    TokenRejectedError,
    TokenRevokedError,
)
from tokenvault.services.keys import KeyPairManager
from tokenvault.services.revocation import RevocationStore

logger = logging.getLogger(__name__)


def _numeric_claim(claims: dict[str, Any], name: str) -> int:
    value = claims.get(name)
    # bool is an int subclass and never a valid timestamp
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise MalformedTokenError(f"Claim {name} is missing or not numeric", claim=name)
    return int(value)


class TokenVerifier:
    """Decrypts, verifies and validates tokens issued by TokenIssuer."""

    def __init__(
        self,
        keys: KeyPairManager,
        revocations: RevocationStore,
        subjects: SubjectResolver,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.keys = keys
        self.revocations = revocations
        self.subjects = subjects
        self.settings = settings
        self.clock = clock

    def _validate_claims(
        self,
        claims: dict[str, Any],
        expected_type: str,
        check_time: bool,
    ) -> None:
        if claims.get("iss") != self.settings.token_issuer:
            raise ClaimInvalidError("Unexpected issuer", claim="iss")

        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self.settings.token_audience not in audiences:
            raise ClaimInvalidError("Unexpected audience", claim="aud")

        if claims.get("type") != expected_type:
            raise ClaimInvalidError(f"Expected a {expected_type} token", claim="type")

        if not isinstance(claims.get("sub"), str) or not claims["sub"]:
            raise MalformedTokenError("Token missing subject", claim="sub")

        issued_at = _numeric_claim(claims, "iat")
        expires_at = _numeric_claim(claims, "exp")
        if expires_at <= issued_at:
            raise ClaimInvalidError("Token expires before it was issued", claim="exp")

        if not check_time:
            return

        now = self.clock()
        tolerance = self.settings.clock_tolerance
        issued = datetime.fromtimestamp(issued_at, tz=UTC)
        expires = datetime.fromtimestamp(expires_at, tz=UTC)

        if now < issued - tolerance:
            raise ClaimInvalidError("Token issued in the future", claim="iat")
        if now > expires + tolerance:
            raise TokenExpiredError("Token has expired", claim="exp")
        max_age = self.settings.max_token_age
        if expected_type == TOKEN_TYPE_ACCESS and now - issued > max_age + tolerance:
            raise TokenExpiredError("Token exceeds maximum age", claim="iat")

    async def decode(
        self,
        token: str,
        expected_type: str = TOKEN_TYPE_ACCESS,
        check_time: bool = True,
    ) -> dict[str, Any]:
        """Open a token and validate its claims (stages 1-5).

        Raises a TokenRejectedError subclass on failure. No blacklist or
        subject checks are made; the refresh flow performs its own.
        """
        header = read_header(token)
        key = await self.keys.get_pair_by_id(header["kid"])
        signed = open_sealed(token, key)
        claims = verify_signed(signed, key)
        self._validate_claims(claims, expected_type, check_time)

        jti = claims.get("jti")
        if not isinstance(jti, str) or not jti:
            raise MalformedTokenError("Token missing jti", claim="jti")
        return claims

    async def verify(self, token: str) -> VerificationOutcome:
        """Verify an access token. Never raises for an unacceptable token."""
        try:
            claims = await self.decode(token, TOKEN_TYPE_ACCESS)

            if await self.revocations.is_blacklisted(claims["jti"]):
                raise TokenRevokedError("Token has been revoked", claim="jti")

            subject = await self.subjects.find_subject(claims["sub"])
            if subject is None:
                raise SubjectNotFoundError(
                    f"Subject {claims['sub']} does not exist or is inactive", claim="sub"
                )
        except TokenRejectedError as e:
            logger.info(
                f"Access token rejected: reason={e.reason.value} claim={e.claim} detail={e.detail}"
            )
            return Rejected(reason=e.reason, detail=e.detail, claim=e.claim)

        return Valid(subject=subject, claims=claims)
