"""Error taxonomy for token issuance, verification and revocation.

Verification failures are ``TokenRejectedError`` subclasses, each tied to one
``RejectionReason``. The verifier turns them into a ``Rejected`` outcome, so
callers only ever see the closed set of reasons, never a backend exception.
Infrastructure failures are ``InfrastructureError`` subclasses and are never
reported as an invalid token.
"""

from enum import StrEnum


class RejectionReason(StrEnum):
    """Why a token was refused. Internal only; callers get a generic failure."""

    MALFORMED = "malformed"
    UNKNOWN_KEY = "unknown_key"
    DECRYPTION_FAILED = "decryption_failed"
    SIGNATURE_INVALID = "signature_invalid"
    CLAIM_INVALID = "claim_invalid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    SUBJECT_INVALID = "subject_invalid"


class AuthError(Exception):
    """Base authentication error."""

    pass


class TokenRejectedError(AuthError):
    """A token failed one of the verification stages."""

    reason: RejectionReason = RejectionReason.MALFORMED

    def __init__(self, detail: str, claim: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.claim = claim


class MalformedTokenError(TokenRejectedError):
    """Token or envelope header could not be parsed, or a required claim is absent."""

    reason = RejectionReason.MALFORMED


class UnknownKeyError(TokenRejectedError):
    """No key pair matches the token's kid."""

    reason = RejectionReason.UNKNOWN_KEY


class DecryptionFailedError(TokenRejectedError):
    """The outer envelope could not be decrypted."""

    reason = RejectionReason.DECRYPTION_FAILED


class SignatureInvalidError(TokenRejectedError):
    """The inner signature does not verify."""

    reason = RejectionReason.SIGNATURE_INVALID


class ClaimInvalidError(TokenRejectedError):
    """A claim (issuer, audience, algorithm, iat, type, ...) failed validation."""

    reason = RejectionReason.CLAIM_INVALID


class TokenExpiredError(TokenRejectedError):
    """The token is past its expiry or maximum age."""

    reason = RejectionReason.EXPIRED


class TokenRevokedError(TokenRejectedError):
    """The token was revoked, or the refresh record is unusable."""

    reason = RejectionReason.REVOKED


class SubjectNotFoundError(TokenRejectedError):
    """The token's subject no longer maps to an active account."""

    reason = RejectionReason.SUBJECT_INVALID


class InvalidCredentialsError(AuthError):
    """Invalid identifier or password."""

    pass


class SubjectExistsError(AuthError):
    """An account with this identifier already exists."""

    pass


class InfrastructureError(Exception):
    """Failure of a dependency rather than of the presented credentials."""

    pass


class KeyGenerationError(InfrastructureError):
    """A new key pair could not be generated or serialized."""

    pass


class StorageUnavailableError(InfrastructureError):
    """The backing store could not complete a read or write."""

    pass


class KeyLoadError(InfrastructureError):
    """A stored key pair could not be deserialized (wrong passphrase, corrupt PEM)."""

    pass


class TokenIssuanceError(InfrastructureError):
    """Signing or encrypting a new token failed."""

    pass
