"""Token lifecycle services."""

from tokenvault.services.auth import AuthenticationFailed, AuthService
from tokenvault.services.domain import Rejected, Subject, TokenPair, Valid
from tokenvault.services.errors import RejectionReason

__all__ = [
    "AuthService",
    "AuthenticationFailed",
    "Rejected",
    "RejectionReason",
    "Subject",
    "TokenPair",
    "Valid",
]
