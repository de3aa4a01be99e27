"""Pydantic schemas for API request/response validation."""

from tokenvault.schemas.auth import (
    JWKSResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SignupRequest,
    SubjectResponse,
    TokenResponse,
)

__all__ = [
    "JWKSResponse",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "RefreshRequest",
    "SignupRequest",
    "SubjectResponse",
    "TokenResponse",
]
