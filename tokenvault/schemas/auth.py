"""Pydantic schemas for authentication API."""

from typing import Any

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    """Request to create an account."""

    identifier: str = Field(
        ...,
        min_length=3,
        max_length=255,
        pattern=r"^[a-zA-Z0-9][a-zA-Z0-9_.@+-]*$",
        description="Account identifier (username or email address)",
    )
    password: str = Field(
        ...,
        min_length=12,
        max_length=128,
        description="Password (minimum 12 characters)",
    )
    display_name: str | None = Field(None, max_length=255)


class LoginRequest(BaseModel):
    """Request for login."""

    identifier: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Response with encrypted tokens."""

    access_token: str
    refresh_token: str | None = Field(
        None,
        description="Present on login and signup, and on refresh when rotation is enabled",
    )
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    """Request for logout.

    The refresh token is always revoked. An access token sent in the
    Authorization header is blacklisted for the rest of its lifetime.
    """

    refresh_token: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class SubjectResponse(BaseModel):
    """The subject behind a verified access token."""

    identifier: str
    display_name: str | None = None


class JWKSResponse(BaseModel):
    """Public key set for the signing/encryption key pairs."""

    keys: list[dict[str, Any]]
