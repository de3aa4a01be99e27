"""Authentication API endpoints."""

import logging
import time
from collections import defaultdict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.core import get_db
from tokenvault.core.config import Settings, get_settings
from tokenvault.schemas.auth import (
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SignupRequest,
    SubjectResponse,
    TokenResponse,
)
from tokenvault.services.auth import AuthService
from tokenvault.services.domain import Clock, Subject, TokenPair, utc_now
from tokenvault.services.errors import (
    InfrastructureError,
    InvalidCredentialsError,
    StorageUnavailableError,
    SubjectExistsError,
    TokenRejectedError,
)

logger = logging.getLogger(__name__)

# Rate limiting for login attempts
_login_attempts: dict[str, list[float]] = defaultdict(list)

# Every token failure looks the same to the caller; the reason is only logged
INVALID_TOKEN_DETAIL = "Invalid or expired token"


def _check_login_rate_limit(client_ip: str, settings: Settings) -> None:
    """Check if a client IP has exceeded the login attempt rate limit."""
    now = time.monotonic()
    window = settings.login_rate_limit_window_seconds
    attempts = _login_attempts[client_ip]
    _login_attempts[client_ip] = [t for t in attempts if now - t < window]
    if len(_login_attempts[client_ip]) >= settings.login_rate_limit_attempts:
        logger.warning("Login rate limit exceeded for %s", client_ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
        )


def _record_login_attempt(client_ip: str) -> None:
    """Record a failed login attempt for rate limiting."""
    _login_attempts[client_ip].append(time.monotonic())


def reset_login_attempts() -> None:
    _login_attempts.clear()


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:] or None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=INVALID_TOKEN_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )


def infrastructure_failure(e: InfrastructureError) -> HTTPException:
    """Map a dependency failure to 503/500. Never reported as a bad token."""
    if isinstance(e, StorageUnavailableError):
        logger.error(f"Token store unavailable: {e}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable",
        )
    logger.error(f"Token service failure ({type(e).__name__}): {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


router = APIRouter(prefix="/auth", tags=["auth"])


def get_clock() -> Clock:
    """Dependency for the current-time source (overridden in tests)."""
    return utc_now


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(db, settings=settings, clock=clock)


async def get_current_subject(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Subject:
    """Dependency to get the subject of the bearer access token."""
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await auth_service.authenticate(token)
    except TokenRejectedError as e:
        raise _unauthorized() from e
    except InfrastructureError as e:
        raise infrastructure_failure(e) from e


@router.post(
    "/signup",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def signup(
    request: SignupRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Create an account and return its first token pair.

    Returns 409 Conflict if the identifier is taken.
    """
    try:
        pair = await auth_service.signup(
            identifier=request.identifier,
            password=request.password,
            display_name=request.display_name,
        )
    except SubjectExistsError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except InfrastructureError as e:
        raise infrastructure_failure(e) from e
    return _token_response(pair)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> TokenResponse:
    """Authenticate and get tokens.

    Returns access and refresh tokens on successful authentication.
    Failed attempts are rate limited per client IP.
    """
    client_ip = http_request.client.host if http_request.client else "unknown"
    _check_login_rate_limit(client_ip, settings)

    try:
        pair = await auth_service.login(
            identifier=request.identifier,
            password=request.password,
        )
    except InvalidCredentialsError as e:
        _record_login_attempt(client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid identifier or password",
        ) from e
    except InfrastructureError as e:
        raise infrastructure_failure(e) from e

    logger.info(f"Subject logged in: {request.identifier}")
    return _token_response(pair)


@router.get("/authenticate", response_model=SubjectResponse)
async def authenticate(
    subject: Subject = Depends(get_current_subject),
) -> SubjectResponse:
    """Verify the bearer access token and return its subject."""
    return SubjectResponse(identifier=subject.identifier, display_name=subject.display_name)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    request: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Exchange a refresh token for a new access token.

    A new refresh token is only returned when rotation is enabled.
    """
    try:
        pair = await auth_service.refresh(request.refresh_token)
    except TokenRejectedError as e:
        raise _unauthorized() from e
    except InfrastructureError as e:
        raise infrastructure_failure(e) from e
    return _token_response(pair)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: LogoutRequest,
    http_request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the refresh token, and blacklist the bearer access token if one is sent.

    Logging out twice with the same refresh token succeeds both times.
    """
    try:
        await auth_service.revoke(request.refresh_token, _bearer_token(http_request))
    except TokenRejectedError as e:
        raise _unauthorized() from e
    except InfrastructureError as e:
        raise infrastructure_failure(e) from e
    return MessageResponse(message="Logged out successfully")
