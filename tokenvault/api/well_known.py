"""Public key discovery."""

from fastapi import APIRouter, Depends

from tokenvault.api.auth import get_auth_service, infrastructure_failure
from tokenvault.schemas.auth import JWKSResponse
from tokenvault.services.auth import AuthService
from tokenvault.services.errors import InfrastructureError

router = APIRouter(prefix="/.well-known", tags=["well-known"])


@router.get("/jwks.json", response_model=JWKSResponse)
async def jwks(
    auth_service: AuthService = Depends(get_auth_service),
) -> JWKSResponse:
    """Public halves of every key pair that can still verify a token.

    Private key material never leaves the service.
    """
    try:
        key_set = await auth_service.public_key_set()
    except InfrastructureError as e:
        raise infrastructure_failure(e) from e
    return JWKSResponse(**key_set)
