from fastapi import APIRouter

from registry.auth.schemas import AuthConfigResponse, HealthResponse
from registry.core.config import settings

router = APIRouter(prefix="/api/v1", tags=["auth"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", message="Backend is running", auth_enabled=settings.auth_enabled)


@router.get("/auth/config", response_model=AuthConfigResponse, response_model_exclude_none=True)
async def auth_config() -> AuthConfigResponse:
    """Tells the frontend whether to run the OIDC login flow, and against which provider."""
    if not settings.auth_enabled:
        return AuthConfigResponse(enabled=False)
    return AuthConfigResponse(
        enabled=True,
        issuer=settings.issuer_base,
        client_id=settings.authentik_client_id,
    )
