from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from registry.auth.schemas import CurrentActor
from registry.auth.security import TokenVerificationError, verify_access_token
from registry.core.config import settings


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_changed_by: Optional[str] = Header(None, alias="X-Changed-By"),
) -> CurrentActor:
    """
    Resolve who is making the request.
    Auth enabled: a valid bearer token is required and its claims identify the actor.
    Auth disabled: the optional X-Changed-By header is trusted as the actor name.
    """
    if not settings.auth_enabled:
        name = (x_changed_by or "").strip() or None
        return CurrentActor(username=name)

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = await verify_access_token(credentials.credentials)
    except TokenVerificationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentActor(
        subject=claims.get("sub"),
        username=claims.get("preferred_username") or claims.get("nickname"),
        email=claims.get("email"),
        authenticated=True,
    )
