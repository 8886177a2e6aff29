"""
Bearer token verification against the OIDC provider (Authentik).

Signing keys come from the provider's JWKS endpoint (`{issuer}/jwks/`) and are cached by kid;
an unknown kid triggers a refetch (key rotation), throttled to one per JWKS_MIN_REFETCH_SECONDS.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import JWTError, jwt

from registry.core.config import settings

logger = logging.getLogger(__name__)

_jwks_cache: Dict[str, Dict[str, Any]] = {}
_jwks_fetched_at: Optional[float] = None


class TokenVerificationError(Exception):
    pass


def _refetch_allowed() -> bool:
    if _jwks_fetched_at is None:
        return True
    return time.monotonic() - _jwks_fetched_at >= settings.jwks_min_refetch_seconds


def jwks_uri() -> str:
    return f"{settings.issuer_base}/jwks/"


async def fetch_jwks() -> List[Dict[str, Any]]:
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(jwks_uri())
        response.raise_for_status()
        return response.json().get("keys", [])


async def get_signing_key(kid: str) -> Dict[str, Any]:
    """Key for `kid`. An unknown kid refetches the JWKS at most once per JWKS_MIN_REFETCH_SECONDS."""
    global _jwks_fetched_at
    if kid not in _jwks_cache and _refetch_allowed():
        _jwks_fetched_at = time.monotonic()
        try:
            keys = await fetch_jwks()
        except httpx.HTTPError as e:
            raise TokenVerificationError(f"Could not fetch signing keys: {e}") from e
        _jwks_cache.clear()
        _jwks_cache.update({k["kid"]: k for k in keys if "kid" in k})
    key = _jwks_cache.get(kid)
    if key is None:
        raise TokenVerificationError(f"Unknown signing key: {kid}")
    return key


async def verify_access_token(token: str) -> Dict[str, Any]:
    """Decoded claims of a valid token. Raises TokenVerificationError otherwise."""
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise TokenVerificationError(f"Malformed token: {e}") from e

    key = await get_signing_key(header.get("kid", ""))
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.authentik_client_id,
            # Issuer is compared below, with or without trailing slash.
            options={"verify_iss": False},
        )
    except JWTError as e:
        raise TokenVerificationError(f"Invalid token: {e}") from e

    token_issuer = (claims.get("iss") or "").rstrip("/")
    if token_issuer != settings.issuer_base:
        logger.warning(f"Issuer mismatch. Expected: {settings.issuer_base} Got: {claims.get('iss')}")
        raise TokenVerificationError(f"Invalid token issuer: expected {settings.issuer_base}, got {claims.get('iss')}")
    return claims
