import base64
import time

import pytest
from httpx import AsyncClient
from jose import jwt

from registry.auth import security
from registry.auth.security import TokenVerificationError, verify_access_token
from registry.core.academic_calendar import GRADE_ORDER, current_academic_year
from registry.core.config import settings

ISSUER = "https://auth.example.com/application/o/registry/"
CLIENT_ID = "registry-frontend"
SECRET = "test-signing-secret"
KID = "test-key"


def _jwk() -> dict:
    k = base64.urlsafe_b64encode(SECRET.encode()).rstrip(b"=").decode()
    return {"kty": "oct", "kid": KID, "alg": "HS256", "k": k}


def _token(**overrides) -> str:
    claims = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "user-1",
        "preferred_username": "rivka",
        "email": "rivka@example.com",
        "exp": int(time.time()) + 600,
    }
    claims.update(overrides)
    return jwt.encode(claims, SECRET, algorithm="HS256", headers={"kid": KID})


@pytest.fixture()
def auth_enabled(monkeypatch):
    monkeypatch.setattr(settings, "authentik_issuer", ISSUER)
    monkeypatch.setattr(settings, "authentik_client_id", CLIENT_ID)
    monkeypatch.setattr(settings, "jwt_algorithm", "HS256")
    monkeypatch.setattr(security, "_jwks_cache", {})
    monkeypatch.setattr(security, "_jwks_fetched_at", None)
    fetches = []

    async def fake_fetch_jwks():
        fetches.append(KID)
        return [_jwk()]

    monkeypatch.setattr(security, "fetch_jwks", fake_fetch_jwks)
    return fetches


@pytest.mark.asyncio
async def test_verify_valid_token(auth_enabled) -> None:
    claims = await verify_access_token(_token())
    assert claims["preferred_username"] == "rivka"
    assert security.jwks_uri() == "https://auth.example.com/application/o/registry/jwks/"


@pytest.mark.asyncio
async def test_verify_accepts_issuer_without_trailing_slash(auth_enabled) -> None:
    claims = await verify_access_token(_token(iss=ISSUER.rstrip("/")))
    assert claims["sub"] == "user-1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "someone-else"},
        {"iss": "https://evil.example.com/"},
        {"exp": int(time.time()) - 60},
    ],
)
async def test_verify_rejects_bad_claims(auth_enabled, overrides: dict) -> None:
    with pytest.raises(TokenVerificationError):
        await verify_access_token(_token(**overrides))


@pytest.mark.asyncio
async def test_verify_rejects_unknown_key_and_garbage(auth_enabled) -> None:
    token = jwt.encode({"iss": ISSUER, "aud": CLIENT_ID}, SECRET, algorithm="HS256", headers={"kid": "rotated"})
    with pytest.raises(TokenVerificationError, match="Unknown signing key"):
        await verify_access_token(token)
    with pytest.raises(TokenVerificationError, match="Malformed token"):
        await verify_access_token("not-a-jwt")


def test_placeholder_issuer_keeps_auth_disabled(monkeypatch) -> None:
    monkeypatch.setattr(settings, "authentik_issuer", "https://your-provider-name.example.com/")
    monkeypatch.setattr(settings, "authentik_client_id", CLIENT_ID)
    assert settings.auth_enabled is False


@pytest.mark.asyncio
async def test_auth_config_when_enabled(client: AsyncClient, auth_enabled) -> None:
    response = await client.get("/api/v1/auth/config")
    assert response.json() == {"enabled": True, "issuer": ISSUER.rstrip("/"), "clientId": CLIENT_ID}


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client: AsyncClient, auth_enabled) -> None:
    response = await client.get("/api/v1/students")
    assert response.status_code == 401
    assert response.json()["detail"] == "No token provided"

    response = await client.get("/api/v1/students", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_subject_is_recorded_as_actor(client: AsyncClient, auth_enabled) -> None:
    headers = {"Authorization": f"Bearer {_token()}", "X-Changed-By": "spoofed"}
    payload = {
        "idNumber": "123456789",
        "lastName": "Cohen",
        "firstName": "David",
        "grade": GRADE_ORDER[0],
        "stream": "1",
        "gender": "male",
        "track": "Physics",
        "cycle": str(current_academic_year()),
    }

    created = await client.post("/api/v1/students", json=payload, headers=headers)
    assert created.status_code == 201

    history = await client.get(f"/api/v1/students/{created.json()['id']}/history", headers=headers)
    assert {e["changedBy"] for e in history.json()} == {"rivka"}


@pytest.mark.asyncio
async def test_unknown_key_ids_do_not_refetch_within_the_interval(auth_enabled, monkeypatch) -> None:
    monkeypatch.setattr(settings, "jwks_min_refetch_seconds", 3600.0)

    for kid in ("forged-1", "forged-2", "forged-3"):
        token = jwt.encode({"iss": ISSUER, "aud": CLIENT_ID}, SECRET, algorithm="HS256", headers={"kid": kid})
        with pytest.raises(TokenVerificationError, match="Unknown signing key"):
            await verify_access_token(token)

    assert len(auth_enabled) == 1
    assert (await verify_access_token(_token()))["sub"] == "user-1"
    assert len(auth_enabled) == 1


@pytest.mark.asyncio
async def test_unknown_key_id_refetches_once_the_interval_has_passed(auth_enabled, monkeypatch) -> None:
    monkeypatch.setattr(settings, "jwks_min_refetch_seconds", 0.0)
    token = jwt.encode({"iss": ISSUER, "aud": CLIENT_ID}, SECRET, algorithm="HS256", headers={"kid": "rotated"})

    for _ in range(2):
        with pytest.raises(TokenVerificationError):
            await verify_access_token(token)

    assert len(auth_enabled) == 2
