from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from portal.clients.microsoft_auth import (
    MicrosoftOAuthClient,
    OAuthStateEncoder,
    OAuthTokenExchangeError,
)
from portal.core.config import MicrosoftSettings
from portal.core.errors import RefreshFailedError
from portal.models.credential import now_ms

SIGNING_KEY = "id-token-signing-key-used-only-in-tests"
TENANT_GUID = "7f3c2a9e-1b4d-4c8a-9e2f-5a6b7c8d9e0f"


def _settings(tenant_id: str = "tenant-abc") -> MicrosoftSettings:
    return MicrosoftSettings(
        AUTH_MICROSOFT_ENTRA_ID_ID="client-123",
        AUTH_MICROSOFT_ENTRA_ID_SECRET="client-secret",
        TENANT_ID=tenant_id,
        MICROSOFT_REDIRECT_URI="https://portal.example.com/api/auth/microsoft/callback",
    )


def _client(handler) -> MicrosoftOAuthClient:
    return MicrosoftOAuthClient(_settings(), transport=httpx.MockTransport(handler))


def _id_token(**claims) -> str:
    base = {
        "aud": "client-123",
        "tid": "tenant-abc",
        "oid": "aad-object-1",
        "preferred_username": "ada@example.com",
        "name": "Ada Lovelace",
    }
    base.update(claims)
    return jwt.encode(base, SIGNING_KEY, algorithm="HS256")


def test_authorization_url_targets_tenant_with_offline_access() -> None:
    client = MicrosoftOAuthClient(_settings())

    url = urlparse(client.build_authorization_url(state="abc", prompt="select_account"))
    query = parse_qs(url.query)

    assert url.path == "/tenant-abc/oauth2/v2.0/authorize"
    assert query["state"] == ["abc"]
    assert query["prompt"] == ["select_account"]
    assert "offline_access" in query["scope"][0].split()


@pytest.mark.asyncio
async def test_refresh_posts_refresh_grant_and_converts_expiry_to_ms() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "access_token": "new-access",
                "refresh_token": "new-refresh",
                "expires_in": 3600,
            },
        )

    before = now_ms()
    tokens = await _client(handler).refresh_access_token("old-refresh")

    assert len(seen) == 1
    request = seen[0]
    assert str(request.url) == "https://login.microsoftonline.com/tenant-abc/oauth2/v2.0/token"
    form = parse_qs(request.content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["old-refresh"]
    assert form["client_id"] == ["client-123"]
    assert form["client_secret"] == ["client-secret"]
    assert tokens.access_token == "new-access"
    assert tokens.refresh_token == "new-refresh"
    assert before + 3_600_000 <= tokens.expires_at <= now_ms() + 3_600_000


@pytest.mark.asyncio
async def test_refresh_without_rotation_returns_no_refresh_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "new-access", "expires_in": 60})

    tokens = await _client(handler).refresh_access_token("old-refresh")

    assert tokens.refresh_token is None


@pytest.mark.asyncio
async def test_refresh_rejection_carries_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "error": "invalid_grant",
                "error_description": "AADSTS70008: The refresh token has expired.",
            },
        )

    with pytest.raises(RefreshFailedError) as exc_info:
        await _client(handler).refresh_access_token("old-refresh")

    assert exc_info.value.status_code == 400
    assert exc_info.value.provider_error == "invalid_grant"


@pytest.mark.asyncio
async def test_refresh_with_empty_token_makes_no_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(RefreshFailedError):
        await _client(handler).refresh_access_token("")
    assert calls == []


@pytest.mark.asyncio
async def test_refresh_timeout_is_a_refresh_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(RefreshFailedError):
        await _client(handler).refresh_access_token("old-refresh")


@pytest.mark.asyncio
async def test_refresh_with_incomplete_body_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "Bearer"})

    with pytest.raises(RefreshFailedError):
        await _client(handler).refresh_access_token("old-refresh")


@pytest.mark.asyncio
async def test_exchange_code_returns_tokens_and_identity_claims() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["auth-code"]
        return httpx.Response(
            200,
            json={
                "access_token": "access",
                "refresh_token": "refresh",
                "expires_in": 3599,
                "id_token": _id_token(),
            },
        )

    result = await _client(handler).exchange_authorization_code("auth-code")

    assert result.tokens.access_token == "access"
    assert result.tokens.refresh_token == "refresh"
    assert result.email == "ada@example.com"
    assert result.name == "Ada Lovelace"
    assert result.object_id == "aad-object-1"


@pytest.mark.asyncio
async def test_exchange_code_rejects_id_token_for_other_client() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "access_token": "access",
                "refresh_token": "refresh",
                "expires_in": 3599,
                "id_token": _id_token(aud="someone-else"),
            },
        )

    with pytest.raises(OAuthTokenExchangeError):
        await _client(handler).exchange_authorization_code("auth-code")


def test_id_token_from_another_tenant_is_rejected() -> None:
    client = MicrosoftOAuthClient(_settings(tenant_id=TENANT_GUID.upper()))

    assert client.read_id_token_claims(_id_token(tid=TENANT_GUID))["oid"] == "aad-object-1"
    with pytest.raises(OAuthTokenExchangeError):
        client.read_id_token_claims(_id_token(tid="0b1c2d3e-4f50-4a6b-8c7d-9e0f1a2b3c4d"))


def test_tenant_configured_by_domain_accepts_its_guid_tid() -> None:
    client = MicrosoftOAuthClient(_settings(tenant_id="contoso.onmicrosoft.com"))

    claims = client.read_id_token_claims(_id_token(tid=TENANT_GUID))

    assert claims["tid"] == TENANT_GUID


def test_state_encoder_detects_tampering() -> None:
    from fastapi import HTTPException

    encoder = OAuthStateEncoder(secret_key="state-secret")
    state = encoder.encode({"nonce": "n1", "redirect_to": "/dashboard"})
    assert encoder.decode(state)["redirect_to"] == "/dashboard"

    forged = OAuthStateEncoder(secret_key="other").encode({"nonce": "n1"})
    with pytest.raises(HTTPException):
        encoder.decode(forged)
