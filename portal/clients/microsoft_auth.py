"""
Microsoft identity platform OAuth utilities.

These helpers drive the sign-in flow and the refresh-token grant.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import HTTPException, status

from portal.core.config import MicrosoftSettings
from portal.core.errors import RefreshFailedError
from portal.models.credential import TokenSet, now_ms

logger = logging.getLogger(__name__)

MULTI_TENANT_AUTHORITIES = frozenset({"common", "organizations", "consumers"})


def _tenant_guid(tenant_id: str) -> Optional[str]:
    """
    Tenant GUID to compare against the ``tid`` claim.

    None for the multi-tenant authorities and for a tenant configured by
    domain name, whose GUID is not known locally.
    """
    if tenant_id in MULTI_TENANT_AUTHORITIES:
        return None
    try:
        return str(uuid.UUID(tenant_id))
    except ValueError:
        return None


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Malformed OAuth state.",
            ) from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid OAuth state signature.",
            )
        return json.loads(serialized)


@dataclass(frozen=True)
class SignInResult:
    """Tokens and ID-token claims returned when a sign-in completes."""

    tokens: TokenSet
    claims: Dict[str, Any]

    @property
    def object_id(self) -> Optional[str]:
        return self.claims.get("oid")

    @property
    def email(self) -> Optional[str]:
        return self.claims.get("email") or self.claims.get("preferred_username")

    @property
    def name(self) -> Optional[str]:
        return self.claims.get("name")


class OAuthTokenExchangeError(Exception):
    """Raised when an authorization code cannot be redeemed."""


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class MicrosoftOAuthClient:
    """Build authorization URLs and talk to the v2.0 token endpoint."""

    def __init__(
        self,
        settings: MicrosoftSettings,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._transport = transport

    @property
    def token_url(self) -> str:
        return self._settings.token_endpoint

    def build_authorization_url(self, state: str, prompt: Optional[str] = None) -> str:
        """Construct the Microsoft consent URL."""
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": str(self._settings.redirect_uri),
            "response_type": "code",
            "response_mode": "query",
            "scope": " ".join(self._settings.scopes),
            "state": state,
        }
        if prompt:
            params["prompt"] = prompt
        return f"{self._settings.authorize_endpoint}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> SignInResult:
        """Redeem an authorization code for the initial token pair and identity."""
        payload = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "code": code,
            "redirect_uri": str(self._settings.redirect_uri),
            "grant_type": "authorization_code",
            "scope": " ".join(self._settings.scopes),
        }
        issued_at = now_ms()
        try:
            response = await self._post(payload)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned non-JSON body.") from exc
        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")
        expires_in = token_payload.get("expires_in")
        id_token = token_payload.get("id_token")
        if not access_token or not refresh_token or not expires_in or not id_token:
            raise OAuthTokenExchangeError(
                "Incomplete token payload returned from Microsoft."
            )
        return SignInResult(
            tokens=TokenSet(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=issued_at + int(expires_in) * 1000,
            ),
            claims=self.read_id_token_claims(id_token),
        )

    def read_id_token_claims(self, id_token: str) -> Dict[str, Any]:
        """
        Read the identity claims of an ID token from the token endpoint.

        The token arrives over a direct TLS exchange with the issuer, so the
        signature is not re-verified; audience and tenant still are.
        """
        try:
            claims = jwt.decode(
                id_token,
                options={"verify_signature": False, "verify_exp": False},
                algorithms=["RS256"],
            )
        except jwt.InvalidTokenError as exc:
            raise OAuthTokenExchangeError(f"Unreadable ID token: {exc}") from exc
        if claims.get("aud") != self._settings.client_id:
            raise OAuthTokenExchangeError("ID token was issued for another client.")
        tenant = _tenant_guid(self._settings.tenant_id)
        if tenant is not None and claims.get("tid") not in (None, tenant):
            raise OAuthTokenExchangeError("ID token was issued by another tenant.")
        return claims

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new token pair.

        A single POST, never retried here. ``TokenSet.refresh_token`` is None
        when the provider did not rotate the refresh token.
        """
        if not refresh_token:
            raise RefreshFailedError("No refresh token available.")

        payload = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": " ".join(self._settings.scopes),
        }
        issued_at = now_ms()
        try:
            response = await self._post(payload)
        except httpx.TimeoutException as exc:
            raise RefreshFailedError("Token endpoint timed out.") from exc
        except httpx.HTTPError as exc:
            raise RefreshFailedError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != status.HTTP_200_OK:
            error_payload = _error_payload(response)
            logger.warning(
                "Refresh grant rejected with status %s", response.status_code
            )
            raise RefreshFailedError(
                f"Token refresh failed with status {response.status_code}",
                status_code=response.status_code,
                payload=error_payload,
            )

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise RefreshFailedError(
                "Token endpoint returned a non-JSON body.",
                status_code=response.status_code,
                payload=response.text,
            ) from exc

        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise RefreshFailedError(
                "Incomplete refresh payload returned from Microsoft.",
                status_code=response.status_code,
                payload=token_payload,
            )

        return TokenSet(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token") or None,
            expires_at=issued_at + int(expires_in) * 1000,
        )

    async def _post(self, payload: Dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            return await client.post(self.token_url, data=payload)


__all__ = [
    "MicrosoftOAuthClient",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "SignInResult",
]
