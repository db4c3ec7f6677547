"""
Microsoft identity platform OAuth utilities.

These helpers build the consent URL, sign the round-tripped state value and
talk to the v2.0 token endpoint for all three grant types the bridge uses.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
from hashlib import sha256
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx

from graph_bridge.core.config import MicrosoftSettings, OAuthSettings

TokenGrant = Tuple[str, Optional[str], int]
"""(access_token, refresh_token or None, expires_in_seconds)"""

APPLICATION_SCOPE = "https://graph.microsoft.com/.default"


class OAuthError(Exception):
    """Base class for token lifecycle failures."""


class OAuthTokenNotFoundError(OAuthError):
    """Raised when no persisted OAuth token is available for a principal."""


class OAuthTokenExchangeError(OAuthError):
    """Raised when the token endpoint rejects a request or returns an unusable payload."""


class OAuthTokenRefreshError(OAuthTokenExchangeError):
    """Raised when an expired token cannot be renewed; the principal must sign in again."""


class OAuthStateError(OAuthError):
    """Raised when a state value is malformed, tampered with or expired."""


class OAuthFlowError(OAuthError):
    """Raised when an operation does not apply to the configured OAuth flow."""


class OAuthPrincipalError(OAuthError):
    """Raised when a request names no principal and no default is configured."""


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    _SIGNATURE_LENGTH = 32

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        signature = hmac.new(self._secret_key, serialized, sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise OAuthStateError("OAuth state is not valid base64.") from exc

        signature = decoded[: self._SIGNATURE_LENGTH]
        serialized = decoded[self._SIGNATURE_LENGTH :]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise OAuthStateError("Invalid OAuth state signature.")

        try:
            payload = json.loads(serialized)
        except ValueError as exc:
            raise OAuthStateError("OAuth state payload is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise OAuthStateError("OAuth state payload must be an object.")
        return payload


class MicrosoftOAuthClient:
    """Build Microsoft authorization URLs and call the token endpoint."""

    def __init__(
        self,
        microsoft_settings: MicrosoftSettings,
        oauth_settings: OAuthSettings,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._microsoft = microsoft_settings
        self._oauth = oauth_settings
        self._timeout = timeout
        self._transport = transport

    @property
    def authorize_url(self) -> str:
        return f"{self._microsoft.authority}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"{self._microsoft.authority}/oauth2/v2.0/token"

    def build_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Construct the Microsoft consent URL."""
        params = {
            "client_id": self._microsoft.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "response_mode": "query",
            "scope": " ".join(self._oauth.scopes),
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair."""
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "scope": " ".join(self._oauth.scopes),
            }
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token.

        The returned refresh token is ``None`` when the provider did not rotate it.
        """
        return await self._request_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(self._oauth.scopes),
            }
        )

    async def acquire_client_credentials_token(self) -> TokenGrant:
        """Request an application token using the service's own credentials."""
        return await self._request_token(
            {
                "grant_type": "client_credentials",
                "scope": APPLICATION_SCOPE,
            }
        )

    async def _request_token(self, form: Dict[str, str]) -> TokenGrant:
        payload = {
            "client_id": self._microsoft.client_id,
            "client_secret": self._microsoft.client_secret,
            **form,
        }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.token_url, data=payload)

        if response.status_code != httpx.codes.OK:
            raise OAuthTokenExchangeError(response.text)

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned a non-JSON body.") from exc

        if not isinstance(token_payload, dict):
            raise OAuthTokenExchangeError("Token endpoint returned a non-object JSON body.")

        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise OAuthTokenExchangeError(
                f"Incomplete token payload returned for grant '{form['grant_type']}'."
            )
        try:
            expires_in_seconds = int(expires_in)
        except (TypeError, ValueError) as exc:
            raise OAuthTokenExchangeError(
                f"Token endpoint returned a non-numeric expires_in: {expires_in!r}."
            ) from exc

        return access_token, token_payload.get("refresh_token"), expires_in_seconds


__all__ = [
    "APPLICATION_SCOPE",
    "MicrosoftOAuthClient",
    "OAuthError",
    "OAuthFlowError",
    "OAuthPrincipalError",
    "OAuthStateEncoder",
    "OAuthStateError",
    "OAuthTokenExchangeError",
    "OAuthTokenNotFoundError",
    "OAuthTokenRefreshError",
    "TokenGrant",
]
