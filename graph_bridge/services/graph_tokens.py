"""
Acquisition, caching and refresh of Microsoft Graph access tokens.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from graph_bridge.clients.microsoft_auth import (
    MicrosoftOAuthClient,
    OAuthFlowError,
    OAuthPrincipalError,
    OAuthStateEncoder,
    OAuthStateError,
    OAuthTokenExchangeError,
    OAuthTokenNotFoundError,
    OAuthTokenRefreshError,
)
from graph_bridge.clients.token_store import TokenStore
from graph_bridge.core.config import OAuthSettings
from graph_bridge.models.token import TokenRecord
from graph_bridge.schemas.auth import AuthorizationResult

logger = logging.getLogger(__name__)

APPLICATION_PRINCIPAL = "application"


class GraphTokenService:
    """Resolves a usable access token per principal.

    A stored token is returned as-is while it is unexpired. Expired tokens are
    renewed (refresh token grant, or a new client credentials grant) under a
    per-principal lock and the new record replaces the stored one.
    """

    def __init__(
        self,
        *,
        store: TokenStore,
        oauth_client: MicrosoftOAuthClient,
        oauth_settings: OAuthSettings,
        state_encoder: OAuthStateEncoder,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._settings = oauth_settings
        self._state_encoder = state_encoder
        # Entries disappear once no request holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def uses_client_credentials(self) -> bool:
        return self._settings.flow == "client_credentials"

    @property
    def _leeway(self) -> timedelta:
        return timedelta(seconds=self._settings.refresh_window_seconds)

    def principal_key(self, principal_id: Optional[str]) -> str:
        """Return the store key for ``principal_id``, applying the configured default."""
        if self.uses_client_credentials:
            return APPLICATION_PRINCIPAL
        principal = (principal_id or "").strip() or (self._settings.default_principal or "")
        if not principal:
            raise OAuthPrincipalError("A principal identifier is required.")
        return principal

    def _lock_for(self, principal: str) -> asyncio.Lock:
        lock = self._locks.get(principal)
        if lock is None:
            lock = self._locks[principal] = asyncio.Lock()
        return lock

    async def resolve_token(self, principal_id: Optional[str] = None) -> str:
        """Return a valid access token for the principal, refreshing if it has expired."""
        principal = self.principal_key(principal_id)

        record = self._store.get(principal)
        if record is None and not self.uses_client_credentials:
            raise OAuthTokenNotFoundError(
                f"No Microsoft token stored for {principal}; sign in via /login first."
            )
        if record is not None and not record.is_expired(leeway=self._leeway):
            return record.access_token

        async with self._lock_for(principal):
            # Another request may have renewed the token while we waited.
            current = self._store.get(principal)
            if current is not None and not current.is_expired(leeway=self._leeway):
                return current.access_token
            renewed = await self._renew(principal, current)

        return renewed.access_token

    async def _renew(self, principal: str, record: Optional[TokenRecord]) -> TokenRecord:
        if self.uses_client_credentials:
            return await self._acquire_application_token(principal, is_refresh=record is not None)

        if record is None:
            raise OAuthTokenNotFoundError(f"No Microsoft token stored for {principal}.")
        if not record.refresh_token:
            raise OAuthTokenRefreshError(
                "Stored token has expired and has no refresh token; sign in again."
            )

        refreshed_at = datetime.now(timezone.utc)
        try:
            access_token, refresh_token, expires_in = await self._oauth.refresh_token(
                record.refresh_token
            )
        except OAuthTokenExchangeError as exc:
            logger.warning("Token refresh rejected", extra={"principal_id": principal})
            raise OAuthTokenRefreshError(str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("Token refresh failed: %s", exc, extra={"principal_id": principal})
            raise OAuthTokenRefreshError(f"Token endpoint unreachable: {exc}") from exc

        renewed = TokenRecord.from_grant(
            access_token,
            refresh_token or record.refresh_token,
            expires_in,
            issued_at=refreshed_at,
        )
        self._store.put(principal, renewed)
        logger.info("Refreshed Graph access token", extra={"principal_id": principal})
        return renewed

    async def _acquire_application_token(self, principal: str, *, is_refresh: bool) -> TokenRecord:
        error_cls = OAuthTokenRefreshError if is_refresh else OAuthTokenExchangeError
        issued_at = datetime.now(timezone.utc)
        try:
            access_token, _, expires_in = await self._oauth.acquire_client_credentials_token()
        except OAuthTokenExchangeError as exc:
            raise error_cls(str(exc)) from exc
        except httpx.HTTPError as exc:
            if not is_refresh:
                raise
            raise OAuthTokenRefreshError(f"Token endpoint unreachable: {exc}") from exc

        record = TokenRecord.from_grant(access_token, None, expires_in, issued_at=issued_at)
        self._store.put(principal, record)
        logger.info("Acquired application token via client credentials")
        return record

    def begin_authorization(
        self,
        principal_id: Optional[str],
        *,
        redirect_uri: str,
        redirect_to: Optional[str] = None,
    ) -> str:
        """Build the consent URL whose state carries the principal back to the callback."""
        if self.uses_client_credentials:
            raise OAuthFlowError(
                "Interactive sign-in is not used with the client credentials flow."
            )
        state = self._state_encoder.encode(
            {
                "nonce": uuid.uuid4().hex,
                "principal_id": self.principal_key(principal_id),
                "redirect_uri": redirect_uri,
                "redirect_to": redirect_to,
                "issued_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        return self._oauth.build_authorization_url(state=state, redirect_uri=redirect_uri)

    def decode_state(self, state: str) -> dict:
        """Verify ``state`` and return its payload; raises ``OAuthStateError``."""
        state_data = self._state_encoder.decode(state)

        issued_at_raw = state_data.get("issued_at")
        if not issued_at_raw:
            raise OAuthStateError("Missing issued_at in state token.")
        try:
            issued_at = datetime.fromisoformat(issued_at_raw)
        except (TypeError, ValueError) as exc:
            raise OAuthStateError("Invalid issued_at in state token.") from exc
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)

        if datetime.now(timezone.utc) - issued_at > timedelta(seconds=self._settings.state_ttl_seconds):
            raise OAuthStateError("OAuth state token has expired.")
        if not state_data.get("principal_id"):
            raise OAuthStateError("Missing principal identifier in state token.")
        if not state_data.get("redirect_uri"):
            raise OAuthStateError("Missing redirect URI in state token.")
        return state_data

    async def complete_authorization(self, *, code: str, state: str) -> AuthorizationResult:
        """Exchange an authorization code and store the principal's first token record."""
        if self.uses_client_credentials:
            raise OAuthFlowError(
                "Interactive sign-in is not used with the client credentials flow."
            )
        state_data = self.decode_state(state)
        principal = state_data["principal_id"]

        issued_at = datetime.now(timezone.utc)
        access_token, refresh_token, expires_in = await self._oauth.exchange_authorization_code(
            code, state_data["redirect_uri"]
        )
        self._store.put(
            principal,
            TokenRecord.from_grant(access_token, refresh_token, expires_in, issued_at=issued_at),
        )
        logger.info("Stored Graph token after sign-in", extra={"principal_id": principal})

        return AuthorizationResult(principal_id=principal, redirect_to=state_data.get("redirect_to"))


__all__ = ["APPLICATION_PRINCIPAL", "GraphTokenService"]
