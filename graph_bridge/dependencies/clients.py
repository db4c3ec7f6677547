"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from graph_bridge.clients import (
    GraphClient,
    InMemoryTokenStore,
    MicrosoftOAuthClient,
    OAuthStateEncoder,
    SQLiteTokenStore,
    TokenStore,
)
from graph_bridge.core.config import AppSettings
from graph_bridge.services import GraphTokenService, TokenCipherService

from .app_state import SettingsDependency


def build_oauth_state_encoder(settings: AppSettings) -> OAuthStateEncoder:
    """State values are signed with the state secret, else the client secret."""
    secret = settings.security.state_secret or settings.microsoft.client_secret
    return OAuthStateEncoder(secret_key=secret)


def build_token_cipher_service(settings: AppSettings) -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    secret = settings.security.token_encryption_secret or settings.microsoft.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_token_encryption_secrets,
    )


def build_token_store(settings: AppSettings) -> TokenStore:
    """Create the token store selected by ``TOKEN_STORE_BACKEND``."""
    if settings.storage.backend == "sqlite":
        return SQLiteTokenStore(
            settings.storage.sqlite_path, build_token_cipher_service(settings)
        )
    return InMemoryTokenStore()


def build_graph_token_service(settings: AppSettings, store: TokenStore) -> GraphTokenService:
    """Wire the token lifecycle service around an already-open store."""
    return GraphTokenService(
        store=store,
        oauth_client=MicrosoftOAuthClient(settings.microsoft, settings.oauth),
        oauth_settings=settings.oauth,
        state_encoder=build_oauth_state_encoder(settings),
    )


def get_graph_client(settings: AppSettings = SettingsDependency) -> GraphClient:
    """Provide the Graph forwarding client for the configured mailbox."""
    return GraphClient(settings.graph, user_path=settings.graph_user_path)


__all__ = [
    "build_graph_token_service",
    "build_oauth_state_encoder",
    "build_token_cipher_service",
    "build_token_store",
    "get_graph_client",
]
