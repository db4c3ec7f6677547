"""Expose constructed client wrappers."""

from .graph import GraphClient, GraphRequestError
from .microsoft_auth import MicrosoftOAuthClient, OAuthStateEncoder
from .sqlite_store import SQLiteTokenStore
from .token_store import InMemoryTokenStore, TokenStore

__all__ = [
    "GraphClient",
    "GraphRequestError",
    "InMemoryTokenStore",
    "MicrosoftOAuthClient",
    "OAuthStateEncoder",
    "SQLiteTokenStore",
    "TokenStore",
]
