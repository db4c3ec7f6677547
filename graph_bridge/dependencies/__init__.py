"""Expose dependency helpers for FastAPI routers."""

from .app_state import SettingsDependency, get_app_settings, get_graph_token_service
from .clients import (
    build_graph_token_service,
    build_oauth_state_encoder,
    build_token_cipher_service,
    build_token_store,
    get_graph_client,
)

__all__ = [
    "SettingsDependency",
    "build_graph_token_service",
    "build_oauth_state_encoder",
    "build_token_cipher_service",
    "build_token_store",
    "get_app_settings",
    "get_graph_client",
    "get_graph_token_service",
]
