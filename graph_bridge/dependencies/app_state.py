"""
Dependencies bound to the running application instance rather than the process.
"""

from fastapi import Depends, Request

from graph_bridge.core.config import AppSettings
from graph_bridge.services import GraphTokenService


def get_app_settings(request: Request) -> AppSettings:
    """FastAPI dependency returning the settings the app was created with."""
    return request.app.state.settings


def get_graph_token_service(request: Request) -> GraphTokenService:
    """Return the token service opened for this app instance at startup."""
    return request.app.state.token_service


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings", "get_graph_token_service"]
