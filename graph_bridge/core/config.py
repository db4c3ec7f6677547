"""
Application configuration models and helpers.

Centralizes settings management so the bridge routes, the token lifecycle
service and the operator scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AliasChoices, AnyHttpUrl, Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class _Settings(BaseSettings):
    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")


class MicrosoftSettings(_Settings):
    """Entra ID (Azure AD) application registration used to obtain Graph tokens."""

    tenant_id: str = Field(
        "common", validation_alias=AliasChoices("MS_TENANT_ID", "TENANT_ID", "tenant_id")
    )
    client_id: str = Field(
        ..., validation_alias=AliasChoices("MS_CLIENT_ID", "CLIENT_ID", "client_id")
    )
    client_secret: str = Field(
        ...,
        validation_alias=AliasChoices("MS_CLIENT_SECRET", "CLIENT_SECRET", "client_secret"),
    )
    redirect_uri: Optional[AnyHttpUrl] = Field(
        None,
        validation_alias=AliasChoices("MS_REDIRECT_URI", "REDIRECT_URI", "redirect_uri"),
        description=(
            "Must match the redirect URL registered in Azure exactly. When omitted the "
            "bridge derives it from the inbound request URL."
        ),
    )
    authority_host: str = Field(
        "https://login.microsoftonline.com",
        validation_alias=AliasChoices("MS_AUTHORITY_HOST", "authority_host"),
    )

    @property
    def authority(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"


class OAuthSettings(_Settings):
    """OAuth flow configuration."""

    flow: Literal["authorization_code", "client_credentials"] = Field(
        "authorization_code", validation_alias=AliasChoices("OAUTH_FLOW", "flow")
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "https://graph.microsoft.com/User.Read",
            "https://graph.microsoft.com/Mail.Send",
            "https://graph.microsoft.com/Calendars.ReadWrite",
            "https://graph.microsoft.com/OnlineMeetings.ReadWrite",
            "offline_access",
        ),
        validation_alias=AliasChoices("OAUTH_SCOPES", "scopes"),
    )
    state_ttl_seconds: int = Field(
        900, validation_alias=AliasChoices("OAUTH_STATE_TTL", "state_ttl_seconds")
    )
    default_principal: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("OAUTH_DEFAULT_PRINCIPAL", "default_principal"),
        description="Principal used when a request does not name one (single-user setups).",
    )
    refresh_window_seconds: int = Field(
        0,
        ge=0,
        validation_alias=AliasChoices("OAUTH_REFRESH_WINDOW", "refresh_window_seconds"),
        description="Treat tokens expiring within this many seconds as already expired.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class GraphSettings(_Settings):
    """Microsoft Graph request shaping."""

    base_url: str = Field(
        "https://graph.microsoft.com/v1.0",
        validation_alias=AliasChoices("GRAPH_BASE_URL", "base_url"),
    )
    mailbox_user: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("GRAPH_MAILBOX_USER", "mailbox_user"),
        description="Mailbox used with application tokens, where /me is unavailable.",
    )
    meeting_time_zone: str = Field(
        "India Standard Time",
        validation_alias=AliasChoices("GRAPH_MEETING_TIME_ZONE", "meeting_time_zone"),
    )
    online_meeting_provider: str = Field(
        "teamsForBusiness",
        validation_alias=AliasChoices("GRAPH_ONLINE_MEETING_PROVIDER", "online_meeting_provider"),
    )
    save_to_sent_items: bool = Field(
        True,
        validation_alias=AliasChoices("GRAPH_SAVE_TO_SENT_ITEMS", "save_to_sent_items"),
    )
    http_timeout_seconds: float = Field(
        30.0,
        gt=0,
        validation_alias=AliasChoices("GRAPH_HTTP_TIMEOUT", "http_timeout_seconds"),
    )


class SecuritySettings(_Settings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("TOKEN_ENCRYPTION_SECRET", "token_encryption_secret"),
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_token_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias=AliasChoices(
            "TOKEN_ENCRYPTION_PREVIOUS_SECRETS", "previous_token_encryption_secrets"
        ),
        description="Retired secrets that may still protect previously stored tokens.",
    )
    state_secret: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("OAUTH_STATE_SECRET", "state_secret"),
    )

    @field_validator("previous_token_encryption_secrets", mode="before")
    @classmethod
    def _split_previous(cls, value):
        return _split_csv(value)


class StorageSettings(_Settings):
    """Token store backend selection."""

    backend: Literal["memory", "sqlite"] = Field(
        "memory", validation_alias=AliasChoices("TOKEN_STORE_BACKEND", "backend")
    )
    sqlite_path: str = Field(
        "data/tokens.db", validation_alias=AliasChoices("TOKEN_STORE_PATH", "sqlite_path")
    )


class AppSettings(_Settings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        populate_by_name=True,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    environment: str = Field("development", validation_alias=AliasChoices("APP_ENV", "environment"))
    log_level: str = Field("INFO", validation_alias=AliasChoices("APP_LOG_LEVEL", "log_level"))
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias=AliasChoices("FRONTEND_BASE_URL", "frontend_base_url"),
        description="Optional URL for redirecting users back after signing in.",
    )
    microsoft: MicrosoftSettings = Field(default_factory=MicrosoftSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @model_validator(mode="after")
    def _check_flow_requirements(self) -> "AppSettings":
        if self.oauth.flow == "client_credentials" and not self.graph.mailbox_user:
            raise ValueError(
                "GRAPH_MAILBOX_USER is required when OAUTH_FLOW=client_credentials."
            )
        return self

    @property
    def graph_user_path(self) -> str:
        """Graph path segment addressing the acting mailbox."""
        if self.oauth.flow == "client_credentials":
            return f"users/{self.graph.mailbox_user}"
        return "me"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GraphSettings",
    "MicrosoftSettings",
    "OAuthSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
