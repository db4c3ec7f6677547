"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OAuth callback exchange."""

    code: str = Field(..., description="Authorization code returned by Microsoft.")
    state: str = Field(..., description="Opaque state token issued when starting OAuth.")


class AuthorizationResult(BaseModel):
    """Outcome of a completed authorization-code exchange."""

    status: str = "connected"
    principal_id: str
    redirect_to: Optional[str] = None


__all__ = ["AuthorizationResult", "OAuthCallbackPayload"]
