"""
Domain models for OAuth token persistence.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRecord(BaseModel):
    """Graph credentials held for one principal.

    Records are immutable; a refresh produces a new record that replaces the
    stored one wholesale.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = Field(
        None, description="Absent for tokens obtained with client credentials."
    )
    expires_at: datetime
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_grant(
        cls,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: int,
        *,
        issued_at: Optional[datetime] = None,
    ) -> "TokenRecord":
        issued_at = issued_at or _utcnow()
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=issued_at + timedelta(seconds=expires_in),
            updated_at=issued_at,
        )

    def is_expired(self, now: Optional[datetime] = None, *, leeway: timedelta = timedelta(0)) -> bool:
        now = now or _utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now + leeway >= expires_at


__all__ = ["TokenRecord"]
