"""
Pydantic models for the mail and meeting operations forwarded to Microsoft Graph.

Field aliases accept the camelCase payloads sent by Oracle APEX.
"""

import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

JOIN_URL_PLACEHOLDER = "No Teams join link available"


def _check_addresses(addresses: List[str]) -> List[str]:
    cleaned = [address.strip() for address in addresses]
    invalid = [address for address in cleaned if not _EMAIL_PATTERN.match(address)]
    if invalid:
        raise ValueError(f"Invalid email address(es): {', '.join(invalid)}")
    return cleaned


class _BridgeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MailEnvelope(_BridgeModel):
    """Message to send from the principal's mailbox."""

    subject: str = Field("Hello from Oracle APEX + Microsoft Graph")
    body: str = Field("<p>This email was sent via Microsoft Graph API!</p>")
    content_type: Literal["HTML", "Text"] = Field("HTML", alias="contentType")
    to_emails: List[str] = Field(..., min_length=1, alias="toEmails")
    cc_emails: List[str] = Field(default_factory=list, alias="ccEmails")
    bcc_emails: List[str] = Field(default_factory=list, alias="bccEmails")

    @field_validator("to_emails", "cc_emails", "bcc_emails")
    @classmethod
    def _plausible_addresses(cls, value: List[str]) -> List[str]:
        return _check_addresses(value)


class MeetingRequest(_BridgeModel):
    """Teams meeting to create on the principal's calendar.

    ``start`` and ``end`` are local wall-clock times interpreted in ``time_zone``
    by Graph; they are not converted to UTC here.
    """

    subject: str = Field("Meeting from Oracle APEX")
    description: str = Field("Meeting scheduled via Oracle APEX")
    start: datetime
    end: datetime
    time_zone: Optional[str] = Field(
        None,
        alias="timeZone",
        description="Windows or IANA zone name; the configured default applies when omitted.",
    )
    location: str = Field("Online")
    attendees: List[str] = Field(default_factory=list)

    @field_validator("start", "end")
    @classmethod
    def _wall_clock_only(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            raise ValueError("Use a local time without a UTC offset and pass timeZone instead.")
        return value

    @field_validator("attendees")
    @classmethod
    def _plausible_attendees(cls, value: List[str]) -> List[str]:
        return _check_addresses(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> "MeetingRequest":
        if self.end <= self.start:
            raise ValueError("Meeting end must be after its start.")
        return self


class MeetingResult(BaseModel):
    """Identifiers returned by Graph for a created event."""

    event_id: str
    join_url: str = JOIN_URL_PLACEHOLDER


class SendMailRequest(MailEnvelope):
    principal_id: Optional[str] = Field(
        None,
        alias="principalId",
        description="Mailbox owner; falls back to the configured default principal.",
    )


class SendMailResponse(BaseModel):
    success: bool = True
    message: str = "Mail sent successfully"


class CreateMeetingRequest(MeetingRequest):
    principal_id: Optional[str] = Field(None, alias="principalId")


class CreateMeetingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Meeting created successfully"
    event_id: str = Field(..., serialization_alias="eventId")
    join_url: str = Field(..., serialization_alias="joinUrl")


__all__ = [
    "CreateMeetingRequest",
    "CreateMeetingResponse",
    "JOIN_URL_PLACEHOLDER",
    "MailEnvelope",
    "MeetingRequest",
    "MeetingResult",
    "SendMailRequest",
    "SendMailResponse",
]
