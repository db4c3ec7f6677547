"""Public schema exports."""

from .auth import AuthorizationResult, OAuthCallbackPayload
from .graph import (
    JOIN_URL_PLACEHOLDER,
    CreateMeetingRequest,
    CreateMeetingResponse,
    MailEnvelope,
    MeetingRequest,
    MeetingResult,
    SendMailRequest,
    SendMailResponse,
)

__all__ = [
    "AuthorizationResult",
    "CreateMeetingRequest",
    "CreateMeetingResponse",
    "JOIN_URL_PLACEHOLDER",
    "MailEnvelope",
    "MeetingRequest",
    "MeetingResult",
    "OAuthCallbackPayload",
    "SendMailRequest",
    "SendMailResponse",
]
