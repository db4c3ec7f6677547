"""
Microsoft Graph forwarding client.

Each operation is a single authenticated POST; responses are translated into
the bridge's own result shapes and non-2xx replies are raised verbatim.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from graph_bridge.core.config import GraphSettings
from graph_bridge.schemas.graph import (
    JOIN_URL_PLACEHOLDER,
    MailEnvelope,
    MeetingRequest,
    MeetingResult,
)

logger = logging.getLogger(__name__)


class GraphRequestError(Exception):
    """Raised when Graph answers with a non-success status."""

    def __init__(self, message: str, *, status_code: int, detail: Any) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def _recipients(addresses: List[str]) -> List[Dict[str, Any]]:
    return [{"emailAddress": {"address": address}} for address in addresses]


def build_mail_payload(envelope: MailEnvelope, *, save_to_sent_items: bool = True) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "subject": envelope.subject,
        "body": {"contentType": envelope.content_type, "content": envelope.body},
        "toRecipients": _recipients(envelope.to_emails),
    }
    if envelope.cc_emails:
        message["ccRecipients"] = _recipients(envelope.cc_emails)
    if envelope.bcc_emails:
        message["bccRecipients"] = _recipients(envelope.bcc_emails)
    return {"message": message, "saveToSentItems": save_to_sent_items}


def build_event_payload(
    meeting: MeetingRequest,
    *,
    default_time_zone: str,
    online_meeting_provider: str,
) -> Dict[str, Any]:
    time_zone = meeting.time_zone or default_time_zone
    return {
        "subject": meeting.subject,
        "body": {"contentType": "HTML", "content": meeting.description},
        "start": {"dateTime": meeting.start.isoformat(), "timeZone": time_zone},
        "end": {"dateTime": meeting.end.isoformat(), "timeZone": time_zone},
        "location": {"displayName": meeting.location},
        "attendees": [
            {"emailAddress": {"address": address, "name": address}, "type": "required"}
            for address in meeting.attendees
        ],
        "isOnlineMeeting": True,
        "onlineMeetingProvider": online_meeting_provider,
    }


class GraphClient:
    """Send mail and create Teams meetings on behalf of a token holder."""

    def __init__(
        self,
        settings: GraphSettings,
        *,
        user_path: str = "me",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._user_path = user_path.strip("/")
        self._transport = transport

    def _url(self, resource: str) -> str:
        return f"{self._settings.base_url.rstrip('/')}/{self._user_path}/{resource}"

    async def _post(self, access_token: str, url: str, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(
            timeout=self._settings.http_timeout_seconds, transport=self._transport
        ) as client:
            return await client.post(url, headers=headers, json=payload)

    async def send_mail(self, access_token: str, envelope: MailEnvelope) -> None:
        """Send a message; Graph replies 202 with an empty body on success."""
        payload = build_mail_payload(
            envelope, save_to_sent_items=self._settings.save_to_sent_items
        )
        response = await self._post(access_token, self._url("sendMail"), payload)

        if not response.is_success:
            logger.warning("Graph rejected sendMail with status %s", response.status_code)
            raise GraphRequestError(
                "Mail send failed",
                status_code=response.status_code,
                detail=response.text,
            )

    async def create_meeting(self, access_token: str, meeting: MeetingRequest) -> MeetingResult:
        """Create a calendar event flagged as an online meeting."""
        payload = build_event_payload(
            meeting,
            default_time_zone=self._settings.meeting_time_zone,
            online_meeting_provider=self._settings.online_meeting_provider,
        )
        response = await self._post(access_token, self._url("events"), payload)

        try:
            result = response.json()
        except ValueError:
            result = None

        if not response.is_success:
            logger.warning("Graph rejected event creation with status %s", response.status_code)
            raise GraphRequestError(
                "Failed to create event",
                status_code=response.status_code,
                detail=result if result is not None else response.text,
            )
        if not isinstance(result, dict) or not result.get("id"):
            raise GraphRequestError(
                "Graph returned no event identifier",
                status_code=response.status_code,
                detail=response.text,
            )

        join_url = (result.get("onlineMeeting") or {}).get("joinUrl")
        return MeetingResult(event_id=result["id"], join_url=join_url or JOIN_URL_PLACEHOLDER)


__all__ = [
    "GraphClient",
    "GraphRequestError",
    "build_event_payload",
    "build_mail_payload",
]
