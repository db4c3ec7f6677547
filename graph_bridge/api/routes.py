"""
FastAPI routes exposed to Oracle APEX.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from graph_bridge.clients.graph import GraphRequestError
from graph_bridge.clients.microsoft_auth import (
    OAuthFlowError,
    OAuthPrincipalError,
    OAuthStateError,
    OAuthTokenExchangeError,
    OAuthTokenNotFoundError,
    OAuthTokenRefreshError,
)
from graph_bridge.dependencies import (
    get_app_settings,
    get_graph_client,
    get_graph_token_service,
)
from graph_bridge.schemas import (
    AuthorizationResult,
    CreateMeetingRequest,
    CreateMeetingResponse,
    OAuthCallbackPayload,
    SendMailRequest,
    SendMailResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_INTERNAL_ERROR = "Internal server error"


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


async def _resolve_access_token(token_service: Any, principal_id: Optional[str]) -> str:
    try:
        return await token_service.resolve_token(principal_id)
    except OAuthPrincipalError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except OAuthTokenNotFoundError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="User not authenticated yet. Visit /login first.",
        ) from exc
    except OAuthTokenRefreshError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail={
                "error": "Session expired and could not be refreshed. Visit /login again.",
                "details": str(exc),
            },
        ) from exc
    except OAuthTokenExchangeError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail={"error": "Token request was rejected.", "details": str(exc)},
        ) from exc
    except (httpx.HTTPError, ValueError) as exc:
        # ValueError here means a stored token could not be decrypted.
        logger.exception("Could not resolve access token")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=_INTERNAL_ERROR
        ) from exc


@router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return "Microsoft Graph bridge is running. Visit /login to authenticate."


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/login")
async def start_microsoft_oauth_flow(
    request: Request,
    token_service: Annotated[Any, Depends(get_graph_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    principal_id: Optional[str] = Query(
        default=None,
        description="Email or username signing in; optional with a default principal.",
    ),
    redirect_to: Optional[str] = Query(
        default=None,
        description="Optional URL to redirect back to on successful authentication.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Microsoft sign-in page.",
    ),
) -> Response:
    """Build the Microsoft consent URL for a principal."""
    if settings.microsoft.redirect_uri:
        redirect_uri = str(settings.microsoft.redirect_uri)
    else:
        redirect_uri = str(request.url_for("complete_microsoft_oauth_redirect"))

    try:
        authorization_url = token_service.begin_authorization(
            principal_id, redirect_uri=redirect_uri, redirect_to=redirect_to
        )
    except OAuthFlowError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    except OAuthPrincipalError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc

    if redirect or _wants_html(request):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return JSONResponse(content={"authorization_url": authorization_url})


async def _complete_authorization(token_service: Any, code: str, state: str) -> AuthorizationResult:
    try:
        return await token_service.complete_authorization(code=code, state=state)
    except (OAuthStateError, OAuthFlowError) as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    except OAuthTokenExchangeError as exc:
        logger.warning("Authorization code exchange rejected")
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail={"error": "Failed to exchange authorization code.", "details": str(exc)},
        ) from exc
    except httpx.HTTPError as exc:
        logger.exception("Error acquiring token")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=_INTERNAL_ERROR
        ) from exc


@router.post("/redirect", response_model=AuthorizationResult)
async def complete_microsoft_oauth(
    payload: OAuthCallbackPayload,
    token_service: Annotated[Any, Depends(get_graph_token_service)],
) -> AuthorizationResult:
    """Complete the OAuth exchange for callers relaying the code themselves."""
    return await _complete_authorization(token_service, payload.code, payload.state)


@router.get("/redirect", name="complete_microsoft_oauth_redirect")
async def complete_microsoft_oauth_redirect(
    request: Request,
    token_service: Annotated[Any, Depends(get_graph_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: Optional[str] = Query(default=None, description="Authorization code from Microsoft."),
    state: Optional[str] = Query(default=None, description="OAuth state token."),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    if error:
        logger.warning("Microsoft sign-in returned an error: %s", error)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail={"error": "Microsoft sign-in failed.", "details": error_description or error},
        )
    if not code or not state:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Missing authorization code or state. Retry /login.",
        )

    result = await _complete_authorization(token_service, code, state)

    redirect_target = result.redirect_to or settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        return RedirectResponse(url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return JSONResponse(content=result.model_dump())


@router.post("/send-mail", response_model=SendMailResponse)
async def send_mail(
    payload: SendMailRequest,
    token_service: Annotated[Any, Depends(get_graph_token_service)],
    graph_client: Annotated[Any, Depends(get_graph_client)],
) -> SendMailResponse:
    """Send an email from the principal's mailbox."""
    access_token = await _resolve_access_token(token_service, payload.principal_id)

    try:
        await graph_client.send_mail(access_token, payload)
    except GraphRequestError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail={"error": str(exc), "details": exc.detail},
        ) from exc
    except httpx.HTTPError as exc:
        logger.exception("Error sending mail")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=_INTERNAL_ERROR
        ) from exc

    return SendMailResponse()


@router.post("/create-meeting", response_model=CreateMeetingResponse)
async def create_meeting(
    payload: CreateMeetingRequest,
    token_service: Annotated[Any, Depends(get_graph_token_service)],
    graph_client: Annotated[Any, Depends(get_graph_client)],
) -> CreateMeetingResponse:
    """Create a Teams meeting on the principal's calendar."""
    access_token = await _resolve_access_token(token_service, payload.principal_id)

    try:
        result = await graph_client.create_meeting(access_token, payload)
    except GraphRequestError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail={"error": str(exc), "details": exc.detail},
        ) from exc
    except httpx.HTTPError as exc:
        logger.exception("Error creating event")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=_INTERNAL_ERROR
        ) from exc

    return CreateMeetingResponse(event_id=result.event_id, join_url=result.join_url)


__all__ = ["router"]
