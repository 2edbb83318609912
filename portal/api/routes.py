"""
FastAPI routes for sign-in, the session cookie and the stored Microsoft credential.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from portal.clients.microsoft_auth import OAuthTokenExchangeError
from portal.core.config import AppSettings
from portal.dependencies import (
    CurrentSession,
    clear_session_cookie,
    get_access_token_resolver,
    get_app_settings,
    get_credential_store,
    get_microsoft_oauth_client,
    get_oauth_state_encoder,
    get_optional_session,
    get_session_bridge,
    get_user_service,
    set_session_cookie,
)
from portal.schemas import OAuthCallbackPayload, SessionResponse, TokenStatusResponse
from portal.services.session import SessionResolution

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _safe_redirect_target(target: Optional[str], settings: AppSettings) -> Optional[str]:
    """Accept same-site paths or URLs under the configured front-end only."""
    if not target:
        return None
    if target.startswith("/") and not target.startswith("//"):
        return target
    frontend = str(settings.frontend_base_url or "")
    if frontend and target.startswith(frontend):
        return target
    logger.warning("Ignoring off-site redirect target %s", target)
    return None


@router.get("/auth/microsoft/authorize", status_code=HTTPStatus.OK)
async def start_microsoft_sign_in(
    request: Request,
    oauth_client: Annotated[Any, Depends(get_microsoft_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    redirect_to: Optional[str] = Query(
        default=None,
        description="Optional path to return to once sign-in completes.",
    ),
    prompt: Optional[str] = Query(
        default=None,
        description="Forwarded to Microsoft, e.g. 'select_account' or 'consent'.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Microsoft sign-in page.",
    ),
):
    """
    Kick off the sign-in flow by generating a state token and authorization URL.
    """
    state_payload = {
        "nonce": uuid.uuid4().hex,
        "redirect_to": _safe_redirect_target(redirect_to, settings),
        "issued_at": datetime.now(timezone.utc).isoformat(),
    }
    state = state_encoder.encode(state_payload)
    authorization_url = oauth_client.build_authorization_url(state=state, prompt=prompt)

    if redirect or _wants_html(request):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return {"authorization_url": authorization_url, "state": state}


def _read_state(state_encoder: Any, state: str, settings: AppSettings) -> dict:
    state_data = state_encoder.decode(state)

    issued_at_raw = state_data.get("issued_at")
    if not issued_at_raw:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Missing issued_at in state token.",
        )
    try:
        issued_at = datetime.fromisoformat(issued_at_raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Invalid issued_at in state token.",
        ) from exc
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)

    now = datetime.now(timezone.utc)
    if now - issued_at > timedelta(seconds=settings.session.state_ttl_seconds):
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="OAuth state token has expired."
        )
    return state_data


async def _complete_sign_in(
    payload: OAuthCallbackPayload,
    *,
    oauth_client: Any,
    state_encoder: Any,
    users: Any,
    credentials: Any,
    bridge: Any,
    settings: AppSettings,
) -> tuple[SessionResolution, Optional[str]]:
    state_data = _read_state(state_encoder, payload.state, settings)

    try:
        result = await oauth_client.exchange_authorization_code(payload.code)
    except OAuthTokenExchangeError as exc:
        logger.warning("Authorization code exchange failed: %s", exc)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Failed to exchange authorization code.",
        ) from exc

    if not result.email:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Microsoft account has no email address.",
        )

    user = users.upsert_signed_in_user(
        email=result.email,
        name=result.name,
        aad_object_id=result.object_id,
    )
    credentials.save(user.id, result.tokens)
    logger.info("User %s signed in with Microsoft", user.id)

    return bridge.start_session(user), state_data.get("redirect_to")


def _session_body(resolution: SessionResolution) -> dict:
    identity = resolution.identity
    return SessionResponse(
        authenticated=True,
        user_id=identity.user_id,
        email=identity.email,
        name=identity.name,
        role=identity.role,
        error=identity.error,
    ).model_dump(mode="json")


@router.post("/auth/microsoft/callback", status_code=HTTPStatus.OK)
async def handle_microsoft_callback(
    payload: OAuthCallbackPayload,
    oauth_client: Annotated[Any, Depends(get_microsoft_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    users: Annotated[Any, Depends(get_user_service)],
    credentials: Annotated[Any, Depends(get_credential_store)],
    bridge: Annotated[Any, Depends(get_session_bridge)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Response:
    """Complete the code exchange, store the credential and issue the session cookie."""
    resolution, redirect_to = await _complete_sign_in(
        payload,
        oauth_client=oauth_client,
        state_encoder=state_encoder,
        users=users,
        credentials=credentials,
        bridge=bridge,
        settings=settings,
    )
    response = JSONResponse(
        content={
            "status": "connected",
            "redirect_to": redirect_to,
            "session": _session_body(resolution),
        }
    )
    set_session_cookie(response, settings, resolution.token)
    return response


@router.get("/auth/microsoft/callback", status_code=HTTPStatus.OK)
async def handle_microsoft_callback_get(
    request: Request,
    oauth_client: Annotated[Any, Depends(get_microsoft_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    users: Annotated[Any, Depends(get_user_service)],
    credentials: Annotated[Any, Depends(get_credential_store)],
    bridge: Annotated[Any, Depends(get_session_bridge)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state token."),
    code: str = Query(..., description="Authorization code returned by Microsoft."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    resolution, redirect_to = await _complete_sign_in(
        OAuthCallbackPayload(state=state, code=code),
        oauth_client=oauth_client,
        state_encoder=state_encoder,
        users=users,
        credentials=credentials,
        bridge=bridge,
        settings=settings,
    )

    redirect_target = redirect_to or settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        response: Response = RedirectResponse(
            url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        response = JSONResponse(
            content={
                "status": "connected",
                "redirect_to": redirect_to,
                "session": _session_body(resolution),
            }
        )
    set_session_cookie(response, settings, resolution.token)
    return response


@router.post("/auth/signout", status_code=HTTPStatus.OK)
async def sign_out(
    response: Response,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> dict:
    """Drop the session cookie; the stored credential is kept for the next sign-in."""
    clear_session_cookie(response, settings)
    return {"status": "signed_out"}


@router.get("/auth/session", response_model=SessionResponse)
async def read_session(
    resolution: Annotated[Optional[SessionResolution], Depends(get_optional_session)],
) -> SessionResponse:
    if resolution is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(**_session_body(resolution))


@router.post("/auth/microsoft/reset", status_code=HTTPStatus.OK)
async def reset_microsoft_credential(
    session: CurrentSession,
    response: Response,
    credentials: Annotated[Any, Depends(get_credential_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> dict:
    """Forget the stored tokens and the session so the next sign-in starts clean."""
    removed = credentials.delete(session.identity.user_id)
    logger.info(
        "Reset Microsoft credential for user %s (removed=%s)",
        session.identity.user_id,
        removed,
    )
    clear_session_cookie(response, settings)
    return {"status": "reset", "removed": removed}


@router.get("/auth/microsoft/token-status", response_model=TokenStatusResponse)
async def read_token_status(
    session: CurrentSession,
    resolver: Annotated[Any, Depends(get_access_token_resolver)],
) -> TokenStatusResponse:
    return TokenStatusResponse(**resolver.token_status(session.identity.user_id))


__all__ = ["router"]
