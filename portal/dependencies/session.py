"""
FastAPI dependencies resolving the signed-in user from the session cookie.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import Depends, HTTPException, Request, Response

from portal.core.config import AppSettings
from portal.dependencies.clients import get_app_settings, get_session_bridge
from portal.services.session import SessionResolution


def set_session_cookie(response: Response, settings: AppSettings, token: str) -> None:
    response.set_cookie(
        key=settings.session.cookie_name,
        value=token,
        max_age=settings.session.max_age_seconds,
        httponly=True,
        secure=settings.session.cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: AppSettings) -> None:
    response.delete_cookie(key=settings.session.cookie_name, path="/")


async def get_optional_session(
    request: Request,
    response: Response,
    bridge: Annotated[Any, Depends(get_session_bridge)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Optional[SessionResolution]:
    """Resolve the cookie, re-issuing it when the bridge healed its claims."""
    token = request.cookies.get(settings.session.cookie_name)
    resolution = await bridge.current_identity(token)
    if resolution is not None and resolution.changed:
        set_session_cookie(response, settings, resolution.token)
    return resolution


async def get_current_session(
    resolution: Annotated[Optional[SessionResolution], Depends(get_optional_session)],
) -> SessionResolution:
    if resolution is None:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED, detail="Not signed in."
        )
    return resolution


CurrentSession = Annotated[SessionResolution, Depends(get_current_session)]

__all__ = [
    "CurrentSession",
    "clear_session_cookie",
    "get_current_session",
    "get_optional_session",
    "set_session_cookie",
]
