"""
Rendering of token and Graph failures at the HTTP boundary.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from portal.clients.graph import InvalidCursorError
from portal.core.errors import (
    REAUTHENTICATION_ERRORS,
    ForbiddenError,
    GatewayError,
    NotFoundError,
    PortalError,
)

logger = logging.getLogger(__name__)

REAUTHENTICATE_MESSAGE = "Please sign out and sign in again."


async def _reauthentication_required(request: Request, exc: PortalError) -> JSONResponse:
    logger.warning("Re-authentication required for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=HTTPStatus.UNAUTHORIZED,
        content={
            "error": "reauthentication_required",
            "reason": type(exc).__name__,
            "detail": REAUTHENTICATE_MESSAGE,
        },
    )


async def _forbidden(request: Request, exc: ForbiddenError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.FORBIDDEN,
        content={"error": "forbidden", "detail": "You do not have access to this resource."},
    )


async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.NOT_FOUND,
        content={"error": "not_found", "detail": "The requested resource was not found."},
    )


async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    logger.error("Graph call failed for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=HTTPStatus.BAD_GATEWAY,
        content={
            "error": "graph_error",
            "detail": str(exc),
            "upstream_status": exc.status_code,
        },
    )


async def _invalid_cursor(request: Request, exc: InvalidCursorError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.BAD_REQUEST,
        content={"error": "invalid_cursor", "detail": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    for error_type in REAUTHENTICATION_ERRORS:
        app.add_exception_handler(error_type, _reauthentication_required)
    app.add_exception_handler(ForbiddenError, _forbidden)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(GatewayError, _gateway_error)
    app.add_exception_handler(InvalidCursorError, _invalid_cursor)


__all__ = ["REAUTHENTICATE_MESSAGE", "register_exception_handlers"]
