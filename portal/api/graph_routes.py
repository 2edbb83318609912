"""
FastAPI routes proxying Microsoft Graph on behalf of the signed-in user.

Handlers only translate HTTP to gateway calls; failures surface through the
exception handlers in ``portal.api.errors``.
"""

from __future__ import annotations

import asyncio
import logging
from http import HTTPStatus
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from portal.clients.graph import ROOT_FOLDER, with_degraded_fallback
from portal.core.config import AppSettings
from portal.dependencies import (
    CurrentSession,
    get_app_settings,
    get_graph_client,
    set_session_cookie,
)
from portal.schemas import (
    CreateFolderRequest,
    Dashboard,
    DegradedView,
    DirectoryUser,
    DriveItem,
    Email,
    Event,
    EventRequest,
    ForwardRequest,
    Group,
    MailFolder,
    MessagePage,
    RenameItemRequest,
    ReplyRequest,
    Schedule,
    ScheduleRequest,
    SendMailRequest,
    SharedMailbox,
    SharePointSite,
)
from portal.schemas.graph import DownloadedContent
from portal.services.session import SessionResolution

router = APIRouter()
logger = logging.getLogger(__name__)

GraphDependency = Annotated[Any, Depends(get_graph_client)]

AVATAR_CACHE_SECONDS = 3600


def _binary_response(
    download: DownloadedContent,
    session: SessionResolution,
    settings: AppSettings,
    *,
    headers: Optional[dict] = None,
) -> Response:
    # Cookies set on the injected response are dropped when a Response is returned.
    response = Response(
        content=download.content, media_type=download.content_type, headers=headers
    )
    if session.changed:
        set_session_cookie(response, settings, session.token)
    return response


# Calendar


@router.get("/calendar/events", response_model=List[Event])
async def list_calendar_events(session: CurrentSession, graph: GraphDependency):
    return await graph.list_events(session.identity.user_id)


@router.post("/calendar/events", response_model=Event, status_code=HTTPStatus.CREATED)
async def create_calendar_event(
    payload: EventRequest, session: CurrentSession, graph: GraphDependency
):
    event = await graph.create_event(session.identity.user_id, **payload.graph_fields())
    logger.info("User %s created calendar event %s", session.identity.user_id, event.id)
    return event


@router.patch("/calendar/events/{event_id}", response_model=Event)
async def update_calendar_event(
    event_id: str,
    payload: EventRequest,
    session: CurrentSession,
    graph: GraphDependency,
):
    return await graph.update_event(
        session.identity.user_id, event_id, **payload.graph_fields()
    )


@router.delete("/calendar/events/{event_id}", status_code=HTTPStatus.OK)
async def delete_calendar_event(
    event_id: str, session: CurrentSession, graph: GraphDependency
) -> dict:
    await graph.delete_event(session.identity.user_id, event_id)
    return {"status": "deleted"}


@router.post("/calendar/schedule", response_model=List[Schedule])
async def read_schedules(
    payload: ScheduleRequest, session: CurrentSession, graph: GraphDependency
):
    return await graph.get_schedules(
        session.identity.user_id,
        schedules=payload.schedules,
        start=payload.start,
        end=payload.end,
        interval_minutes=payload.interval_minutes,
    )


# Mail


@router.get("/mail/messages", response_model=MessagePage)
async def list_mail_messages(
    session: CurrentSession,
    graph: GraphDependency,
    folder: str = Query(default="inbox", description="Well-known folder name or 'all'."),
    folder_id: Optional[str] = Query(default=None),
    top: int = Query(default=50, ge=1, le=1000),
    next_link: Optional[str] = Query(
        default=None, description="Cursor returned with the previous page."
    ),
):
    return await graph.list_messages(
        session.identity.user_id,
        folder=folder,
        top=top,
        next_link=next_link,
        folder_id=folder_id,
    )


@router.get("/mail/recent", response_model=List[Email])
async def list_recent_mail(
    session: CurrentSession,
    graph: GraphDependency,
    limit: int = Query(default=200, ge=1, le=1000),
):
    return await graph.list_recent_messages(session.identity.user_id, limit=limit)


@router.get("/mail/folders", response_model=List[MailFolder])
async def list_mail_folders(
    session: CurrentSession,
    graph: GraphDependency,
    recursive: bool = Query(default=False, description="Include nested folders."),
):
    if recursive:
        return await graph.list_all_mail_folders(session.identity.user_id)
    return await graph.list_mail_folders(session.identity.user_id)


@router.post("/mail/send", status_code=HTTPStatus.ACCEPTED)
async def send_mail(
    payload: SendMailRequest, session: CurrentSession, graph: GraphDependency
) -> dict:
    await graph.send_mail(
        session.identity.user_id,
        subject=payload.subject,
        html_body=payload.html_body,
        to=payload.to,
        save_to_sent_items=payload.save_to_sent_items,
    )
    logger.info("User %s sent mail to %d recipients", session.identity.user_id, len(payload.to))
    return {"status": "sent"}


@router.post("/mail/messages/{message_id}/reply", status_code=HTTPStatus.ACCEPTED)
async def reply_to_message(
    message_id: str,
    payload: ReplyRequest,
    session: CurrentSession,
    graph: GraphDependency,
) -> dict:
    await graph.reply_message(session.identity.user_id, message_id, comment=payload.comment)
    return {"status": "sent"}


@router.post("/mail/messages/{message_id}/forward", status_code=HTTPStatus.ACCEPTED)
async def forward_message(
    message_id: str,
    payload: ForwardRequest,
    session: CurrentSession,
    graph: GraphDependency,
) -> dict:
    await graph.forward_message(
        session.identity.user_id, message_id, to=payload.to, comment=payload.comment
    )
    return {"status": "sent"}


@router.post("/mail/messages/{message_id}/read", status_code=HTTPStatus.OK)
async def mark_message_read(
    message_id: str, session: CurrentSession, graph: GraphDependency
) -> dict:
    await graph.mark_message_read(session.identity.user_id, message_id)
    return {"status": "read"}


@router.delete("/mail/messages/{message_id}", status_code=HTTPStatus.OK)
async def delete_message(
    message_id: str, session: CurrentSession, graph: GraphDependency
) -> dict:
    await graph.delete_message(session.identity.user_id, message_id)
    return {"status": "deleted"}


# Groups, people and profile


@router.get("/groups", response_model=DegradedView[Group])
async def list_groups(session: CurrentSession, graph: GraphDependency):
    return await with_degraded_fallback(graph.list_my_groups(session.identity.user_id))


@router.get("/mailboxes/shared", response_model=List[SharedMailbox])
async def list_shared_mailboxes(session: CurrentSession, graph: GraphDependency):
    return await graph.list_shared_mailboxes(session.identity.user_id)


@router.get("/me", response_model=DirectoryUser)
async def read_my_profile(session: CurrentSession, graph: GraphDependency):
    return await graph.get_my_profile(session.identity.user_id)


@router.get("/me/photo")
async def read_my_photo(session: CurrentSession, graph: GraphDependency) -> dict:
    return {"data_uri": await graph.get_my_photo_data_uri(session.identity.user_id)}


@router.get("/users/{target_user}/avatar")
async def read_user_avatar(
    target_user: str,
    session: CurrentSession,
    graph: GraphDependency,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Response:
    photo = await graph.get_user_photo(session.identity.user_id, target_user)
    return _binary_response(
        photo,
        session,
        settings,
        headers={"Cache-Control": f"private, max-age={AVATAR_CACHE_SECONDS}"},
    )


@router.get("/directory/users", response_model=List[DirectoryUser])
async def list_directory_users(session: CurrentSession, graph: GraphDependency):
    return await graph.list_directory_users(session.identity.user_id)


@router.get("/dashboard", response_model=Dashboard)
async def read_dashboard(session: CurrentSession, graph: GraphDependency) -> Dashboard:
    user_id = session.identity.user_id
    events, groups = await asyncio.gather(
        with_degraded_fallback(graph.list_events(user_id)),
        with_degraded_fallback(graph.list_my_groups(user_id)),
    )
    return Dashboard(events=events, groups=groups)


# SharePoint


@router.get("/sharepoint/sites", response_model=List[SharePointSite])
async def list_sharepoint_sites(session: CurrentSession, graph: GraphDependency):
    return await graph.list_sharepoint_sites(session.identity.user_id)


@router.get("/sharepoint/sites/{site_id}/members", response_model=List[str])
async def list_site_members(site_id: str, session: CurrentSession, graph: GraphDependency):
    return await graph.get_site_member_emails(session.identity.user_id, site_id)


@router.get("/sharepoint/items", response_model=List[DriveItem])
async def list_drive_items(
    session: CurrentSession,
    graph: GraphDependency,
    site_id: str = Query(...),
    folder_id: Optional[str] = Query(default=None),
):
    return await graph.list_drive_items(session.identity.user_id, site_id, folder_id)


@router.post("/sharepoint/folders", response_model=DriveItem, status_code=HTTPStatus.CREATED)
async def create_folder(
    payload: CreateFolderRequest, session: CurrentSession, graph: GraphDependency
):
    return await graph.create_folder(
        session.identity.user_id, payload.site_id, payload.parent_id, payload.name
    )


@router.post("/sharepoint/upload", response_model=DriveItem, status_code=HTTPStatus.CREATED)
async def upload_file(
    request: Request,
    session: CurrentSession,
    graph: GraphDependency,
    site_id: str = Query(...),
    file_name: str = Query(..., min_length=1),
    parent_id: str = Query(default=ROOT_FOLDER),
):
    """Upload the raw request body as ``file_name`` under ``parent_id``."""
    content = await request.body()
    if not content:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Empty upload.")
    item = await graph.upload_file(
        session.identity.user_id, site_id, parent_id, file_name, content
    )
    logger.info(
        "User %s uploaded %s (%d bytes) to site %s",
        session.identity.user_id,
        file_name,
        len(content),
        site_id,
    )
    return item


@router.patch("/sharepoint/items/{item_id}", response_model=DriveItem)
async def rename_item(
    item_id: str,
    payload: RenameItemRequest,
    session: CurrentSession,
    graph: GraphDependency,
):
    return await graph.rename_item(
        session.identity.user_id, payload.site_id, item_id, payload.name
    )


@router.delete("/sharepoint/items/{item_id}", status_code=HTTPStatus.OK)
async def delete_item(
    item_id: str,
    session: CurrentSession,
    graph: GraphDependency,
    site_id: str = Query(...),
) -> dict:
    await graph.delete_item(session.identity.user_id, site_id, item_id)
    return {"status": "deleted"}


@router.get("/sharepoint/items/{item_id}/content")
async def download_item(
    item_id: str,
    session: CurrentSession,
    graph: GraphDependency,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    site_id: str = Query(...),
) -> Response:
    download = await graph.download_item(session.identity.user_id, site_id, item_id)
    return _binary_response(download, session, settings)


__all__ = ["router"]
