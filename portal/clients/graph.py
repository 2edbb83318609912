"""
Microsoft Graph gateway.

Every operation takes a portal user id plus domain parameters, resolves a
bearer token through the access token resolver, calls one Graph endpoint and
returns portal DTOs. HTTP failures are mapped onto the portal error taxonomy.
"""

from __future__ import annotations

import base64
import logging
from collections import deque
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Protocol, TypeVar
from urllib.parse import quote

import httpx

from portal.clients.graph_mapping import (
    build_event_payload,
    is_group,
    map_directory_user,
    map_drive_item,
    map_email,
    map_event,
    map_group,
    map_mail_folder,
    map_schedule,
    map_site,
)
from portal.core.errors import (
    AuthExpiredError,
    ForbiddenError,
    GatewayError,
    NotFoundError,
)
from portal.schemas.graph import (
    DegradedView,
    DirectoryUser,
    DownloadedContent,
    DriveItem,
    Email,
    Event,
    Group,
    MailFolder,
    MessagePage,
    Schedule,
    SharedMailbox,
    SharePointSite,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MESSAGE_SELECT = (
    "id,subject,from,toRecipients,ccRecipients,body,receivedDateTime,"
    "isRead,importance,hasAttachments"
)
FOLDER_SELECT = "id,displayName,parentFolderId,childFolderCount,totalItemCount,unreadItemCount"
GROUP_SELECT = "id,displayName,description,mail,mailEnabled,securityEnabled,groupTypes"
USER_SELECT = "id,displayName,mail,userPrincipalName,jobTitle"
FOLDER_PAGE_SIZE = 50
ROOT_FOLDER = "root"


class AccessTokenSource(Protocol):
    async def resolve(self, user_id: str, *, rejected_token: Optional[str] = None) -> str: ...


class InvalidCursorError(ValueError):
    """Raised when a continuation cursor does not point at Graph."""


def _site(site_id: str) -> str:
    # Composite site ids are "host,site-guid,web-guid".
    return quote(site_id, safe=",")


def _error_details(response: httpx.Response) -> tuple[str, str]:
    try:
        payload = response.json()
    except ValueError:
        return "GraphError", response.text or "Unknown Graph error."
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        # Gateways and throttling proxies send {"error": "<text>"}.
        return "GraphError", str(error or response.text)
    return error.get("code", "GraphError"), error.get("message", response.text)


def raise_for_graph_status(response: httpx.Response) -> None:
    """Translate a non-2xx Graph response into a portal error."""
    if response.is_success:
        return
    code, message = _error_details(response)
    text = f"Graph {response.status_code} {code}: {message}"
    kwargs = {"status_code": response.status_code, "body": response.text}
    if response.status_code == 401:
        raise AuthExpiredError(text, **kwargs)
    if response.status_code == 403:
        raise ForbiddenError(text, **kwargs)
    if response.status_code == 404:
        raise NotFoundError(text, **kwargs)
    raise GatewayError(text, **kwargs)


async def with_degraded_fallback(
    operation: Awaitable[List[T]],
    placeholder: Iterable[T] = (),
) -> DegradedView[T]:
    """
    Run a display-only read, substituting ``placeholder`` on ``GatewayError``.

    Only for aggregate views. Authentication, permission and not-found
    failures still propagate.
    """
    try:
        items = await operation
    except GatewayError as exc:
        logger.warning("Serving placeholder data after Graph failure: %s", exc)
        return DegradedView(items=list(placeholder), degraded=True, reason=str(exc))
    return DegradedView(items=items)


class GraphClient:
    """Constructed gateway; holds configuration, never global state."""

    def __init__(
        self,
        token_source: AccessTokenSource,
        *,
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._tokens = token_source
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------ #
    # HTTP plumbing                                                      #
    # ------------------------------------------------------------------ #

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _check_cursor(self, next_link: str) -> str:
        if not next_link.startswith(self._base_url + "/"):
            raise InvalidCursorError("Continuation cursor does not belong to Graph.")
        return next_link

    async def _dispatch(
        self,
        token: str,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        request_headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        request_headers.update(headers or {})
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                return await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    content=content,
                    headers=request_headers,
                )
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Graph {method} {url} timed out.") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Graph {method} {url} failed: {exc}") from exc

    async def _send(self, user_id: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self._tokens.resolve(user_id)
        response = await self._dispatch(token, method, url, **kwargs)
        if response.status_code == 401:
            # The call was rejected before execution, so repeating it is safe.
            logger.info("Graph rejected the token for user %s; refreshing once", user_id)
            token = await self._tokens.resolve(user_id, rejected_token=token)
            response = await self._dispatch(token, method, url, **kwargs)
        raise_for_graph_status(response)
        return response

    async def _json(self, user_id: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._send(user_id, method, url, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError(
                f"Graph {method} {url} returned a non-JSON body.",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise GatewayError(f"Graph {method} {url} returned an unexpected shape.")
        return payload

    async def _collect(
        self, user_id: str, url: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Follow ``@odata.nextLink`` until exhausted, preserving page order."""
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params = params
        while next_url:
            payload = await self._json(user_id, "GET", next_url, params=next_params)
            items.extend(payload.get("value") or [])
            next_url = payload.get("@odata.nextLink")
            # The cursor already embeds the query string.
            next_params = None
        return items

    # ------------------------------------------------------------------ #
    # Calendar                                                           #
    # ------------------------------------------------------------------ #

    async def list_events(self, user_id: str) -> List[Event]:
        payload = await self._json(user_id, "GET", self._url("/me/events"))
        return [map_event(item) for item in payload.get("value") or []]

    async def create_event(self, user_id: str, **fields: Any) -> Event:
        """Create an event in the default calendar; ``fields`` as for ``build_event_payload``."""
        payload = await self._json(
            user_id, "POST", self._url("/me/events"), json=build_event_payload(**fields)
        )
        return map_event(payload)

    async def update_event(self, user_id: str, event_id: str, **fields: Any) -> Event:
        payload = await self._json(
            user_id,
            "PATCH",
            self._url(f"/me/events/{quote(event_id, safe='')}"),
            json=build_event_payload(**fields),
        )
        return map_event(payload)

    async def delete_event(self, user_id: str, event_id: str) -> None:
        await self._send(
            user_id, "DELETE", self._url(f"/me/events/{quote(event_id, safe='')}")
        )

    async def get_schedules(
        self,
        user_id: str,
        *,
        schedules: List[str],
        start: str,
        end: str,
        interval_minutes: int = 30,
    ) -> List[Schedule]:
        """Free/busy lookup for colleagues' mailboxes."""
        body = {
            "schedules": schedules,
            "startTime": {"dateTime": start, "timeZone": "UTC"},
            "endTime": {"dateTime": end, "timeZone": "UTC"},
            "availabilityViewInterval": interval_minutes,
        }
        payload = await self._json(
            user_id, "POST", self._url("/me/calendar/getSchedule"), json=body
        )
        return [map_schedule(item) for item in payload.get("value") or []]

    # ------------------------------------------------------------------ #
    # Mail                                                               #
    # ------------------------------------------------------------------ #

    async def send_mail(
        self,
        user_id: str,
        *,
        subject: str,
        html_body: str,
        to: List[str],
        save_to_sent_items: bool = False,
    ) -> None:
        if not to:
            raise ValueError("At least one recipient is required.")
        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": [{"emailAddress": {"address": address}} for address in to],
            },
            "saveToSentItems": save_to_sent_items,
        }
        await self._send(user_id, "POST", self._url("/me/sendMail"), json=payload)

    async def reply_message(self, user_id: str, message_id: str, *, comment: str) -> None:
        await self._send(
            user_id,
            "POST",
            self._url(f"/me/messages/{quote(message_id, safe='')}/reply"),
            json={"comment": comment},
        )

    async def forward_message(
        self, user_id: str, message_id: str, *, to: List[str], comment: str = ""
    ) -> None:
        if not to:
            raise ValueError("At least one recipient is required.")
        await self._send(
            user_id,
            "POST",
            self._url(f"/me/messages/{quote(message_id, safe='')}/forward"),
            json={
                "comment": comment,
                "toRecipients": [{"emailAddress": {"address": address}} for address in to],
            },
        )

    async def delete_message(self, user_id: str, message_id: str) -> None:
        await self._send(
            user_id, "DELETE", self._url(f"/me/messages/{quote(message_id, safe='')}")
        )

    async def mark_message_read(self, user_id: str, message_id: str) -> None:
        await self._send(
            user_id,
            "PATCH",
            self._url(f"/me/messages/{quote(message_id, safe='')}"),
            json={"isRead": True},
        )

    async def list_messages(
        self,
        user_id: str,
        *,
        folder: str = "inbox",
        top: int = 50,
        next_link: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> MessagePage:
        """
        Return one page of messages.

        ``next_link`` is the cursor from a previous page and is used verbatim.
        ``folder`` accepts well-known names (inbox, sentitems, ...) or ``all``.
        """
        params: Optional[Dict[str, Any]] = None
        if next_link:
            url = self._check_cursor(next_link)
        else:
            if folder_id:
                path = f"/me/mailFolders/{quote(folder_id, safe='')}/messages"
            elif folder.lower() == "all":
                path = "/me/messages"
            else:
                well_known = folder.lower().replace(" ", "")
                path = f"/me/mailFolders/{quote(well_known, safe='')}/messages"
            url = self._url(path)
            params = {
                "$top": top,
                "$orderby": "receivedDateTime desc",
                "$select": MESSAGE_SELECT,
            }
        payload = await self._json(user_id, "GET", url, params=params)
        return MessagePage(
            messages=[map_email(item) for item in payload.get("value") or []],
            next_link=payload.get("@odata.nextLink"),
        )

    async def list_recent_messages(self, user_id: str, *, limit: int = 200) -> List[Email]:
        page = await self.list_messages(user_id, folder="all", top=limit)
        return page.messages

    async def list_mail_folders(self, user_id: str) -> List[MailFolder]:
        """Top-level folders, first page only."""
        payload = await self._json(
            user_id, "GET", self._url("/me/mailFolders"), params={"$select": FOLDER_SELECT}
        )
        return [map_mail_folder(item) for item in payload.get("value") or []]

    async def list_all_mail_folders(self, user_id: str) -> List[MailFolder]:
        """
        Every mail folder, nested ones included.

        Top-level folders come first in Graph order, followed by child folders
        level by level. Each level follows continuation cursors internally.
        """
        params = {"$top": FOLDER_PAGE_SIZE, "$select": FOLDER_SELECT}
        folders = [
            map_mail_folder(item)
            for item in await self._collect(user_id, self._url("/me/mailFolders"), params)
        ]
        pending = deque(folders)
        while pending:
            parent = pending.popleft()
            if parent.child_folder_count <= 0:
                continue
            raw_children = await self._collect(
                user_id,
                self._url(f"/me/mailFolders/{quote(parent.id, safe='')}/childFolders"),
                params,
            )
            children = [
                map_mail_folder({**item, "parentFolderId": item.get("parentFolderId") or parent.id})
                for item in raw_children
            ]
            folders.extend(children)
            pending.extend(children)
        return folders

    # ------------------------------------------------------------------ #
    # Directory, groups and profile                                      #
    # ------------------------------------------------------------------ #

    async def get_my_profile(self, user_id: str) -> DirectoryUser:
        payload = await self._json(
            user_id, "GET", self._url("/me"), params={"$select": USER_SELECT}
        )
        return map_directory_user(payload)

    async def list_directory_users(self, user_id: str) -> List[DirectoryUser]:
        items = await self._collect(
            user_id, self._url("/users"), {"$select": USER_SELECT, "$top": 100}
        )
        return [map_directory_user(item) for item in items]

    async def list_my_groups(self, user_id: str) -> List[Group]:
        items = await self._collect(
            user_id, self._url("/me/memberOf"), {"$select": GROUP_SELECT}
        )
        return [map_group(item) for item in items if is_group(item)]

    async def list_shared_mailboxes(self, user_id: str) -> List[SharedMailbox]:
        """Mail-enabled groups the user belongs to."""
        groups = await self.list_my_groups(user_id)
        return [
            SharedMailbox(id=group.id, display_name=group.display_name, mail=group.mail)
            for group in groups
            if group.mail_enabled and group.mail
        ]

    async def get_my_photo_data_uri(self, user_id: str) -> Optional[str]:
        """Profile photo as a data URI, or None when the user has no photo."""
        try:
            photo = await self._download(user_id, self._url("/me/photo/$value"))
        except NotFoundError:
            return None
        encoded = base64.b64encode(photo.content).decode("ascii")
        content_type = photo.content_type
        if not content_type.startswith("image/"):
            content_type = "image/jpeg"
        return f"data:{content_type};base64,{encoded}"

    async def get_user_photo(self, user_id: str, target_user: str) -> DownloadedContent:
        return await self._download(
            user_id, self._url(f"/users/{quote(target_user, safe='@')}/photo/$value")
        )

    # ------------------------------------------------------------------ #
    # SharePoint                                                         #
    # ------------------------------------------------------------------ #

    async def list_sharepoint_sites(self, user_id: str) -> List[SharePointSite]:
        items = await self._collect(user_id, self._url("/sites"), {"search": "*"})
        return [map_site(item) for item in items]

    async def get_site_member_emails(self, user_id: str, site_id: str) -> List[str]:
        items = await self._collect(
            user_id,
            self._url(f"/sites/{_site(site_id)}/users"),
            {"$select": "mail,userPrincipalName"},
        )
        emails: List[str] = []
        for item in items:
            email = item.get("mail") or item.get("userPrincipalName")
            if email and email not in emails:
                emails.append(email)
        return emails

    def _children_path(self, site_id: str, folder_id: Optional[str]) -> str:
        if not folder_id or folder_id == ROOT_FOLDER:
            return f"/sites/{_site(site_id)}/drive/root/children"
        return f"/sites/{_site(site_id)}/drive/items/{quote(folder_id, safe='')}/children"

    async def list_drive_items(
        self, user_id: str, site_id: str, folder_id: Optional[str] = None
    ) -> List[DriveItem]:
        items = await self._collect(user_id, self._url(self._children_path(site_id, folder_id)))
        return [map_drive_item(item) for item in items]

    async def create_folder(
        self, user_id: str, site_id: str, parent_id: Optional[str], name: str
    ) -> DriveItem:
        payload = await self._json(
            user_id,
            "POST",
            self._url(self._children_path(site_id, parent_id)),
            json={
                "name": name,
                "folder": {},
                "@microsoft.graph.conflictBehavior": "rename",
            },
        )
        return map_drive_item(payload)

    async def upload_file(
        self,
        user_id: str,
        site_id: str,
        parent_id: Optional[str],
        file_name: str,
        content: bytes,
    ) -> DriveItem:
        encoded_name = quote(file_name, safe="")
        drive = f"/sites/{_site(site_id)}/drive"
        if not parent_id or parent_id == ROOT_FOLDER:
            path = f"{drive}/root:/{encoded_name}:/content"
        else:
            path = f"{drive}/items/{quote(parent_id, safe='')}:/{encoded_name}:/content"
        payload = await self._json(
            user_id,
            "PUT",
            self._url(path),
            content=content,
            headers={"Content-Type": "application/octet-stream"},
        )
        return map_drive_item(payload)

    async def rename_item(
        self, user_id: str, site_id: str, item_id: str, new_name: str
    ) -> DriveItem:
        payload = await self._json(
            user_id,
            "PATCH",
            self._url(f"/sites/{_site(site_id)}/drive/items/{quote(item_id, safe='')}"),
            json={"name": new_name},
        )
        return map_drive_item(payload)

    async def delete_item(self, user_id: str, site_id: str, item_id: str) -> None:
        await self._send(
            user_id,
            "DELETE",
            self._url(f"/sites/{_site(site_id)}/drive/items/{quote(item_id, safe='')}"),
        )

    async def download_item(
        self, user_id: str, site_id: str, item_id: str
    ) -> DownloadedContent:
        return await self._download(
            user_id,
            self._url(f"/sites/{_site(site_id)}/drive/items/{quote(item_id, safe='')}/content"),
        )

    async def _download(self, user_id: str, url: str) -> DownloadedContent:
        response = await self._send(user_id, "GET", url)
        return DownloadedContent(
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
        )


__all__ = [
    "GraphClient",
    "InvalidCursorError",
    "raise_for_graph_status",
    "with_degraded_fallback",
]
